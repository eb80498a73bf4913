"""
Career Stories Prompts

Centralized prompt templates for LLM interactions.
"""

from .career_story import (
    ARCHETYPE_GUIDANCE,
    CAREER_STORY_SYSTEM_PROMPT,
    CAREER_STORY_USER_PROMPT,
    WRITING_STYLE_GUIDANCE,
    CareerStoryActivity,
    CareerStoryPromptInput,
    build_career_story_messages,
    build_system_prompt,
)

from .polish import (
    POLISH_GUIDELINES,
    POLISH_SYSTEM_PROMPT,
    build_polish_messages,
)

from .derivation import (
    DERIVATION_INSTRUCTIONS,
    DERIVATION_SYSTEM_PROMPT,
    PACKET_INSTRUCTIONS,
    DerivationPromptInput,
    DerivationStoryInput,
    PacketPromptInput,
    build_derivation_messages,
    build_packet_messages,
)

__all__ = [
    # Career story
    "ARCHETYPE_GUIDANCE",
    "CAREER_STORY_SYSTEM_PROMPT",
    "CAREER_STORY_USER_PROMPT",
    "WRITING_STYLE_GUIDANCE",
    "CareerStoryActivity",
    "CareerStoryPromptInput",
    "build_career_story_messages",
    "build_system_prompt",
    # Derivations
    "DERIVATION_INSTRUCTIONS",
    "DERIVATION_SYSTEM_PROMPT",
    "PACKET_INSTRUCTIONS",
    "DerivationPromptInput",
    "DerivationStoryInput",
    "PacketPromptInput",
    "build_derivation_messages",
    "build_packet_messages",
    # Polish
    "POLISH_GUIDELINES",
    "POLISH_SYSTEM_PROMPT",
    "build_polish_messages",
]
