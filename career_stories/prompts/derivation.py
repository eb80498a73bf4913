"""
Derivation Prompts

Rewrites accepted career stories for a specific audience: single-story
formats (interview answer, LinkedIn post, resume bullets, ...) and
multi-story packets (promotion case, annual review, ...).

Used by: DerivationService (services/derivation_service.py)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from career_stories.prompts.career_story import ARCHETYPE_GUIDANCE, WRITING_STYLE_GUIDANCE


DERIVATION_SYSTEM_PROMPT = '''You are a career communication specialist. You rewrite a professional's verified career stories for a specific audience and format.

Rules:
- Use only facts present in the stories. Never invent metrics, titles or outcomes.
- Keep the author's voice: first person unless the format says otherwise.
- Return only the derived text, with no preamble or commentary.'''


DERIVATION_INSTRUCTIONS: Dict[str, str] = {
    "interview": (
        "Rewrite this as a spoken behavioral interview answer of about 90 seconds "
        "(200-250 words). Follow the story's structure, open with one line of context "
        "and land on the result."
    ),
    "linkedin": (
        "Rewrite this as a LinkedIn post (120-200 words). Hook in the first line, "
        "short paragraphs, no more than three hashtags at the end."
    ),
    "resume": (
        "Rewrite this as 2-3 resume bullet points. Each starts with a strong past-tense "
        "verb and includes a measurable outcome where the story provides one."
    ),
    "one-on-one": (
        "Rewrite this as talking points for a 1:1 with a manager: what happened, "
        "what I did, the impact, and what support or recognition I am asking for."
    ),
    "self-assessment": (
        "Rewrite this as a self-assessment paragraph for a performance review "
        "(100-150 words), connecting the work to impact and growth."
    ),
    "team-share": (
        "Rewrite this as a short team update (80-120 words) celebrating the outcome "
        "and crediting collaborators where the story mentions them."
    ),
}

PACKET_INSTRUCTIONS: Dict[str, str] = {
    "promotion": (
        "Combine these stories into a promotion case. Open with a two-sentence summary "
        "of scope and impact, then one paragraph per theme showing next-level behavior, "
        "and close with the combined measurable impact."
    ),
    "annual-review": (
        "Combine these stories into an annual review summary organized chronologically, "
        "highlighting the biggest outcomes and the skills demonstrated."
    ),
    "skip-level": (
        "Combine these stories into a concise skip-level briefing: three to five bullets "
        "a senior leader can absorb in one minute, each tied to business impact."
    ),
    "portfolio-brief": (
        "Combine these stories into a portfolio brief: one heading per story with a "
        "two-sentence summary and the key result."
    ),
    "self-assessment": (
        "Combine these stories into a self-assessment for a review cycle, grouped by "
        "impact, collaboration and growth."
    ),
    "one-on-one": (
        "Combine these stories into talking points for a 1:1 with a manager covering "
        "recent wins, current focus and asks."
    ),
}


DERIVATION_USER_PROMPT = '''## Format: {derivation_type}

{instructions}

## Story: {title}
Framework: {framework}
{sections_formatted}
{context_formatted}{tone_formatted}{custom_prompt_formatted}'''


PACKET_USER_PROMPT = '''## Format: {packet_type} packet

{instructions}

{stories_formatted}
{tone_formatted}{custom_prompt_formatted}'''


@dataclass
class DerivationStoryInput:
    """One story as rendered into a derivation prompt."""

    title: str
    framework: str
    sections: Dict[str, str]  # section key -> summary, in framework order
    archetype: Optional[str] = None
    metrics: Optional[str] = None
    activity_count: Optional[int] = None
    date_range: Optional[str] = None


@dataclass
class DerivationPromptInput:
    derivation_type: str
    story: DerivationStoryInput
    tone: Optional[str] = None
    custom_prompt: Optional[str] = None


@dataclass
class PacketPromptInput:
    packet_type: str
    stories: List[DerivationStoryInput] = field(default_factory=list)
    tone: Optional[str] = None
    custom_prompt: Optional[str] = None


def format_story_sections(sections: Dict[str, str]) -> str:
    return "\n".join(
        f"**{key.capitalize()}**: {summary}" for key, summary in sections.items() if summary
    )


def format_story_context(story: DerivationStoryInput) -> str:
    lines = []
    if story.metrics:
        lines.append(f"Key metrics: {story.metrics}")
    if story.activity_count:
        lines.append(f"Based on {story.activity_count} source activities")
    if story.date_range:
        lines.append(f"Timeframe: {story.date_range}")
    if not lines:
        return ""
    return "\n" + "\n".join(lines) + "\n"


def format_tone(tone: Optional[str]) -> str:
    if not tone:
        return ""
    guidance = WRITING_STYLE_GUIDANCE.get(tone, "")
    return f"\n## Tone\n**{tone}**: {guidance}\n"


def format_custom_prompt(custom_prompt: Optional[str]) -> str:
    if not custom_prompt:
        return ""
    return f"\n## Additional Instructions from User\n> {custom_prompt}\n"


def build_derivation_messages(prompt_input: DerivationPromptInput) -> List[Dict[str, str]]:
    """Build chat messages for a single-story derivation."""
    story = prompt_input.story

    system = DERIVATION_SYSTEM_PROMPT
    guidance = ARCHETYPE_GUIDANCE.get(story.archetype) if story.archetype else None
    if guidance:
        system = f"## Story Archetype: {story.archetype.upper()}\n\n{guidance}\n\n---\n\n{system}"

    user = DERIVATION_USER_PROMPT.format(
        derivation_type=prompt_input.derivation_type,
        instructions=DERIVATION_INSTRUCTIONS[prompt_input.derivation_type],
        title=story.title,
        framework=story.framework,
        sections_formatted=format_story_sections(story.sections),
        context_formatted=format_story_context(story),
        tone_formatted=format_tone(prompt_input.tone),
        custom_prompt_formatted=format_custom_prompt(prompt_input.custom_prompt),
    )

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_packet_messages(prompt_input: PacketPromptInput) -> List[Dict[str, str]]:
    """Build chat messages for a multi-story packet."""
    blocks = []
    for index, story in enumerate(prompt_input.stories, start=1):
        blocks.append(
            f"## Story {index}: {story.title}\n"
            f"Framework: {story.framework}\n"
            f"{format_story_sections(story.sections)}"
            f"{format_story_context(story)}"
        )

    user = PACKET_USER_PROMPT.format(
        packet_type=prompt_input.packet_type,
        instructions=PACKET_INSTRUCTIONS[prompt_input.packet_type],
        stories_formatted="\n---\n\n".join(blocks),
        tone_formatted=format_tone(prompt_input.tone),
        custom_prompt_formatted=format_custom_prompt(prompt_input.custom_prompt),
    )

    return [
        {"role": "system", "content": DERIVATION_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]
