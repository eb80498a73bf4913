"""
Career Story Prompt

LLM prompt that turns a journal entry plus its source activities into a
framework-structured career narrative with per-section evidence.

Used by: LanguageModelTier (services/narrative_generator.py)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from career_stories.frameworks import FrameworkDefinition


ARCHETYPE_GUIDANCE: Dict[str, str] = {
    "firefighter": "This is a CRISIS RESPONSE story. Emphasize urgency and quick thinking.",
    "architect": "This is a SYSTEM DESIGN story. Emphasize vision, trade-offs, and lasting impact.",
    "diplomat": "This is a STAKEHOLDER ALIGNMENT story. Emphasize influence and consensus building.",
    "multiplier": "This is a FORCE MULTIPLICATION story. Emphasize leverage and compound impact.",
    "detective": "This is an INVESTIGATION story. Emphasize the root-cause discovery.",
    "pioneer": "This is a FIRST MOVER story. Emphasize exploring unknown territory.",
    "turnaround": "This is a RECOVERY story. Emphasize the before/after transformation.",
    "preventer": "This is a RISK PREVENTION story. Emphasize what didn't happen because of you.",
}

WRITING_STYLE_GUIDANCE: Dict[str, str] = {
    "professional": "Clear, confident, business-appropriate language. First person, past tense.",
    "casual": "Conversational and approachable, as if telling a colleague over coffee.",
    "technical": "Precise technical detail: systems, tools, trade-offs and measurable results.",
    "storytelling": "A narrative arc with tension and resolution that keeps the listener engaged.",
}


CAREER_STORY_SYSTEM_PROMPT = '''You are a career coach helping a professional turn their work history into a compelling {framework_name} story for performance reviews, interviews and promotion packets.

Rules:
- Write in first person, past tense.
- Every claim must be supported by the source activities provided. Do not invent metrics, names or outcomes.
- Each section must say something different; never repeat a sentence across sections.
- Cite evidence by activity id. Only use ids that appear in the Source Activities list.
- Respond only with valid JSON.'''


CAREER_STORY_USER_PROMPT = '''## Framework: {framework_name}

Write one section for each of the following, in this order:
{sections_formatted}

## About the Author
{persona_formatted}

## Journal Entry: {entry_title}
{entry_content}

{phases_formatted}

## Source Activities
{activities_formatted}

## Writing Style
**{style}**: {style_guidance}
{user_prompt_formatted}
## Output Format

Return JSON with this exact shape:

{{
  "title": "Outcome-focused story title (max 80 chars)",
  "role": "led | contributed | supported",
  "sections": {{
{sections_json_example}
  }}
}}

Each section's "evidence" lists the activities that support it. Use an empty list only when the section rests on context the author stated rather than on a specific activity.'''


SECTION_JSON_TEMPLATE = '''    "{key}": {{"summary": "...", "evidence": [{{"activityId": "...", "description": "..."}}]}}'''


@dataclass
class CareerStoryActivity:
    """Activity fields rendered into the prompt."""

    id: str
    source: str
    title: str
    timestamp: str
    description: Optional[str] = None


@dataclass
class CareerStoryPromptInput:
    """Input data for career story generation."""

    framework: FrameworkDefinition
    entry_title: str
    activities: List[CareerStoryActivity]
    full_content: Optional[str] = None
    entry_description: Optional[str] = None
    phases: List[Dict[str, object]] = field(default_factory=list)
    style: str = "professional"
    archetype: Optional[str] = None
    user_prompt: Optional[str] = None
    persona_name: Optional[str] = None
    persona_role: Optional[str] = None
    persona_company: Optional[str] = None


def format_sections(framework: FrameworkDefinition) -> str:
    return "\n".join(
        f"- **{s.key}** ({s.label}): {s.description}" for s in framework.sections
    )


def format_activities(activities: List[CareerStoryActivity], max_description: int = 200) -> str:
    if not activities:
        return "(none)"
    lines = []
    for activity in activities:
        line = f"- [{activity.id}] ({activity.source}, {activity.timestamp}) {activity.title}"
        if activity.description:
            desc = activity.description.strip().replace("\n", " ")
            if len(desc) > max_description:
                desc = desc[:max_description - 3] + "..."
            line += f"\n  {desc}"
        lines.append(line)
    return "\n".join(lines)


def format_phases(phases: List[Dict[str, object]]) -> str:
    if not phases:
        return ""
    lines = ["## Phases"]
    for phase in phases:
        name = phase.get("name", "Phase")
        summary = phase.get("summary", "")
        ids = phase.get("activity_ids") or []
        suffix = f" (activities: {', '.join(ids)})" if ids else ""
        lines.append(f"- **{name}**: {summary}{suffix}")
    return "\n".join(lines)


def format_persona(prompt_input: CareerStoryPromptInput) -> str:
    parts = []
    if prompt_input.persona_name:
        parts.append(f"Name: {prompt_input.persona_name}")
    if prompt_input.persona_role:
        parts.append(f"Role: {prompt_input.persona_role}")
    if prompt_input.persona_company:
        parts.append(f"Company: {prompt_input.persona_company}")
    return "\n".join(parts) if parts else "(not provided)"


def build_system_prompt(framework_name: str, archetype: Optional[str] = None) -> str:
    """System prompt, prefixed with archetype guidance when one is set."""
    system = CAREER_STORY_SYSTEM_PROMPT.format(framework_name=framework_name)
    guidance = ARCHETYPE_GUIDANCE.get(archetype) if archetype else None
    if guidance:
        system = f"## Story Archetype: {archetype.upper()}\n\n{guidance}\n\n---\n\n{system}"
    return system


def build_career_story_messages(prompt_input: CareerStoryPromptInput) -> List[Dict[str, str]]:
    """
    Build chat messages for career story generation.

    Args:
        prompt_input: CareerStoryPromptInput with entry, activities and options

    Returns:
        [system, user] chat messages
    """
    framework = prompt_input.framework

    entry_content = (prompt_input.full_content or prompt_input.entry_description or "").strip()

    user_prompt_formatted = ""
    if prompt_input.user_prompt:
        user_prompt_formatted = (
            "\n## Additional Instructions from User\n"
            f"> {prompt_input.user_prompt}\n"
        )

    user = CAREER_STORY_USER_PROMPT.format(
        framework_name=framework.name,
        sections_formatted=format_sections(framework),
        persona_formatted=format_persona(prompt_input),
        entry_title=prompt_input.entry_title,
        entry_content=entry_content or "(no written content)",
        phases_formatted=format_phases(prompt_input.phases),
        activities_formatted=format_activities(prompt_input.activities),
        style=prompt_input.style,
        style_guidance=WRITING_STYLE_GUIDANCE.get(
            prompt_input.style, WRITING_STYLE_GUIDANCE["professional"]
        ),
        user_prompt_formatted=user_prompt_formatted,
        sections_json_example=",\n".join(
            SECTION_JSON_TEMPLATE.format(key=key) for key in framework.section_keys
        ),
    )

    return [
        {"role": "system", "content": build_system_prompt(framework.name, prompt_input.archetype)},
        {"role": "user", "content": user},
    ]
