"""
Polish Prompts

Rewrites one section of a pattern-matched narrative for clarity while
keeping its facts.

Used by: NarrativePolisher (services/narrative_polisher.py)
"""

from typing import Dict, List

from career_stories.frameworks import SECTION_TO_STAR_COMPONENT


POLISH_SYSTEM_PROMPT = '''You edit career stories so every sentence lands on first read. Cut anything the reader will not remember.
Improve the {label} section of a {framework} story for clarity and impact.
Keep the same facts and meaning, but make it flow naturally and sound professional.
Keep it concise (1-3 sentences).
{guideline}
Return ONLY the improved text, no explanation or quotes.'''


POLISH_GUIDELINES: Dict[str, str] = {
    "situation": "Focus on the business context and problem. What was at stake?",
    "task": "Clarify what specifically needed to be accomplished.",
    "action": "Highlight the technical approach and your individual contributions.",
    "result": "Quantify the impact where possible (metrics, time saved, etc.).",
    "learning": "State the lesson plainly and how it changed later work.",
    "obstacles": "Name the obstacle concretely and why it made the work harder.",
}


def build_polish_messages(framework: str, section_key: str, label: str, text: str) -> List[Dict[str, str]]:
    """Build chat messages for polishing one section summary."""
    guideline = POLISH_GUIDELINES.get(SECTION_TO_STAR_COMPONENT.get(section_key, section_key), "")
    system = POLISH_SYSTEM_PROMPT.format(
        label=label.upper(),
        framework=framework,
        guideline=guideline,
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": text},
    ]
