"""
STARExtractor: heuristic narrative components from activity text.

No language model involved. Each component is pulled from activity titles,
descriptions and raw tool payloads with regex cues, and carries the ids of
the activities it came from plus a confidence level:

    situation  earliest problem-language activity, else first ticket with a
               description, else the earliest title
    task       ticket titles, else design-doc titles, else an action title
    action     PR/commit titles (with a description excerpt), else any
               action-language activity
    result     latest outcome-language activity, else raw metrics
               (+adds/-dels, story points), else a count of tickets and PRs
    learning   latest reflection-language activity, else a prompt to reflect
    obstacles  blocker-language activities, else problem-language activities
               not already used for the situation

Every extractor swallows its own errors and returns an empty component, so
extraction as a whole never raises.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from career_stories.models import Activity

logger = logging.getLogger(__name__)


# Confidence levels
CONFIDENCE_HIGH = 0.8
CONFIDENCE_MEDIUM = 0.5
CONFIDENCE_LOW = 0.3

MAX_COMPONENT_CHARS = 600
ACTION_DESCRIPTION_CHARS = 100

PATTERNS = {
    "situation": re.compile(
        r"\b(need|problem|issue|slow|broken|currently|before|was|had|required|must|should|"
        r"failing|error|bug|outage|incident|blocker)",
        re.IGNORECASE,
    ),
    "result": re.compile(
        r"(reduc\w*|improv\w*|increas\w*|from .{1,30} to|\bcloses?\b|\bfix(?:ed|es)?\b|"
        r"resolv\w*|complet\w*|deliver(?:ed)?|ship(?:ped)?|launch(?:ed)?|\d+%|\d+x\b|"
        r"\d+ ?(?:ms|seconds?|minutes?|hours?|days?|users?|requests?)\b)",
        re.IGNORECASE,
    ),
    "action": re.compile(
        r"\b(implement|add|creat|buil|develop|design|refactor|optimiz|updat|configur|"
        r"deploy|migrat|integrat)",
        re.IGNORECASE,
    ),
    "learning": re.compile(
        r"\b(learn\w*|lessons?|retro\w*|post-?mortem|takeaways?|next time|in hindsight|"
        r"realiz\w*)",
        re.IGNORECASE,
    ),
    "obstacles": re.compile(
        r"\b(block\w*|depend\w*|risk\w*|constraint\w*|delay\w*|conflict\w*|"
        r"limitation\w*|legacy|tech debt|waiting on|escalat\w*)",
        re.IGNORECASE,
    ),
}

SUGGESTED_EDITS = {
    "situation": "Add context: What was the business problem or need?",
    "task": "Clarify task: What specifically were you asked to do?",
    "action": "Detail actions: What technical approach did you take?",
    "result": "Quantify results: Add metrics like time saved, performance improvement, or business impact",
    "learning": "Add reflection: What did you learn, and what would you do differently?",
    "obstacles": "Name the obstacles: What blocked or slowed the work, and how did you get past it?",
}


@dataclass
class STARComponent:
    text: str = ""
    sources: List[str] = field(default_factory=list)
    confidence: float = 0.0

    @property
    def filled(self) -> bool:
        return bool(self.text.strip())


@dataclass
class ExtractedComponents:
    """All heuristic components for one set of activities."""

    components: Dict[str, STARComponent] = field(default_factory=dict)

    def get(self, name: str) -> STARComponent:
        return self.components.get(name) or STARComponent()

    @property
    def overall_confidence(self) -> float:
        core = [self.get(name).confidence for name in ("situation", "task", "action", "result")]
        return sum(core) / len(core)

    @property
    def score(self) -> int:
        """0-100: half confidence, half completeness of the four core components."""
        filled = sum(
            1 for name in ("situation", "task", "action", "result") if self.get(name).filled
        )
        return round(self.overall_confidence * 50 + filled / 4 * 50)

    def suggested_edits(self, names: Sequence[str]) -> List[str]:
        """Editing hints for the named components that came out low-confidence."""
        return [
            SUGGESTED_EDITS[name]
            for name in names
            if name in SUGGESTED_EDITS and self.get(name).confidence < CONFIDENCE_MEDIUM
        ]


def _text(activity: Activity) -> str:
    return f"{activity.title} {activity.description or ''}"


def _clip(text: str, limit: int = MAX_COMPONENT_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[:limit - 3].rstrip() + "..."
    return text


class STARExtractor:
    """Regex-driven component extraction over chronologically sorted activities."""

    def extract(self, activities: Sequence[Activity]) -> ExtractedComponents:
        ordered = sorted(activities, key=lambda a: (a.timestamp, a.id))
        situation = self._safe("situation", self._extract_situation, ordered)
        extracted = ExtractedComponents(components={
            "situation": situation,
            "task": self._safe("task", self._extract_task, ordered),
            "action": self._safe("action", self._extract_action, ordered),
            "result": self._safe("result", self._extract_result, ordered),
            "learning": self._safe("learning", self._extract_learning, ordered),
        })
        extracted.components["obstacles"] = self._safe(
            "obstacles", lambda acts: self._extract_obstacles(acts, situation), ordered
        )
        return extracted

    def _safe(self, name, extractor, activities: List[Activity]) -> STARComponent:
        try:
            return extractor(activities)
        except Exception as e:
            logger.debug(f"{name} extraction failed: {e}")
            return STARComponent()

    def _extract_situation(self, activities: List[Activity]) -> STARComponent:
        for activity in activities:
            if PATTERNS["situation"].search(_text(activity)):
                return STARComponent(
                    text=_clip(activity.description or activity.title),
                    sources=[activity.id],
                    confidence=CONFIDENCE_HIGH,
                )

        for activity in activities:
            if activity.source == "jira" and activity.description:
                return STARComponent(
                    text=_clip(activity.description),
                    sources=[activity.id],
                    confidence=CONFIDENCE_MEDIUM,
                )

        if activities:
            return STARComponent(
                text=_clip(activities[0].title),
                sources=[activities[0].id],
                confidence=CONFIDENCE_LOW,
            )
        return STARComponent()

    def _extract_task(self, activities: List[Activity]) -> STARComponent:
        tickets = [a for a in activities if a.source == "jira"]
        if tickets:
            return STARComponent(
                text=_clip("; ".join(a.title for a in tickets)),
                sources=[a.id for a in tickets],
                confidence=CONFIDENCE_HIGH,
            )

        docs = [a for a in activities if a.source == "confluence"]
        if docs:
            return STARComponent(
                text=_clip("; ".join(a.title for a in docs)),
                sources=[a.id for a in docs],
                confidence=CONFIDENCE_MEDIUM,
            )

        for activity in activities:
            if PATTERNS["action"].search(activity.title):
                return STARComponent(
                    text=_clip(activity.title),
                    sources=[activity.id],
                    confidence=CONFIDENCE_LOW,
                )
        return STARComponent()

    def _extract_action(self, activities: List[Activity]) -> STARComponent:
        code_changes = [a for a in activities if a.source == "github"]
        if code_changes:
            lines = []
            for activity in code_changes:
                desc = ""
                if activity.description:
                    desc = f": {activity.description.strip()[:ACTION_DESCRIPTION_CHARS]}"
                lines.append(f"{activity.title}{desc}")
            return STARComponent(
                text=_clip("; ".join(lines)),
                sources=[a.id for a in code_changes],
                confidence=CONFIDENCE_HIGH,
            )

        matching = [a for a in activities if PATTERNS["action"].search(_text(a))]
        if matching:
            return STARComponent(
                text=_clip("; ".join(a.title for a in matching)),
                sources=[a.id for a in matching],
                confidence=CONFIDENCE_MEDIUM,
            )
        return STARComponent()

    def _extract_result(self, activities: List[Activity]) -> STARComponent:
        for activity in reversed(activities):
            if PATTERNS["result"].search(_text(activity)):
                return STARComponent(
                    text=_clip(activity.description or activity.title),
                    sources=[activity.id],
                    confidence=CONFIDENCE_HIGH,
                )

        metrics = extract_raw_metrics(activities)
        if metrics:
            return STARComponent(
                text=metrics,
                sources=[a.id for a in activities],
                confidence=CONFIDENCE_MEDIUM,
            )

        pr_count = sum(1 for a in activities if a.source == "github")
        ticket_count = sum(1 for a in activities if a.source == "jira")
        if pr_count or ticket_count:
            parts = []
            if ticket_count:
                parts.append(f"Completed {ticket_count} ticket{'s' if ticket_count > 1 else ''}")
            if pr_count:
                parts.append(f"merged {pr_count} PR{'s' if pr_count > 1 else ''}")
            return STARComponent(
                text=", ".join(parts),
                sources=[a.id for a in activities],
                confidence=CONFIDENCE_LOW,
            )
        return STARComponent()

    def _extract_learning(self, activities: List[Activity]) -> STARComponent:
        for activity in reversed(activities):
            if PATTERNS["learning"].search(_text(activity)):
                return STARComponent(
                    text=_clip(activity.description or activity.title),
                    sources=[activity.id],
                    confidence=CONFIDENCE_MEDIUM,
                )

        if activities:
            tools = ", ".join(dict.fromkeys(a.source for a in activities))
            return STARComponent(
                text=(
                    f"Carrying this work from \"{_clip(activities[0].title, 80)}\" through "
                    f"\"{_clip(activities[-1].title, 80)}\" across {tools} is worth reflecting "
                    f"on: what would you repeat, and what would you change?"
                ),
                sources=[],
                confidence=CONFIDENCE_LOW,
            )
        return STARComponent()

    def _extract_obstacles(
        self,
        activities: List[Activity],
        situation: STARComponent,
    ) -> STARComponent:
        blockers = [a for a in activities if PATTERNS["obstacles"].search(_text(a))]
        if blockers:
            return STARComponent(
                text=_clip("; ".join(a.title for a in blockers)),
                sources=[a.id for a in blockers],
                confidence=CONFIDENCE_MEDIUM,
            )

        used = set(situation.sources)
        problems = [
            a for a in activities
            if a.id not in used and PATTERNS["situation"].search(_text(a))
        ]
        if problems:
            return STARComponent(
                text=_clip("; ".join(a.title for a in problems)),
                sources=[a.id for a in problems],
                confidence=CONFIDENCE_LOW,
            )
        return STARComponent()


def extract_raw_metrics(activities: Sequence[Activity]) -> Optional[str]:
    """Line deltas and story points from tool payloads, deduplicated."""
    metrics: List[str] = []
    for activity in activities:
        raw = activity.raw_data or {}
        additions = raw.get("additions")
        deletions = raw.get("deletions")
        if additions and deletions:
            metrics.append(f"+{additions}/-{deletions} lines")
        points = raw.get("storyPoints") or raw.get("story_points")
        if points:
            metrics.append(f"{points} story points")

    if not metrics:
        return None
    return ", ".join(dict.fromkeys(metrics))
