"""
Identity Matcher

Works out how the user took part in each activity by comparing the people
fields of the activity's raw payload (assignee, reporter, PR author, page
creator, meeting organizer, ...) against the persona's emails and per-tool
identities.

Levels, strongest first: initiator, contributor, mentioned, observer. An
activity with no matching signal counts as observed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from career_stories.models import Activity, Persona

logger = logging.getLogger(__name__)

INITIATOR = "initiator"
CONTRIBUTOR = "contributor"
MENTIONED = "mentioned"
OBSERVER = "observer"
PARTICIPATION_LEVELS = (INITIATOR, CONTRIBUTOR, MENTIONED, OBSERVER)

# signal -> (level, weight); the heaviest matching signal decides the level
SIGNAL_WEIGHTS: Dict[str, tuple] = {
    "jira-assignee": (INITIATOR, 10),
    "jira-reporter": (INITIATOR, 9),
    "github-author": (INITIATOR, 10),
    "confluence-creator": (INITIATOR, 10),
    "figma-owner": (INITIATOR, 10),
    "google-organizer": (INITIATOR, 10),
    "google-owner": (INITIATOR, 10),
    "outlook-organizer": (INITIATOR, 10),
    "slack-author": (INITIATOR, 10),
    "github-reviewer": (CONTRIBUTOR, 7),
    "confluence-editor": (CONTRIBUTOR, 7),
    "figma-editor": (CONTRIBUTOR, 7),
    "slack-replier": (CONTRIBUTOR, 6),
    "jira-mentioned": (MENTIONED, 4),
    "github-mentioned": (MENTIONED, 4),
    "slack-mentioned": (MENTIONED, 4),
    "jira-watcher": (OBSERVER, 2),
    "confluence-watcher": (OBSERVER, 2),
    "google-attendee": (OBSERVER, 3),
    "outlook-attendee": (OBSERVER, 3),
}

# source -> [(raw_data field, signal)]; list fields match if any element matches
SOURCE_FIELDS: Dict[str, List[tuple]] = {
    "jira": [
        ("assignee", "jira-assignee"),
        ("reporter", "jira-reporter"),
        ("watchers", "jira-watcher"),
        ("mentions", "jira-mentioned"),
    ],
    "github": [
        ("author", "github-author"),
        ("reviewers", "github-reviewer"),
        ("requestedReviewers", "github-reviewer"),
        ("mentions", "github-mentioned"),
    ],
    "confluence": [
        ("creator", "confluence-creator"),
        ("lastModifiedBy", "confluence-editor"),
        ("watchers", "confluence-watcher"),
    ],
    "slack": [
        ("author", "slack-author"),
        ("userId", "slack-author"),
        ("mentions", "slack-mentioned"),
    ],
    "google": [
        ("organizer", "google-organizer"),
        ("owner", "google-owner"),
        ("attendees", "google-attendee"),
    ],
    "outlook": [
        ("organizer", "outlook-organizer"),
        ("attendees", "outlook-attendee"),
    ],
    "figma": [
        ("owner", "figma-owner"),
        ("creator", "figma-owner"),
        ("editors", "figma-editor"),
    ],
}


@dataclass
class ParticipationResult:
    activity_id: str
    level: str = OBSERVER
    signals: List[str] = field(default_factory=list)


@dataclass
class ParticipationSummary:
    """Counts per level across a cluster."""

    initiator: int = 0
    contributor: int = 0
    mentioned: int = 0
    observer: int = 0

    @property
    def total(self) -> int:
        return self.initiator + self.contributor + self.mentioned + self.observer

    @property
    def observer_ratio(self) -> float:
        return self.observer / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, int]:
        return {level: getattr(self, level) for level in PARTICIPATION_LEVELS}


class IdentityMatcher:
    """Matches activity payloads against one persona's identities."""

    def __init__(self, persona: Persona):
        self.persona = persona
        self._emails = {e.strip().lower() for e in persona.emails if e and e.strip()}
        self._tool_ids: Dict[str, Set[str]] = {
            tool: _identity_values(identity)
            for tool, identity in persona.identities.items()
        }

    @property
    def has_identities(self) -> bool:
        """False when the persona gives nothing to match against."""
        return bool(self._emails) or any(self._tool_ids.values())

    def detect(self, activity: Activity) -> ParticipationResult:
        signals = self._signals(activity)

        level = OBSERVER
        best = 0
        for signal in signals:
            signal_level, weight = SIGNAL_WEIGHTS[signal]
            if weight > best:
                best = weight
                level = signal_level

        return ParticipationResult(activity_id=activity.id, level=level, signals=signals)

    def detect_all(self, activities: Sequence[Activity]) -> List[ParticipationResult]:
        results = [self.detect(a) for a in activities]
        logger.debug(
            f"Participation for {len(results)} activities: "
            f"{summarize(results).to_dict()}"
        )
        return results

    def _signals(self, activity: Activity) -> List[str]:
        raw = activity.raw_data or {}
        tool = activity.source.lower()
        signals: List[str] = []
        for raw_field, signal in SOURCE_FIELDS.get(tool, []):
            value = raw.get(raw_field)
            if self._matches_any(value, tool) and signal not in signals:
                signals.append(signal)

        if tool == "slack" and raw.get("isReply") and "slack-author" in signals:
            signals.append("slack-replier")
        return signals

    def _matches_any(self, value: Any, tool: str) -> bool:
        if isinstance(value, (list, tuple)):
            return any(self._matches(v, tool) for v in value)
        return self._matches(value, tool)

    def _matches(self, value: Any, tool: str) -> bool:
        if isinstance(value, dict):
            # payloads often nest people as {"emailAddress": ..., "accountId": ...}
            return any(self._matches(v, tool) for v in value.values())
        if value is None or value == "" or isinstance(value, bool):
            return False
        text = str(value).strip().lower()
        return text in self._emails or text in self._tool_ids.get(tool, set())


def summarize(results: Iterable[ParticipationResult]) -> ParticipationSummary:
    summary = ParticipationSummary()
    for result in results:
        setattr(summary, result.level, getattr(summary, result.level) + 1)
    return summary


def _identity_values(identity: Optional[Dict[str, Any]]) -> Set[str]:
    if not isinstance(identity, dict):
        return set()
    return {
        str(v).strip().lower()
        for v in identity.values()
        if isinstance(v, (str, int)) and not isinstance(v, bool) and str(v).strip()
    }
