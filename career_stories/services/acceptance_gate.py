"""
Acceptance Gate

Decides whether a draft narrative is usable. All gates must pass:

    REQUIRED_SECTIONS   every framework section has a non-empty summary
    MIN_PARTICIPATION   distinct cited member activities >=
                        max(1, ceil(ratio * cluster size))
    DUPLICATE_SECTIONS  no two section summaries are the same text
                        (compared case- and whitespace-insensitively)
    MAX_OBSERVER_RATIO  share of members the user only observed <= ratio;
                        checked only when the persona has emails or tool
                        identities to match against

Rejection is an expected outcome, so it is returned as a RejectedNarrative
value carrying the failed gate names, per-activity citation counts and
participation levels rather than raised. Hydration warnings ride along on
both outcomes.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from career_stories.config import MAX_OBSERVER_RATIO, MIN_PARTICIPATION_RATIO
from career_stories.frameworks import FrameworkDefinition
from career_stories.models import CorroboratingRef, Persona
from career_stories.services.cluster_hydrator import HydratedCluster, HydrationWarning
from career_stories.services.identity_matcher import IdentityMatcher, summarize
from career_stories.services.narrative_generator import DraftNarrative

logger = logging.getLogger(__name__)

GATE_REQUIRED_SECTIONS = "REQUIRED_SECTIONS"
GATE_MIN_PARTICIPATION = "MIN_PARTICIPATION"
GATE_DUPLICATE_SECTIONS = "DUPLICATE_SECTIONS"
GATE_MAX_OBSERVER_RATIO = "MAX_OBSERVER_RATIO"

OBSERVER_EDIT = (
    "You were more observer than initiator on this work. "
    "Consider highlighting your specific contributions."
)

VALIDATION_GATES_FAILED = "VALIDATION_GATES_FAILED"


@dataclass
class AcceptedNarrative:
    """A draft that cleared every gate."""

    draft: DraftNarrative
    corroborating_refs: List[CorroboratingRef] = field(default_factory=list)
    participation: Dict[str, int] = field(default_factory=dict)
    participation_levels: Dict[str, str] = field(default_factory=dict)
    warnings: List[HydrationWarning] = field(default_factory=list)
    processing_time_ms: int = 0

    accepted = True

    @property
    def tier(self) -> str:
        return self.draft.tier

    @property
    def quality(self) -> Dict[str, Any]:
        return self.draft.quality

    @property
    def suggested_edits(self) -> List[str]:
        return self.draft.suggested_edits


@dataclass
class RejectedNarrative:
    """A draft that failed one or more gates."""

    failed_gates: List[str]
    participation: Dict[str, int] = field(default_factory=dict)
    participation_levels: Dict[str, str] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    warnings: List[HydrationWarning] = field(default_factory=list)
    draft: Optional[DraftNarrative] = None
    processing_time_ms: int = 0

    accepted = False
    code = VALIDATION_GATES_FAILED

    @property
    def tier(self) -> Optional[str]:
        return self.draft.tier if self.draft else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "failed_gates": list(self.failed_gates),
            "participation": dict(self.participation),
            "participation_levels": dict(self.participation_levels),
            "details": dict(self.details),
            "warnings": [asdict(w) for w in self.warnings],
            "tier": self.tier,
        }


GateResult = Union[AcceptedNarrative, RejectedNarrative]


def _normalize(summary: str) -> str:
    return " ".join(summary.split()).lower()


class AcceptanceGate:
    """Evaluates drafts against evidence and quality thresholds."""

    def __init__(
        self,
        min_participation_ratio: float = MIN_PARTICIPATION_RATIO,
        max_observer_ratio: float = MAX_OBSERVER_RATIO,
    ):
        self.min_participation_ratio = min_participation_ratio
        self.max_observer_ratio = max_observer_ratio

    def required_participation(self, cluster_size: int) -> int:
        return max(1, math.ceil(self.min_participation_ratio * cluster_size))

    def evaluate(
        self,
        draft: DraftNarrative,
        cluster: HydratedCluster,
        framework: FrameworkDefinition,
        started_at: Optional[float] = None,
        persona: Optional[Persona] = None,
    ) -> GateResult:
        """
        Run every gate over the draft.

        Args:
            draft: Tier output
            cluster: The hydrated cluster the draft was generated from
            framework: Framework whose sections are required
            started_at: time.perf_counter() value when generation began
            persona: The author; enables participation levels and the
                observer-ratio gate

        Returns:
            AcceptedNarrative or RejectedNarrative
        """
        failed: List[str] = []
        details: Dict[str, Any] = {}

        empty_sections = [
            key for key in framework.section_keys
            if key not in draft.sections or not draft.sections[key].summary.strip()
        ]
        if empty_sections:
            failed.append(GATE_REQUIRED_SECTIONS)
            details["empty_sections"] = empty_sections

        participation = self.participation(draft, cluster)
        cited = sum(1 for count in participation.values() if count > 0)
        required = self.required_participation(cluster.size)
        if cited < required:
            failed.append(GATE_MIN_PARTICIPATION)
        details["participating_activities"] = cited
        details["required_participation"] = required

        duplicates = self._duplicate_sections(draft)
        if duplicates:
            failed.append(GATE_DUPLICATE_SECTIONS)
            details["duplicate_sections"] = duplicates

        levels: Dict[str, str] = {}
        matcher = IdentityMatcher(persona) if persona is not None else None
        if matcher is not None and matcher.has_identities:
            results = matcher.detect_all(cluster.activities)
            levels = {r.activity_id: r.level for r in results}
            summary = summarize(results)
            details["participation_summary"] = summary.to_dict()
            details["observer_ratio"] = round(summary.observer_ratio, 2)
            if summary.observer_ratio > self.max_observer_ratio:
                failed.append(GATE_MAX_OBSERVER_RATIO)
                details["max_observer_ratio"] = self.max_observer_ratio
            elif summary.observer > summary.initiator and OBSERVER_EDIT not in draft.suggested_edits:
                draft.suggested_edits.append(OBSERVER_EDIT)

        elapsed_ms = 0
        if started_at is not None:
            elapsed_ms = int((time.perf_counter() - started_at) * 1000)

        if failed:
            logger.info(
                f"Draft for cluster {cluster.cluster_id} rejected ({draft.tier} tier): "
                f"{', '.join(failed)}"
            )
            return RejectedNarrative(
                failed_gates=failed,
                participation=participation,
                participation_levels=levels,
                details=details,
                warnings=list(cluster.warnings),
                draft=draft,
                processing_time_ms=elapsed_ms,
            )

        return AcceptedNarrative(
            draft=draft,
            corroborating_refs=list(cluster.corroborating_refs),
            participation=participation,
            participation_levels=levels,
            warnings=list(cluster.warnings),
            processing_time_ms=elapsed_ms,
        )

    def participation(self, draft: DraftNarrative, cluster: HydratedCluster) -> Dict[str, int]:
        """Member activity id -> number of sections citing it (0 when uncited)."""
        counts = {activity_id: 0 for activity_id in cluster.activity_ids}
        for section in draft.sections.values():
            for activity_id in {item.activity_id for item in section.evidence}:
                if activity_id in counts:
                    counts[activity_id] += 1
        return counts

    def _duplicate_sections(self, draft: DraftNarrative) -> List[List[str]]:
        first_seen: Dict[str, str] = {}
        duplicates: List[List[str]] = []
        for key, section in draft.sections.items():
            normalized = _normalize(section.summary)
            if not normalized:
                continue
            if normalized in first_seen:
                duplicates.append([first_seen[normalized], key])
            else:
                first_seen[normalized] = key
        return duplicates
