"""
Narrative Generator

Turns a hydrated cluster into a framework-structured draft narrative using
three tiers, tried in order until one yields a draft:

    1. LanguageModelTier    LLM call over the journal entry's rich content
    2. PatternMatchingTier  regex heuristics over activity text
    3. TemplateTier         section scaffolding from cluster metrics

A tier that is unavailable, times out, errors or returns unusable output
yields None and the next tier runs. The template tier always succeeds, so
the only hard failure is a cluster with no activities (NO_ACTIVITIES).
Drafts are not accepted here; that is the AcceptanceGate's job.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from career_stories.errors import NoActivitiesError, ServiceUnavailableError
from career_stories.frameworks import SECTION_TO_STAR_COMPONENT, FrameworkDefinition
from career_stories.models import (
    EvidenceItem,
    GenerationOptions,
    JournalEntry,
    NarrativeSection,
    Persona,
)
from career_stories.prompts.career_story import (
    CareerStoryActivity,
    CareerStoryPromptInput,
    build_career_story_messages,
)
from career_stories.services.cluster_hydrator import HydratedCluster
from career_stories.services.llm_client import LLMClient
from career_stories.services.narrative_polisher import NarrativePolisher
from career_stories.services.star_extractor import STARExtractor

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Career Story"
MAX_TITLE_CHARS = 80


@dataclass
class GenerationContext:
    """Everything a tier may use to produce a draft."""

    cluster: HydratedCluster
    framework: FrameworkDefinition
    options: GenerationOptions = field(default_factory=GenerationOptions)
    persona: Optional[Persona] = None
    journal_entry: Optional[JournalEntry] = None


@dataclass
class DraftNarrative:
    """Tier output awaiting the acceptance gate."""

    title: str
    framework: str
    tier: str
    sections: Dict[str, NarrativeSection] = field(default_factory=dict)
    role: Optional[str] = None
    suggested_edits: List[str] = field(default_factory=list)
    quality: Dict[str, Any] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def evidence_activity_ids(self) -> List[str]:
        """Distinct cited activity ids in section order."""
        ids: Dict[str, None] = {}
        for section in self.sections.values():
            for item in section.evidence:
                ids[item.activity_id] = None
        return list(ids)


def _clip_title(title: str) -> str:
    title = " ".join(title.split())
    if len(title) > MAX_TITLE_CHARS:
        return title[:MAX_TITLE_CHARS - 3].rstrip() + "..."
    return title


class NarrativeTier(ABC):
    """One generation strategy."""

    name: str = ""

    @abstractmethod
    def attempt(self, context: GenerationContext) -> Optional[DraftNarrative]:
        """Return a draft, or None when this tier cannot produce one."""
        pass


class LanguageModelTier(NarrativeTier):
    """
    LLM generation from a journal entry's full content or phases.

    Skipped when there is no rich content, the caller opted out, or no model
    is configured.
    """

    name = "llm"

    def __init__(self, llm: Optional[LLMClient] = None, temperature: float = 0.7):
        self.llm = llm or LLMClient()
        self.temperature = temperature

    def attempt(self, context: GenerationContext) -> Optional[DraftNarrative]:
        entry = context.journal_entry
        if not context.options.use_llm:
            return None
        if entry is None or not entry.has_rich_content:
            logger.debug("No rich journal content, skipping LLM tier")
            return None
        if not self.llm.is_available:
            logger.info("Language model not configured, skipping LLM tier")
            return None

        messages = build_career_story_messages(self._build_prompt_input(context))
        try:
            data = self.llm.generate_json(messages, temperature=self.temperature)
        except ServiceUnavailableError as e:
            logger.info(f"LLM tier unavailable, falling through: {e.message}")
            return None

        draft = self.parse_response(data, context)
        if draft is None:
            logger.info("LLM tier returned malformed narrative, falling through")
        return draft

    def _build_prompt_input(self, context: GenerationContext) -> CareerStoryPromptInput:
        entry = context.journal_entry
        persona = context.persona
        return CareerStoryPromptInput(
            framework=context.framework,
            entry_title=entry.title,
            entry_description=entry.description,
            full_content=entry.full_content,
            phases=[phase.model_dump() for phase in entry.phases],
            activities=[
                CareerStoryActivity(
                    id=a.id,
                    source=a.source,
                    title=a.title,
                    timestamp=a.timestamp.date().isoformat(),
                    description=a.description,
                )
                for a in context.cluster.activities
            ],
            style=context.options.style,
            archetype=context.options.archetype,
            user_prompt=context.options.user_prompt,
            persona_name=persona.display_name if persona else None,
            persona_role=persona.role if persona else None,
            persona_company=persona.company if persona else None,
        )

    def parse_response(
        self,
        data: Dict[str, Any],
        context: GenerationContext,
    ) -> Optional[DraftNarrative]:
        """
        Map the LLM's JSON onto the framework sections.

        Returns None when any framework section is missing. Evidence ids are
        restricted to cluster members. A section without an "evidence" key
        cites the journal entry's activities in the cluster; an explicit
        empty list is kept as a user-stated claim.
        """
        raw_sections = data.get("sections")
        if not isinstance(raw_sections, dict):
            return None

        member_ids = set(context.cluster.activity_ids)
        entry = context.journal_entry
        default_evidence = [
            aid for aid in dict.fromkeys(entry.activity_ids if entry else [])
            if aid in member_ids
        ]

        sections: Dict[str, NarrativeSection] = {}
        for key in context.framework.section_keys:
            raw = raw_sections.get(key)
            if isinstance(raw, str):
                raw = {"summary": raw}
            if not isinstance(raw, dict):
                return None
            summary = raw.get("summary")
            if not isinstance(summary, str):
                return None

            if "evidence" not in raw:
                evidence = [EvidenceItem(activity_id=aid) for aid in default_evidence]
            else:
                evidence = self._parse_evidence(raw.get("evidence"), member_ids)
            sections[key] = NarrativeSection(summary=summary.strip(), evidence=evidence)

        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            title = entry.title if entry and entry.title else DEFAULT_TITLE
        role = data.get("role")

        return DraftNarrative(
            title=_clip_title(title),
            framework=context.framework.name,
            tier=self.name,
            sections=sections,
            role=role.strip() if isinstance(role, str) and role.strip() else None,
            quality={"source": "language_model", "model": self.llm.model},
        )

    def _parse_evidence(self, raw_evidence: Any, member_ids: set) -> List[EvidenceItem]:
        if not isinstance(raw_evidence, list):
            return []
        evidence: List[EvidenceItem] = []
        seen = set()
        for item in raw_evidence:
            if isinstance(item, str):
                item = {"activityId": item}
            if not isinstance(item, dict):
                continue
            activity_id = item.get("activityId") or item.get("activity_id")
            if activity_id not in member_ids or activity_id in seen:
                continue
            seen.add(activity_id)
            description = item.get("description")
            evidence.append(EvidenceItem(
                activity_id=activity_id,
                description=description if isinstance(description, str) else None,
            ))
        return evidence


class PatternMatchingTier(NarrativeTier):
    """
    Heuristic generation with STARExtractor.

    Each framework section is filled from the STAR component it maps to.
    Yields None when any section would be left empty. With
    ``options.polish`` the filled sections are rewritten by the polisher.
    """

    name = "pattern"

    def __init__(
        self,
        extractor: Optional[STARExtractor] = None,
        polisher: Optional[NarrativePolisher] = None,
    ):
        self.extractor = extractor or STARExtractor()
        self.polisher = polisher

    def attempt(self, context: GenerationContext) -> Optional[DraftNarrative]:
        try:
            return self._generate(context)
        except Exception as e:
            logger.warning(f"Pattern tier failed: {e}", exc_info=True)
            return None

    def _generate(self, context: GenerationContext) -> Optional[DraftNarrative]:
        cluster = context.cluster
        extracted = self.extractor.extract(cluster.activities)

        sections: Dict[str, NarrativeSection] = {}
        components_used = []
        for key in context.framework.section_keys:
            component_name = SECTION_TO_STAR_COMPONENT.get(key, key)
            component = extracted.get(component_name)
            if not component.filled:
                logger.info(f"Pattern tier could not fill section '{key}', falling through")
                return None
            components_used.append(component_name)
            sections[key] = NarrativeSection(
                summary=component.text,
                evidence=[EvidenceItem(activity_id=aid) for aid in component.sources],
            )

        draft = DraftNarrative(
            title=_clip_title(self._title(cluster)),
            framework=context.framework.name,
            tier=self.name,
            sections=sections,
            suggested_edits=extracted.suggested_edits(list(dict.fromkeys(components_used))),
            quality={
                "source": "pattern_matching",
                "confidence": round(extracted.overall_confidence, 2),
                "score": extracted.score,
            },
        )
        if self.polisher is not None:
            self.polisher.polish(draft, context.framework, requested=context.options.polish)
        return draft

    def _title(self, cluster: HydratedCluster) -> str:
        if cluster.name:
            return cluster.name
        for activity in cluster.activities:
            if activity.source == "jira":
                return activity.title
        return cluster.activities[0].title if cluster.activities else DEFAULT_TITLE


class TemplateTier(NarrativeTier):
    """
    Scaffold built only from section labels and cluster metrics.

    Always succeeds. The first section cites every member activity so the
    scaffold stays traceable to its sources.
    """

    name = "template"

    def attempt(self, context: GenerationContext) -> Optional[DraftNarrative]:
        cluster = context.cluster
        metrics = cluster.metrics
        count = len(cluster.activities)
        tools = ", ".join(metrics.tool_types) or "your tools"
        span = ""
        if metrics.date_range is not None:
            start = metrics.date_range.start.strftime("%b %d, %Y")
            end = metrics.date_range.end.strftime("%b %d, %Y")
            span = f" from {start}" if start == end else f" between {start} and {end}"

        sections: Dict[str, NarrativeSection] = {}
        for index, section in enumerate(context.framework.sections):
            summary = (
                f"{section.label}: {section.description}. "
                f"Based on {count} {'activity' if count == 1 else 'activities'} in {tools}{span}. "
                f"{section.prompt}"
            )
            evidence = []
            if index == 0:
                evidence = [EvidenceItem(activity_id=a.id) for a in cluster.activities]
            sections[section.key] = NarrativeSection(summary=summary, evidence=evidence)

        title = cluster.name or f"Work across {tools}"
        return DraftNarrative(
            title=_clip_title(title),
            framework=context.framework.name,
            tier=self.name,
            sections=sections,
            suggested_edits=[
                f"Write the {s.label} section: {s.prompt}" for s in context.framework.sections
            ],
            quality={"source": "template"},
        )


class NarrativeGenerator:
    """Runs the tier chain for one generation request."""

    def __init__(
        self,
        tiers: Optional[List[NarrativeTier]] = None,
        llm: Optional[LLMClient] = None,
    ):
        if tiers is None:
            llm = llm or LLMClient()
            tiers = [
                LanguageModelTier(llm),
                PatternMatchingTier(polisher=NarrativePolisher(llm)),
                TemplateTier(),
            ]
        self.tiers = tiers

    def generate(self, context: GenerationContext) -> DraftNarrative:
        """
        Produce a draft from the first tier that succeeds.

        Raises:
            NoActivitiesError: the cluster has no activities
            ServiceUnavailableError: every configured tier declined
        """
        if not context.cluster.activities:
            raise NoActivitiesError(
                "Cannot generate a narrative for a cluster with no activities",
                {"cluster_id": context.cluster.cluster_id},
            )

        attempts = []
        for tier in self.tiers:
            try:
                draft = tier.attempt(context)
            except Exception as e:
                logger.warning(f"Tier '{tier.name}' raised, falling through: {e}", exc_info=True)
                attempts.append({"tier": tier.name, "outcome": "error", "error": str(e)})
                continue

            if draft is None:
                attempts.append({"tier": tier.name, "outcome": "skipped"})
                continue

            attempts.append({"tier": tier.name, "outcome": "used"})
            draft.diagnostics["attempts"] = attempts
            logger.info(
                f"Generated {context.framework.name} draft for cluster "
                f"{context.cluster.cluster_id} with {tier.name} tier"
            )
            return draft

        raise ServiceUnavailableError(
            "All narrative generation tiers failed",
            {"attempts": attempts},
        )
