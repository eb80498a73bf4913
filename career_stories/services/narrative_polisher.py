"""
Narrative Polisher

Optional LLM rewrite of pattern-tier sections. Each section is polished on
its own; a section whose call fails keeps its original text. The outcome is
recorded on the draft as ``quality["polish"]`` with one status per section:

    not_requested   caller did not ask for polish
    not_configured  no language model configured
    skipped         summary too short to be worth a call
    success         improved text applied
    no_improvement  the model returned the text unchanged
    failed          the call failed; original text kept

The overall status is success when any section improved, failed when every
attempted section failed, and no_improvement otherwise.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from career_stories.errors import ServiceUnavailableError
from career_stories.frameworks import FrameworkDefinition
from career_stories.models import NarrativeSection
from career_stories.prompts.polish import build_polish_messages
from career_stories.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

POLISH_NOT_REQUESTED = "not_requested"
POLISH_NOT_CONFIGURED = "not_configured"
POLISH_SKIPPED = "skipped"
POLISH_SUCCESS = "success"
POLISH_NO_IMPROVEMENT = "no_improvement"
POLISH_FAILED = "failed"

MIN_POLISH_CHARS = 10
POLISH_MAX_TOKENS = 500
POLISH_TEMPERATURE = 0.7


@dataclass
class SectionPolish:
    status: str
    reason: Optional[str] = None


@dataclass
class PolishOutcome:
    status: str
    sections: Dict[str, SectionPolish] = field(default_factory=dict)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status,
            "sections": {key: s.status for key, s in self.sections.items()},
        }
        if self.reason:
            data["reason"] = self.reason
        return data


class NarrativePolisher:
    """Rewrites draft sections through the language model, one call per section."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    def polish(self, draft, framework: FrameworkDefinition, requested: bool = True) -> PolishOutcome:
        """
        Polish ``draft`` in place and record the outcome in ``draft.quality``.

        Never raises for model failures.
        """
        outcome = self._polish(draft, framework, requested)
        draft.quality["polish"] = outcome.to_dict()
        return outcome

    def _polish(self, draft, framework: FrameworkDefinition, requested: bool) -> PolishOutcome:
        if not requested:
            return PolishOutcome(status=POLISH_NOT_REQUESTED)
        if not self.llm.is_available:
            return PolishOutcome(status=POLISH_NOT_CONFIGURED, reason="Language model not configured")

        labels = {s.key: s.label for s in framework.sections}
        results: Dict[str, SectionPolish] = {}
        for key, section in list(draft.sections.items()):
            results[key] = self._polish_section(draft, framework, key, labels.get(key, key), section)

        attempted = [r for r in results.values() if r.status != POLISH_SKIPPED]
        if any(r.status == POLISH_SUCCESS for r in attempted):
            status = POLISH_SUCCESS
        elif attempted and all(r.status == POLISH_FAILED for r in attempted):
            status = POLISH_FAILED
        else:
            status = POLISH_NO_IMPROVEMENT

        polished = sum(1 for r in results.values() if r.status == POLISH_SUCCESS)
        logger.info(f"Polished {polished}/{len(results)} sections ({status})")
        return PolishOutcome(
            status=status,
            sections=results,
            reason=attempted[0].reason if status == POLISH_FAILED else None,
        )

    def _polish_section(
        self,
        draft,
        framework: FrameworkDefinition,
        key: str,
        label: str,
        section: NarrativeSection,
    ) -> SectionPolish:
        text = section.summary.strip()
        if len(text) < MIN_POLISH_CHARS:
            return SectionPolish(POLISH_SKIPPED, "Text too short to polish")

        messages = build_polish_messages(framework.name, key, label, text)
        try:
            improved = self.llm.complete(
                messages,
                temperature=POLISH_TEMPERATURE,
                max_tokens=POLISH_MAX_TOKENS,
            )
        except ServiceUnavailableError as e:
            logger.info(f"Polish failed for section '{key}', keeping original: {e.message}")
            return SectionPolish(POLISH_FAILED, e.message)

        if improved == text:
            return SectionPolish(POLISH_NO_IMPROVEMENT, "Model returned the same text")

        draft.sections[key] = NarrativeSection(summary=improved, evidence=section.evidence)
        return SectionPolish(POLISH_SUCCESS)
