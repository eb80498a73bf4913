"""
Career Stories Services

Service layer: activity storage, clustering, narrative generation,
identity matching, acceptance gating, stories and derivations.
"""

from .acceptance_gate import (
    AcceptanceGate,
    AcceptedNarrative,
    GateResult,
    RejectedNarrative,
)
from .activity_clustering import ActivityClusterer, CandidateCluster, ClusteringResult
from .activity_service import ActivityService
from .cluster_hydrator import ClusterHydrator, HydratedCluster, HydrationWarning
from .cluster_service import ClusterService
from .credit_ledger import Affordability, CreditLedger
from .derivation_service import DerivationService
from .identity_matcher import IdentityMatcher, ParticipationResult, ParticipationSummary
from .llm_client import LLMClient
from .narrative_generator import (
    DraftNarrative,
    GenerationContext,
    LanguageModelTier,
    NarrativeGenerator,
    NarrativeTier,
    PatternMatchingTier,
    TemplateTier,
)
from .narrative_polisher import NarrativePolisher, PolishOutcome
from .persona_service import PersonaService
from .ref_extractor import RefExtractor
from .star_extractor import STARExtractor
from .story_service import CareerStoryService, GenerationOutcome

__all__ = [
    "AcceptanceGate",
    "AcceptedNarrative",
    "ActivityClusterer",
    "ActivityService",
    "Affordability",
    "CandidateCluster",
    "CareerStoryService",
    "ClusterHydrator",
    "ClusterService",
    "ClusteringResult",
    "CreditLedger",
    "DerivationService",
    "DraftNarrative",
    "GateResult",
    "GenerationContext",
    "GenerationOutcome",
    "HydratedCluster",
    "HydrationWarning",
    "IdentityMatcher",
    "LLMClient",
    "LanguageModelTier",
    "NarrativeGenerator",
    "NarrativePolisher",
    "NarrativeTier",
    "ParticipationResult",
    "ParticipationSummary",
    "PatternMatchingTier",
    "PersonaService",
    "PolishOutcome",
    "RefExtractor",
    "RejectedNarrative",
    "STARExtractor",
    "TemplateTier",
]
