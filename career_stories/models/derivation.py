"""
Derivation Models

A derivation is an audience-specific rendering of one or more accepted
stories (interview answer, LinkedIn post, promotion packet, ...).
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DerivationKind = Literal["single", "packet"]
DerivationType = Literal[
    "interview",
    "linkedin",
    "resume",
    "one-on-one",
    "self-assessment",
    "team-share",
]
PacketType = Literal[
    "promotion",
    "annual-review",
    "skip-level",
    "portfolio-brief",
    "self-assessment",
    "one-on-one",
]

DERIVATION_TYPES = (
    "interview",
    "linkedin",
    "resume",
    "one-on-one",
    "self-assessment",
    "team-share",
)
PACKET_TYPES = (
    "promotion",
    "annual-review",
    "skip-level",
    "portfolio-brief",
    "self-assessment",
    "one-on-one",
)


class SourceSnapshot(BaseModel):
    """Frozen copy of a source story's metadata at derivation time."""

    story_id: str
    title: str
    framework: str
    archetype: Optional[str] = None
    metrics: Optional[str] = None
    activity_ids: List[str] = Field(default_factory=list)


class Derivation(BaseModel):
    """A persisted derivation artifact."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    kind: DerivationKind
    type: str  # DerivationType for single, PacketType for packet
    story_ids: List[str] = Field(default_factory=list)
    source_snapshots: List[SourceSnapshot] = Field(default_factory=list)
    text: str
    char_count: int = 0
    word_count: int = 0
    speaking_time_sec: Optional[int] = None
    tone: Optional[str] = None
    custom_prompt: Optional[str] = None
    feature_code: str
    credit_cost: int = 0
    model: Optional[str] = None
    processing_time_ms: int = 0
    created_at: Optional[datetime] = None
