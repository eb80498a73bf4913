"""
Career Stories Models

Pydantic models for activities, clusters, journal entries and narratives.
Derivation models live in .derivation and are re-exported here.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Re-export derivation models
from .derivation import (
    DERIVATION_TYPES,
    PACKET_TYPES,
    Derivation,
    DerivationKind,
    DerivationType,
    PacketType,
    SourceSnapshot,
)

FrameworkName = Literal["STAR", "STARL", "CAR", "PAR", "SAR", "SOAR", "SHARE", "CARL"]
WritingStyle = Literal["professional", "casual", "technical", "storytelling"]
WRITING_STYLES = ("professional", "casual", "technical", "storytelling")
StoryArchetype = Literal[
    "firefighter",
    "architect",
    "diplomat",
    "multiplier",
    "detective",
    "pioneer",
    "turnaround",
    "preventer",
]
Visibility = Literal["private", "workspace", "network"]
GenerationTier = Literal["llm", "pattern", "template"]

USER_PROMPT_MAX_LENGTH = 500
CLUSTER_NAME_MAX_LENGTH = 200


class DateRange(BaseModel):
    """Inclusive time window."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class ActivityCreate(BaseModel):
    """Activity as delivered by a tool integration, before it is stored."""

    source: str  # github, jira, confluence, figma, slack, outlook, google, ...
    source_id: str
    source_url: Optional[str] = None
    title: str
    description: Optional[str] = None
    timestamp: datetime
    refs: Optional[List[str]] = None  # None = extract from content
    raw_data: Optional[Dict[str, Any]] = None


class Activity(BaseModel):
    """A single unit of tool activity owned by a user."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    source: str
    source_id: str
    source_url: Optional[str] = None
    title: str
    description: Optional[str] = None
    timestamp: datetime
    refs: List[str] = Field(default_factory=list)
    raw_data: Optional[Dict[str, Any]] = None
    cluster_id: Optional[str] = None


class ClusterMetrics(BaseModel):
    """Derived summary of a cluster's membership."""

    activity_count: int = 0
    ref_count: int = 0
    tool_types: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None


class Cluster(BaseModel):
    """A persisted group of related activities."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: Optional[str] = None
    activity_ids: List[str] = Field(default_factory=list)
    shared_refs: List[str] = Field(default_factory=list)
    metrics: ClusterMetrics = Field(default_factory=ClusterMetrics)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JournalPhase(BaseModel):
    """One phase of a journal entry's narrative arc."""

    name: str
    summary: str = ""
    activity_ids: List[str] = Field(default_factory=list)


class JournalEntry(BaseModel):
    """User-authored or generated journal entry covering a set of activities."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    full_content: Optional[str] = None
    phases: List[JournalPhase] = Field(default_factory=list)
    impact_highlights: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    dominant_role: Optional[str] = None
    activity_ids: List[str] = Field(default_factory=list)

    @property
    def has_rich_content(self) -> bool:
        return bool(self.full_content and self.full_content.strip()) or bool(self.phases)


class Persona(BaseModel):
    """Who the narrative is written about."""

    display_name: str = ""
    role: Optional[str] = None
    company: Optional[str] = None
    emails: List[str] = Field(default_factory=list)
    # tool -> identity fields, e.g. {"github": {"login": "ada"}, "jira": {"accountId": "5f1"}}
    identities: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class EvidenceItem(BaseModel):
    """Citation of a source activity supporting a section."""

    activity_id: str
    description: Optional[str] = None


class NarrativeSection(BaseModel):
    summary: str = ""
    evidence: List[EvidenceItem] = Field(default_factory=list)


class CorroboratingRef(BaseModel):
    """A shared cross-tool reference and the member activities that carry it."""

    ref: str
    activity_ids: List[str] = Field(default_factory=list)


class GenerationOptions(BaseModel):
    """Caller choices for a narrative generation or regeneration."""

    framework: FrameworkName = "STAR"
    style: WritingStyle = "professional"
    archetype: Optional[StoryArchetype] = None
    user_prompt: Optional[str] = None
    use_llm: bool = True
    polish: bool = False  # LLM rewrite of pattern-tier sections
    debug: bool = False  # keep tier attempts on the result

    @field_validator("user_prompt", mode="before")
    @classmethod
    def _normalize_user_prompt(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        if not value:
            return None
        if len(value) > USER_PROMPT_MAX_LENGTH:
            raise ValueError(f"user_prompt exceeds {USER_PROMPT_MAX_LENGTH} characters")
        return value


class Story(BaseModel):
    """An accepted, persisted career narrative."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    cluster_id: Optional[str] = None
    journal_entry_id: Optional[str] = None
    title: str
    framework: FrameworkName
    sections: Dict[str, NarrativeSection] = Field(default_factory=dict)
    archetype: Optional[str] = None
    role: Optional[str] = None
    activity_ids: List[str] = Field(default_factory=list)
    corroborating_refs: List[CorroboratingRef] = Field(default_factory=list)
    generation_tier: GenerationTier = "template"
    is_published: bool = False
    visibility: Visibility = "private"
    published_at: Optional[datetime] = None
    verification: List[Dict[str, Any]] = Field(default_factory=list)  # reserved
    needs_regeneration: bool = False
    generated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
