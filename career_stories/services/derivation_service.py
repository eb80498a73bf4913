"""
Derivation Service

Renders accepted career stories for a specific audience and stores the
result with a snapshot of the source stories.

Credit flow for every derivation:

    can_afford (refuse early) -> LLM call -> consume (conditional decrement)
    -> persist

Nothing is charged when the LLM call fails or returns blank text, and
nothing is stored when the decrement loses a race against another request.
"""

import calendar
import json
import logging
import re
import time
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from career_stories.errors import (
    InvalidInputError,
    NotFoundError,
    PaymentRequiredError,
    ServiceUnavailableError,
)
from career_stories.frameworks import FRAMEWORKS
from career_stories.models import USER_PROMPT_MAX_LENGTH, WRITING_STYLES, Activity, Story
from career_stories.models.derivation import (
    DERIVATION_TYPES,
    PACKET_TYPES,
    Derivation,
    SourceSnapshot,
)
from career_stories.prompts.derivation import (
    DerivationPromptInput,
    DerivationStoryInput,
    PacketPromptInput,
    build_derivation_messages,
    build_packet_messages,
)
from career_stories.services.activity_service import ActivityService
from career_stories.services.credit_ledger import (
    FEATURE_DERIVE_PACKET,
    FEATURE_DERIVE_STORY,
    CreditLedger,
)
from career_stories.services.llm_client import LLMClient
from career_stories.services.story_service import CareerStoryService

logger = logging.getLogger(__name__)

PACKET_MIN_STORIES = 2
PACKET_MAX_STORIES = 10

WORDS_PER_MINUTE = 150
DERIVATION_MAX_TOKENS = 1500
DERIVATION_TEMPERATURE = 0.7
MAX_METRICS = 5

METRIC_PATTERN = re.compile(
    r"(\$\s?\d[\d,.]*\s?[kmb]?\b|\d[\d,.]*\s?%|\d+(?:\.\d+)?x\b|"
    r"\d[\d,.]*\s?(?:ms|seconds?|minutes?|hours?|days?|weeks?|users?|customers?|"
    r"requests?|tickets?|engineers?|teams?)\b)",
    re.IGNORECASE,
)
PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}(-\d{2})?$")

DERIVATION_COLUMNS = """
    id, user_id, kind, type, story_ids, source_snapshots, text, char_count,
    word_count, speaking_time_sec, tone, custom_prompt, feature_code,
    credit_cost, model, processing_time_ms, created_at
"""


def extract_metrics(summaries: Sequence[str]) -> Optional[str]:
    """Quantities mentioned in section text (percentages, durations, counts, money)."""
    found: Dict[str, None] = {}
    for summary in summaries:
        for match in METRIC_PATTERN.finditer(summary or ""):
            found[" ".join(match.group(0).split())] = None
            if len(found) >= MAX_METRICS:
                return ", ".join(found)
    return ", ".join(found) or None


def text_stats(text: str) -> Tuple[int, int, int]:
    """(char_count, word_count, speaking_time_sec) at 150 words per minute."""
    words = len(text.split())
    return len(text), words, round(words / WORDS_PER_MINUTE * 60)


def parse_period(value: str, end: bool = False) -> date:
    """
    Parse YYYY-MM or YYYY-MM-DD. A bare month resolves to its first day, or
    to its last day when it closes a range.
    """
    if not isinstance(value, str) or not PERIOD_PATTERN.match(value):
        raise InvalidInputError(
            f"Invalid date '{value}': expected YYYY-MM or YYYY-MM-DD",
            {"value": value},
        )
    try:
        parts = [int(p) for p in value.split("-")]
        if len(parts) == 3:
            return date(parts[0], parts[1], parts[2])
        year, month = parts
        day = calendar.monthrange(year, month)[1] if end else 1
        return date(year, month, day)
    except ValueError as e:
        raise InvalidInputError(f"Invalid date '{value}': {e}", {"value": value})


def _normalize_custom_prompt(custom_prompt: Optional[str]) -> Optional[str]:
    if custom_prompt is None:
        return None
    custom_prompt = custom_prompt.strip()
    if not custom_prompt:
        return None
    if len(custom_prompt) > USER_PROMPT_MAX_LENGTH:
        raise InvalidInputError(
            f"custom_prompt exceeds {USER_PROMPT_MAX_LENGTH} characters",
            {"length": len(custom_prompt)},
        )
    return custom_prompt


def _require_text(text: str) -> None:
    if not text or not text.strip():
        raise ServiceUnavailableError("Language model returned no derivation text")


def _check_tone(tone: Optional[str]) -> None:
    if tone is not None and tone not in WRITING_STYLES:
        raise InvalidInputError(
            f"Invalid tone: {tone}",
            {"tone": tone, "allowed": list(WRITING_STYLES)},
        )


class DerivationService:
    """
    Creates, lists and deletes story derivations.

    Single derivations cost FEATURE_DERIVE_STORY credits, packets cost
    FEATURE_DERIVE_PACKET.
    """

    def __init__(
        self,
        db_connection,
        llm: Optional[LLMClient] = None,
        ledger: Optional[CreditLedger] = None,
        story_service: Optional[CareerStoryService] = None,
        activity_service: Optional[ActivityService] = None,
    ):
        self.db = db_connection
        self.llm = llm or LLMClient()
        self.ledger = ledger or CreditLedger(db_connection)
        self.activity_service = activity_service or ActivityService(db_connection)
        self.story_service = story_service or CareerStoryService(
            db_connection, activity_service=self.activity_service
        )

    def derive_single(
        self,
        user_id: str,
        story_id: str,
        derivation_type: str,
        tone: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> Derivation:
        """
        Rewrite one story for an audience.

        Raises:
            InvalidInputError: unknown derivation type, tone, or oversized prompt
            NotFoundError: story missing or owned by another user
            PaymentRequiredError: not enough credits (before or at charge time)
            ServiceUnavailableError: the language model failed; nothing charged
        """
        if derivation_type not in DERIVATION_TYPES:
            raise InvalidInputError(
                f"Invalid derivation type: {derivation_type}",
                {"type": derivation_type, "allowed": list(DERIVATION_TYPES)},
            )
        _check_tone(tone)
        custom_prompt = _normalize_custom_prompt(custom_prompt)

        story = self.story_service.get_story(user_id, story_id)
        self._require_credits(user_id, FEATURE_DERIVE_STORY)

        activities = self._activities_by_story(user_id, [story])
        story_input = self._story_input(story, activities[story.id])

        started_at = time.perf_counter()
        messages = build_derivation_messages(DerivationPromptInput(
            derivation_type=derivation_type,
            story=story_input,
            tone=tone,
            custom_prompt=custom_prompt,
        ))
        text = self.llm.complete(
            messages,
            temperature=DERIVATION_TEMPERATURE,
            max_tokens=DERIVATION_MAX_TOKENS,
        )
        processing_time_ms = int((time.perf_counter() - started_at) * 1000)

        _require_text(text)
        self._charge(user_id, FEATURE_DERIVE_STORY)

        char_count, word_count, speaking_time_sec = text_stats(text)
        return self._insert(
            user_id,
            kind="single",
            derivation_type=derivation_type,
            stories=[story],
            snapshots=[self._snapshot(story, story_input)],
            text=text,
            char_count=char_count,
            word_count=word_count,
            speaking_time_sec=speaking_time_sec,
            tone=tone,
            custom_prompt=custom_prompt,
            feature_code=FEATURE_DERIVE_STORY,
            processing_time_ms=processing_time_ms,
        )

    def derive_packet(
        self,
        user_id: str,
        story_ids: Sequence[str],
        packet_type: str = "promotion",
        tone: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        date_range: Optional[Tuple[str, str]] = None,
    ) -> Derivation:
        """
        Combine 2-10 stories into one packet.

        Args:
            date_range: (start, end) as YYYY-MM or YYYY-MM-DD; only used by
                annual-review packets to keep stories with activities in range

        Raises:
            InvalidInputError: bad story count, duplicate ids, unknown packet
                type or tone, malformed date range
            NotFoundError: any story missing or owned by another user
            PaymentRequiredError: not enough credits
            ServiceUnavailableError: the language model failed; nothing charged
        """
        story_ids = list(story_ids)
        if not PACKET_MIN_STORIES <= len(story_ids) <= PACKET_MAX_STORIES:
            raise InvalidInputError(
                f"A packet needs {PACKET_MIN_STORIES}-{PACKET_MAX_STORIES} stories, got {len(story_ids)}",
                {"story_count": len(story_ids)},
            )
        if len(set(story_ids)) != len(story_ids):
            raise InvalidInputError("Duplicate story ids in packet", {"story_ids": story_ids})
        if packet_type not in PACKET_TYPES:
            raise InvalidInputError(
                f"Invalid packet type: {packet_type}",
                {"type": packet_type, "allowed": list(PACKET_TYPES)},
            )
        _check_tone(tone)
        custom_prompt = _normalize_custom_prompt(custom_prompt)

        period = None
        if date_range is not None and packet_type == "annual-review":
            start, end = date_range
            period = (parse_period(start), parse_period(end, end=True))
            if period[0] > period[1]:
                raise InvalidInputError("date_range start is after end", {"date_range": list(date_range)})

        stories = self.story_service.get_stories(user_id, story_ids)
        self._require_credits(user_id, FEATURE_DERIVE_PACKET)

        activities = self._activities_by_story(user_id, stories)
        if period is not None:
            stories = self._filter_by_period(stories, activities, period)

        story_inputs = [self._story_input(s, activities[s.id]) for s in stories]

        started_at = time.perf_counter()
        messages = build_packet_messages(PacketPromptInput(
            packet_type=packet_type,
            stories=story_inputs,
            tone=tone,
            custom_prompt=custom_prompt,
        ))
        text = self.llm.complete(
            messages,
            temperature=DERIVATION_TEMPERATURE,
            max_tokens=DERIVATION_MAX_TOKENS,
        )
        processing_time_ms = int((time.perf_counter() - started_at) * 1000)

        _require_text(text)
        self._charge(user_id, FEATURE_DERIVE_PACKET)

        char_count, word_count, _ = text_stats(text)
        return self._insert(
            user_id,
            kind="packet",
            derivation_type=packet_type,
            stories=stories,
            snapshots=[self._snapshot(s, si) for s, si in zip(stories, story_inputs)],
            text=text,
            char_count=char_count,
            word_count=word_count,
            speaking_time_sec=None,
            tone=tone,
            custom_prompt=custom_prompt,
            feature_code=FEATURE_DERIVE_PACKET,
            processing_time_ms=processing_time_ms,
        )

    # -------------------------------------------------------------------------
    # Store
    # -------------------------------------------------------------------------

    def list_derivations(
        self,
        user_id: str,
        kind: Optional[str] = None,
        story_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[Derivation]:
        """Newest first, optionally filtered by kind or source story."""
        conditions = ["user_id = %s"]
        params: list = [user_id]
        if kind is not None:
            conditions.append("kind = %s")
            params.append(kind)
        if story_id is not None:
            conditions.append("%s = ANY(story_ids)")
            params.append(story_id)
        params.append(max(1, min(limit, 100)))

        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {DERIVATION_COLUMNS} FROM story_derivations
                WHERE {' AND '.join(conditions)}
                ORDER BY created_at DESC, id ASC
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall()
        return [_row_to_derivation(row) for row in rows]

    def get_derivation(self, user_id: str, derivation_id: str) -> Derivation:
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {DERIVATION_COLUMNS} FROM story_derivations WHERE id = %s AND user_id = %s",
                (derivation_id, user_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(
                f"Derivation not found: {derivation_id}", {"derivation_id": derivation_id}
            )
        return _row_to_derivation(row)

    def delete_derivation(self, user_id: str, derivation_id: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                "DELETE FROM story_derivations WHERE id = %s AND user_id = %s RETURNING id",
                (derivation_id, user_id),
            )
            if cur.fetchone() is None:
                raise NotFoundError(
                    f"Derivation not found: {derivation_id}", {"derivation_id": derivation_id}
                )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_credits(self, user_id: str, feature_code: str) -> None:
        check = self.ledger.can_afford(user_id, feature_code)
        if not check.allowed:
            raise PaymentRequiredError(
                f"Insufficient credits for {feature_code}",
                {"feature_code": feature_code, "cost": check.cost, "balance": check.balance},
            )

    def _charge(self, user_id: str, feature_code: str) -> None:
        if not self.ledger.consume(user_id, feature_code):
            raise PaymentRequiredError(
                f"Insufficient credits for {feature_code}",
                {"feature_code": feature_code},
            )

    def _activities_by_story(self, user_id: str, stories: List[Story]) -> Dict[str, List[Activity]]:
        all_ids = list(dict.fromkeys(aid for s in stories for aid in s.activity_ids))
        lookup = {a.id: a for a in self.activity_service.get_by_ids(user_id, all_ids)} if all_ids else {}
        return {
            s.id: [lookup[aid] for aid in s.activity_ids if aid in lookup]
            for s in stories
        }

    def _filter_by_period(
        self,
        stories: List[Story],
        activities: Dict[str, List[Activity]],
        period: Tuple[date, date],
    ) -> List[Story]:
        start, end = period
        matched = [
            s for s in stories
            if any(start <= a.timestamp.date() <= end for a in activities[s.id])
        ]
        if len(matched) < PACKET_MIN_STORIES:
            logger.info(
                f"Only {len(matched)} stories fall in {start}..{end}, using all {len(stories)}"
            )
            return stories
        return matched

    def _story_input(self, story: Story, activities: List[Activity]) -> DerivationStoryInput:
        framework = FRAMEWORKS.get(story.framework)
        keys = framework.section_keys if framework else list(story.sections)
        sections = {
            key: story.sections[key].summary for key in keys if key in story.sections
        }

        date_range = None
        if activities:
            first = min(a.timestamp for a in activities).strftime("%b %Y")
            last = max(a.timestamp for a in activities).strftime("%b %Y")
            date_range = first if first == last else f"{first} - {last}"

        return DerivationStoryInput(
            title=story.title,
            framework=story.framework,
            sections=sections,
            archetype=story.archetype,
            metrics=extract_metrics(list(sections.values())),
            activity_count=len(story.activity_ids),
            date_range=date_range,
        )

    def _snapshot(self, story: Story, story_input: DerivationStoryInput) -> SourceSnapshot:
        return SourceSnapshot(
            story_id=story.id,
            title=story.title,
            framework=story.framework,
            archetype=story.archetype,
            metrics=story_input.metrics,
            activity_ids=list(dict.fromkeys(story.activity_ids)),
        )

    def _insert(
        self,
        user_id: str,
        kind: str,
        derivation_type: str,
        stories: List[Story],
        snapshots: List[SourceSnapshot],
        text: str,
        char_count: int,
        word_count: int,
        speaking_time_sec: Optional[int],
        tone: Optional[str],
        custom_prompt: Optional[str],
        feature_code: str,
        processing_time_ms: int,
    ) -> Derivation:
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO story_derivations (
                    user_id, kind, type, story_ids, source_snapshots, text,
                    char_count, word_count, speaking_time_sec, tone, custom_prompt,
                    feature_code, credit_cost, model, processing_time_ms
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {DERIVATION_COLUMNS}
                """,
                (
                    user_id,
                    kind,
                    derivation_type,
                    [s.id for s in stories],
                    json.dumps([snap.model_dump() for snap in snapshots]),
                    text,
                    char_count,
                    word_count,
                    speaking_time_sec,
                    tone,
                    custom_prompt,
                    feature_code,
                    self.ledger.cost_of(feature_code),
                    self.llm.model,
                    processing_time_ms,
                ),
            )
            row = cur.fetchone()

        derivation = _row_to_derivation(row)
        logger.info(
            f"Created {kind} derivation {derivation.id} ({derivation_type}, "
            f"{len(stories)} stories, {word_count} words, {processing_time_ms}ms)"
        )
        return derivation


def _row_to_derivation(row: dict) -> Derivation:
    snapshots = row.get("source_snapshots") or []
    if isinstance(snapshots, str):
        snapshots = json.loads(snapshots)
    return Derivation(
        id=row["id"],
        user_id=row["user_id"],
        kind=row["kind"],
        type=row["type"],
        story_ids=list(row.get("story_ids") or []),
        source_snapshots=[SourceSnapshot(**snap) for snap in snapshots],
        text=row["text"],
        char_count=row.get("char_count") or 0,
        word_count=row.get("word_count") or 0,
        speaking_time_sec=row.get("speaking_time_sec"),
        tone=row.get("tone"),
        custom_prompt=row.get("custom_prompt"),
        feature_code=row["feature_code"],
        credit_cost=row.get("credit_cost") or 0,
        model=row.get("model"),
        processing_time_ms=row.get("processing_time_ms") or 0,
        created_at=row.get("created_at"),
    )
