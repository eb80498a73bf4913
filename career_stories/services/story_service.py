"""
Career Story Service

Orchestrates narrative generation and owns the career_stories table:

    hydrate cluster -> generate draft (tiers) -> acceptance gate -> persist

Also promotes a journal entry straight into a story, regenerates existing
stories, and manages publishing and visibility.

Accepted stories are written on the caller's connection; the commit happens
when the outer connection context manager exits.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from career_stories.errors import InvalidInputError, NotFoundError
from career_stories.frameworks import get_framework
from career_stories.models import (
    Activity,
    Cluster,
    CorroboratingRef,
    GenerationOptions,
    JournalEntry,
    JournalPhase,
    NarrativeSection,
    Persona,
    Story,
)
from career_stories.services.acceptance_gate import (
    AcceptanceGate,
    AcceptedNarrative,
    GateResult,
    RejectedNarrative,
)
from career_stories.services.activity_service import ActivityService
from career_stories.services.cluster_hydrator import ClusterHydrator, HydratedCluster
from career_stories.services.cluster_service import ClusterService
from career_stories.services.narrative_generator import GenerationContext, NarrativeGenerator
from career_stories.services.persona_service import PersonaService

logger = logging.getLogger(__name__)

VISIBILITIES = ("private", "workspace", "network")

STORY_COLUMNS = """
    id, user_id, cluster_id, journal_entry_id, title, framework, sections,
    archetype, role, activity_ids, corroborating_refs, generation_tier,
    is_published, visibility, published_at, verification, needs_regeneration,
    generated_at, created_at, updated_at
"""

JOURNAL_COLUMNS = """
    id, user_id, title, description, full_content, phases,
    impact_highlights, skills, dominant_role, activity_ids
"""


@dataclass
class GenerationOutcome:
    """Gate result plus the stored story when the draft was accepted."""

    result: GateResult
    story: Optional[Story] = None

    @property
    def accepted(self) -> bool:
        return isinstance(self.result, AcceptedNarrative)


class CareerStoryService:
    """
    Manages career stories.

    Responsibilities:
    - Run the generate -> gate pipeline for clusters and journal entries
    - Persist accepted narratives; return rejections untouched
    - Regenerate, publish, change visibility, delete
    """

    def __init__(
        self,
        db_connection,
        generator: Optional[NarrativeGenerator] = None,
        gate: Optional[AcceptanceGate] = None,
        cluster_service: Optional[ClusterService] = None,
        activity_service: Optional[ActivityService] = None,
        persona_service: Optional[PersonaService] = None,
        hydrator: Optional[ClusterHydrator] = None,
    ):
        self.db = db_connection
        self.generator = generator or NarrativeGenerator()
        self.gate = gate or AcceptanceGate()
        self.activity_service = activity_service or ActivityService(db_connection)
        self.cluster_service = cluster_service or ClusterService(
            db_connection, activity_service=self.activity_service
        )
        self.persona_service = persona_service or PersonaService(db_connection)
        self.hydrator = hydrator or self.cluster_service.hydrator

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def generate_narrative(
        self,
        cluster: Optional[Cluster],
        activities: Sequence[Activity],
        persona: Optional[Persona] = None,
        options: Optional[GenerationOptions] = None,
        journal_entry: Optional[JournalEntry] = None,
    ) -> GateResult:
        """
        Generate and gate a narrative without persisting anything.

        Args:
            cluster: Persisted cluster (None for an ad-hoc set of activities)
            activities: Activity records for the cluster members
            persona: Author details for prompt personalization
            options: Framework, style, archetype, user prompt, debug
            journal_entry: Source entry whose rich content enables the LLM tier

        Returns:
            AcceptedNarrative or RejectedNarrative

        Raises:
            NoActivitiesError: no activities to narrate
            InvalidInputError: unknown framework
        """
        options = options or GenerationOptions()
        framework = get_framework(options.framework)

        if cluster is not None:
            hydrated = self.hydrator.hydrate_cluster(cluster, activities)
        else:
            hydrated = self.hydrator.hydrate(activities)

        return self._run_pipeline(hydrated, framework, options, persona, journal_entry)

    def _run_pipeline(
        self,
        hydrated: HydratedCluster,
        framework,
        options: GenerationOptions,
        persona: Optional[Persona],
        journal_entry: Optional[JournalEntry],
    ) -> GateResult:
        started_at = time.perf_counter()
        context = GenerationContext(
            cluster=hydrated,
            framework=framework,
            options=options,
            persona=persona,
            journal_entry=journal_entry,
        )
        draft = self.generator.generate(context)
        if not options.debug:
            draft.diagnostics = {}
        return self.gate.evaluate(draft, hydrated, framework, started_at=started_at, persona=persona)

    def generate_for_cluster(
        self,
        user_id: str,
        cluster_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationOutcome:
        """Generate a story for a persisted cluster and store it if accepted."""
        options = options or GenerationOptions()
        framework = get_framework(options.framework)

        hydrated = self.cluster_service.hydrate(user_id, cluster_id)
        entry = self._find_journal_entry(user_id, hydrated.activity_ids)
        persona = self.persona_service.get_persona(user_id)

        result = self._run_pipeline(hydrated, framework, options, persona, entry)
        if isinstance(result, RejectedNarrative):
            return GenerationOutcome(result=result)

        story = self._insert_story(
            user_id,
            result,
            options,
            cluster_id=cluster_id,
            journal_entry_id=entry.id if entry else None,
            activity_ids=hydrated.activity_ids,
        )
        return GenerationOutcome(result=result, story=story)

    def promote_journal_entry(
        self,
        user_id: str,
        entry_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationOutcome:
        """Turn a journal entry's activities into a story (no cluster needed)."""
        options = options or GenerationOptions()
        framework = get_framework(options.framework)

        entry = self._get_journal_entry(user_id, entry_id)
        activities = self.activity_service.get_by_ids(user_id, entry.activity_ids)
        hydrated = self.hydrator.hydrate(
            activities,
            name=entry.title,
            member_ids=entry.activity_ids,
        )
        persona = self.persona_service.get_persona(user_id)

        result = self._run_pipeline(hydrated, framework, options, persona, entry)
        if isinstance(result, RejectedNarrative):
            return GenerationOutcome(result=result)

        story = self._insert_story(
            user_id,
            result,
            options,
            cluster_id=None,
            journal_entry_id=entry.id,
            activity_ids=hydrated.activity_ids,
        )
        return GenerationOutcome(result=result, story=story)

    def regenerate_narrative(
        self,
        user_id: str,
        story_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationOutcome:
        """
        Regenerate an existing story and replace its sections wholesale.

        Generation runs before any write; the replacement is a single UPDATE,
        so concurrent regenerations resolve last-writer-wins without mixing
        sections. A rejected draft leaves the stored story untouched.
        """
        story = self.get_story(user_id, story_id)
        if options is None:
            options = GenerationOptions(framework=story.framework, archetype=story.archetype)
        framework = get_framework(options.framework)

        activities = self.activity_service.get_by_ids(user_id, story.activity_ids)
        hydrated = self.hydrator.hydrate(
            activities,
            cluster_id=story.cluster_id,
            member_ids=story.activity_ids,
        )
        entry = None
        if story.journal_entry_id:
            entry = self._get_journal_entry(user_id, story.journal_entry_id)
        persona = self.persona_service.get_persona(user_id)

        result = self._run_pipeline(hydrated, framework, options, persona, entry)
        if isinstance(result, RejectedNarrative):
            return GenerationOutcome(result=result)

        draft = result.draft
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                UPDATE career_stories SET
                    title = %s,
                    framework = %s,
                    sections = %s,
                    archetype = %s,
                    role = %s,
                    activity_ids = %s,
                    corroborating_refs = %s,
                    generation_tier = %s,
                    needs_regeneration = FALSE,
                    generated_at = NOW(),
                    updated_at = NOW()
                WHERE id = %s AND user_id = %s
                RETURNING {STORY_COLUMNS}
                """,
                (
                    draft.title,
                    draft.framework,
                    _sections_json(draft.sections),
                    options.archetype,
                    draft.role,
                    hydrated.activity_ids,
                    _refs_json(result.corroborating_refs),
                    draft.tier,
                    story_id,
                    user_id,
                ),
            )
            row = cur.fetchone()

        if not row:
            raise NotFoundError(f"Story not found: {story_id}", {"story_id": story_id})

        logger.info(f"Regenerated story {story_id} with {draft.tier} tier")
        return GenerationOutcome(result=result, story=_row_to_story(row))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_story(self, user_id: str, story_id: str) -> Story:
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {STORY_COLUMNS} FROM career_stories WHERE id = %s AND user_id = %s",
                (story_id, user_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Story not found: {story_id}", {"story_id": story_id})
        return _row_to_story(row)

    def get_stories(self, user_id: str, story_ids: Sequence[str]) -> List[Story]:
        """Fetch several stories in the requested order; NotFoundError lists any missing."""
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {STORY_COLUMNS} FROM career_stories WHERE user_id = %s AND id = ANY(%s)",
                (user_id, list(story_ids)),
            )
            rows = cur.fetchall()

        by_id = {row["id"]: _row_to_story(row) for row in rows}
        missing = [sid for sid in story_ids if sid not in by_id]
        if missing:
            raise NotFoundError(
                f"Stories not found: {', '.join(missing)}",
                {"story_ids": missing},
            )
        return [by_id[sid] for sid in story_ids]

    def list_stories(self, user_id: str, published_only: bool = False) -> List[Story]:
        sql = f"SELECT {STORY_COLUMNS} FROM career_stories WHERE user_id = %s"
        if published_only:
            sql += " AND is_published = TRUE"
        sql += " ORDER BY created_at DESC, id ASC"
        with self.db.cursor() as cur:
            cur.execute(sql, (user_id,))
            rows = cur.fetchall()
        return [_row_to_story(row) for row in rows]

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish(self, user_id: str, story_id: str, visibility: str = "workspace") -> Story:
        _check_visibility(visibility)
        return self._update_publish_state(
            user_id,
            story_id,
            """
            is_published = TRUE,
            visibility = %s,
            published_at = COALESCE(published_at, NOW())
            """,
            (visibility,),
        )

    def unpublish(self, user_id: str, story_id: str) -> Story:
        return self._update_publish_state(
            user_id,
            story_id,
            "is_published = FALSE, visibility = 'private', published_at = NULL",
            (),
        )

    def set_visibility(self, user_id: str, story_id: str, visibility: str) -> Story:
        _check_visibility(visibility)
        return self._update_publish_state(user_id, story_id, "visibility = %s", (visibility,))

    def delete_story(self, user_id: str, story_id: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                "DELETE FROM career_stories WHERE id = %s AND user_id = %s RETURNING id",
                (story_id, user_id),
            )
            if cur.fetchone() is None:
                raise NotFoundError(f"Story not found: {story_id}", {"story_id": story_id})
        logger.info(f"Deleted story {story_id}")

    def _update_publish_state(self, user_id: str, story_id: str, assignments: str, params: tuple) -> Story:
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                UPDATE career_stories SET {assignments}, updated_at = NOW()
                WHERE id = %s AND user_id = %s
                RETURNING {STORY_COLUMNS}
                """,
                (*params, story_id, user_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Story not found: {story_id}", {"story_id": story_id})
        return _row_to_story(row)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _insert_story(
        self,
        user_id: str,
        result: AcceptedNarrative,
        options: GenerationOptions,
        cluster_id: Optional[str],
        journal_entry_id: Optional[str],
        activity_ids: List[str],
    ) -> Story:
        draft = result.draft
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO career_stories (
                    user_id, cluster_id, journal_entry_id, title, framework,
                    sections, archetype, role, activity_ids, corroborating_refs,
                    generation_tier, generated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                RETURNING {STORY_COLUMNS}
                """,
                (
                    user_id,
                    cluster_id,
                    journal_entry_id,
                    draft.title,
                    draft.framework,
                    _sections_json(draft.sections),
                    options.archetype,
                    draft.role,
                    activity_ids,
                    _refs_json(result.corroborating_refs),
                    draft.tier,
                ),
            )
            row = cur.fetchone()

        story = _row_to_story(row)
        logger.info(
            f"Created story {story.id} ({draft.framework}, {draft.tier} tier, "
            f"{len(activity_ids)} activities, {result.processing_time_ms}ms)"
        )
        return story

    def _get_journal_entry(self, user_id: str, entry_id: str) -> JournalEntry:
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {JOURNAL_COLUMNS} FROM journal_entries WHERE id = %s AND user_id = %s",
                (entry_id, user_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Journal entry not found: {entry_id}", {"entry_id": entry_id})
        return _row_to_journal_entry(row)

    def _find_journal_entry(self, user_id: str, activity_ids: List[str]) -> Optional[JournalEntry]:
        """The journal entry sharing the most activities with the cluster, if any."""
        if not activity_ids:
            return None
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {JOURNAL_COLUMNS},
                    (SELECT COUNT(*) FROM unnest(activity_ids) AS a(id) WHERE a.id = ANY(%s)) AS overlap
                FROM journal_entries
                WHERE user_id = %s AND activity_ids && %s::text[]
                ORDER BY overlap DESC, created_at DESC
                LIMIT 1
                """,
                (activity_ids, user_id, activity_ids),
            )
            row = cur.fetchone()
        return _row_to_journal_entry(row) if row else None


def _check_visibility(visibility: str) -> None:
    if visibility not in VISIBILITIES:
        raise InvalidInputError(
            f"Invalid visibility: {visibility}",
            {"visibility": visibility, "allowed": list(VISIBILITIES)},
        )


def _sections_json(sections: Dict[str, NarrativeSection]) -> str:
    return json.dumps({key: section.model_dump() for key, section in sections.items()})


def _refs_json(refs: List[CorroboratingRef]) -> str:
    return json.dumps([ref.model_dump() for ref in refs])


def _json_value(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_story(row: dict) -> Story:
    sections = _json_value(row.get("sections"), {})
    return Story(
        id=row["id"],
        user_id=row["user_id"],
        cluster_id=row.get("cluster_id"),
        journal_entry_id=row.get("journal_entry_id"),
        title=row["title"],
        framework=row["framework"],
        sections={key: NarrativeSection(**value) for key, value in sections.items()},
        archetype=row.get("archetype"),
        role=row.get("role"),
        activity_ids=list(row.get("activity_ids") or []),
        corroborating_refs=[
            CorroboratingRef(**ref) for ref in _json_value(row.get("corroborating_refs"), [])
        ],
        generation_tier=row.get("generation_tier") or "template",
        is_published=bool(row.get("is_published")),
        visibility=row.get("visibility") or "private",
        published_at=row.get("published_at"),
        verification=_json_value(row.get("verification"), []),
        needs_regeneration=bool(row.get("needs_regeneration")),
        generated_at=row.get("generated_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_journal_entry(row: dict) -> JournalEntry:
    return JournalEntry(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        description=row.get("description"),
        full_content=row.get("full_content"),
        phases=[JournalPhase(**phase) for phase in _json_value(row.get("phases"), [])],
        impact_highlights=list(row.get("impact_highlights") or []),
        skills=list(row.get("skills") or []),
        dominant_role=row.get("dominant_role"),
        activity_ids=list(row.get("activity_ids") or []),
    )
