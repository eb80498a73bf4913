"""
Tests for CareerStoryService.

Generation runs the real pattern and template tiers plus the real gate; the
LLM tier is left out so nothing touches the network. Database access is
mocked at the cursor.
"""

import json
from unittest.mock import Mock

import pytest

from career_stories.errors import InvalidInputError, NoActivitiesError, NotFoundError
from career_stories.models import GenerationOptions, NarrativeSection, Persona
from career_stories.services.acceptance_gate import (
    GATE_MAX_OBSERVER_RATIO,
    AcceptedNarrative,
    RejectedNarrative,
)
from career_stories.services.activity_service import ActivityService
from career_stories.services.cluster_hydrator import ClusterHydrator
from career_stories.services.cluster_service import ClusterService
from career_stories.services.narrative_generator import (
    DraftNarrative,
    NarrativeGenerator,
    PatternMatchingTier,
    TemplateTier,
)
from career_stories.services.persona_service import PersonaService
from career_stories.services.story_service import CareerStoryService


@pytest.fixture
def hydrator():
    return ClusterHydrator()


@pytest.fixture
def collaborators(hydrator):
    cluster_service = Mock(spec=ClusterService)
    activity_service = Mock(spec=ActivityService)
    persona_service = Mock(spec=PersonaService)
    persona_service.get_persona.return_value = Persona(display_name="Ada", role="Engineer")
    return cluster_service, activity_service, persona_service


@pytest.fixture
def service(mock_db, collaborators, hydrator):
    db, _ = mock_db
    cluster_service, activity_service, persona_service = collaborators
    return CareerStoryService(
        db,
        generator=NarrativeGenerator(tiers=[PatternMatchingTier(), TemplateTier()]),
        cluster_service=cluster_service,
        activity_service=activity_service,
        persona_service=persona_service,
        hydrator=hydrator,
    )


def _story_row(**overrides):
    row = {
        "id": "story-1",
        "user_id": "user-1",
        "cluster_id": "cluster-1",
        "journal_entry_id": None,
        "title": "Checkout latency",
        "framework": "STAR",
        "sections": json.dumps({"situation": {"summary": "Slow", "evidence": [{"activity_id": "act-jira"}]}}),
        "archetype": None,
        "role": None,
        "activity_ids": ["act-jira", "act-pr", "act-doc"],
        "corroborating_refs": [{"ref": "PROJ-42", "activity_ids": ["act-jira", "act-pr", "act-doc"]}],
        "generation_tier": "pattern",
        "is_published": False,
        "visibility": "private",
        "published_at": None,
        "verification": None,
        "needs_regeneration": False,
        "generated_at": None,
        "created_at": None,
        "updated_at": None,
    }
    row.update(overrides)
    return row


def _journal_row(**overrides):
    row = {
        "id": "entry-1",
        "user_id": "user-1",
        "title": "Checkout speedup",
        "description": "Made checkout fast",
        "full_content": None,
        "phases": "[]",
        "impact_highlights": [],
        "skills": [],
        "dominant_role": None,
        "activity_ids": ["act-jira", "act-pr", "act-doc"],
    }
    row.update(overrides)
    return row


def _sql(cursor):
    return [" ".join(call.args[0].split()) for call in cursor.execute.call_args_list]


def _unevidenced_generator():
    draft = DraftNarrative(
        title="Unsupported",
        framework="STAR",
        tier="pattern",
        sections={
            key: NarrativeSection(summary=f"{key} text")
            for key in ("situation", "task", "action", "result")
        },
    )
    generator = Mock(spec=NarrativeGenerator)
    generator.generate.return_value = draft
    return generator


class TestGenerateNarrative:
    """The pure generate -> gate pipeline."""

    def test_star_uses_pattern_tier_and_is_accepted(self, service, mock_db, proj42_activities):
        _, cursor = mock_db

        result = service.generate_narrative(None, proj42_activities)

        assert isinstance(result, AcceptedNarrative)
        assert result.tier == "pattern"
        assert set(result.draft.sections) == {"situation", "task", "action", "result"}
        assert [r.ref for r in result.corroborating_refs] == ["PROJ-42"]
        cursor.execute.assert_not_called()

    def test_soar_falls_to_template(self, service, proj42_activities):
        result = service.generate_narrative(
            None, proj42_activities, options=GenerationOptions(framework="SOAR")
        )

        assert isinstance(result, AcceptedNarrative)
        assert result.tier == "template"
        first = result.draft.sections["situation"]
        assert [e.activity_id for e in first.evidence] == ["act-jira", "act-pr", "act-doc"]

    def test_diagnostics_cleared_without_debug(self, service, proj42_activities):
        result = service.generate_narrative(None, proj42_activities)
        assert result.draft.diagnostics == {}

    def test_diagnostics_kept_with_debug(self, service, proj42_activities):
        result = service.generate_narrative(
            None, proj42_activities, options=GenerationOptions(debug=True)
        )
        assert result.draft.diagnostics["attempts"][-1] == {"tier": "pattern", "outcome": "used"}

    def test_empty_cluster(self, service):
        with pytest.raises(NoActivitiesError) as exc_info:
            service.generate_narrative(None, [])
        assert exc_info.value.code == "NO_ACTIVITIES"


class TestGenerateForCluster:
    """Cluster generation with persistence of accepted stories only."""

    def test_accepted_story_is_inserted(self, service, mock_db, collaborators, hydrator, proj42_activities):
        _, cursor = mock_db
        cluster_service, _, _ = collaborators
        cluster_service.hydrate.return_value = hydrator.hydrate(proj42_activities, cluster_id="cluster-1")
        cursor.fetchone.side_effect = [None, _story_row()]

        outcome = service.generate_for_cluster("user-1", "cluster-1")

        assert outcome.accepted
        assert outcome.story.id == "story-1"
        insert_sql, insert_params = cursor.execute.call_args_list[1].args
        assert "INSERT INTO career_stories" in insert_sql
        assert insert_params[0] == "user-1"
        assert insert_params[1] == "cluster-1"
        assert insert_params[2] is None
        assert insert_params[8] == ["act-jira", "act-pr", "act-doc"]
        assert insert_params[10] == "pattern"

    def test_matching_journal_entry_is_linked(
        self, service, mock_db, collaborators, hydrator, proj42_activities
    ):
        _, cursor = mock_db
        cluster_service, _, _ = collaborators
        cluster_service.hydrate.return_value = hydrator.hydrate(proj42_activities, cluster_id="cluster-1")
        cursor.fetchone.side_effect = [_journal_row(), _story_row(journal_entry_id="entry-1")]

        outcome = service.generate_for_cluster("user-1", "cluster-1")

        lookup_sql, lookup_params = cursor.execute.call_args_list[0].args
        assert "ORDER BY overlap DESC" in lookup_sql
        assert lookup_params[1] == "user-1"
        assert cursor.execute.call_args_list[1].args[1][2] == "entry-1"
        assert outcome.story.journal_entry_id == "entry-1"

    def test_rejection_is_returned_and_not_stored(
        self, mock_db, collaborators, hydrator, proj42_activities
    ):
        db, cursor = mock_db
        cluster_service, activity_service, persona_service = collaborators
        cluster_service.hydrate.return_value = hydrator.hydrate(proj42_activities, cluster_id="cluster-1")
        cursor.fetchone.return_value = None
        service = CareerStoryService(
            db,
            generator=_unevidenced_generator(),
            cluster_service=cluster_service,
            activity_service=activity_service,
            persona_service=persona_service,
            hydrator=hydrator,
        )

        outcome = service.generate_for_cluster("user-1", "cluster-1")

        assert not outcome.accepted
        assert outcome.story is None
        assert isinstance(outcome.result, RejectedNarrative)
        assert outcome.result.to_dict()["code"] == "VALIDATION_GATES_FAILED"
        assert not any(s.startswith("INSERT") for s in _sql(cursor))

    def test_persona_identities_reach_gate(
        self, service, mock_db, collaborators, hydrator, proj42_activities
    ):
        """None of the PROJ-42 payloads name the user, so the work was only observed."""
        _, cursor = mock_db
        cluster_service, _, persona_service = collaborators
        cluster_service.hydrate.return_value = hydrator.hydrate(proj42_activities, cluster_id="cluster-1")
        persona_service.get_persona.return_value = Persona(display_name="Ada", emails=["ada@acme.test"])
        cursor.fetchone.return_value = None

        outcome = service.generate_for_cluster("user-1", "cluster-1")

        assert outcome.result.failed_gates == [GATE_MAX_OBSERVER_RATIO]
        assert set(outcome.result.participation_levels.values()) == {"observer"}
        assert not any(s.startswith("INSERT") for s in _sql(cursor))

    def test_hydration_warnings_surface(self, service, mock_db, collaborators, hydrator, proj42_activities):
        _, cursor = mock_db
        cluster_service, _, _ = collaborators
        cluster_service.hydrate.return_value = hydrator.hydrate(
            proj42_activities,
            cluster_id="cluster-1",
            member_ids=["act-jira", "act-pr", "act-doc", "act-deleted"],
        )
        cursor.fetchone.side_effect = [None, _story_row()]

        outcome = service.generate_for_cluster("user-1", "cluster-1")

        assert outcome.accepted
        assert outcome.result.warnings[0].code == "ACTIVITIES_NOT_FOUND"
        assert outcome.result.warnings[0].missing_ids == ["act-deleted"]

    def test_missing_cluster_propagates(self, service, collaborators):
        cluster_service, _, _ = collaborators
        cluster_service.hydrate.side_effect = NotFoundError("Cluster not found: nope")

        with pytest.raises(NotFoundError):
            service.generate_for_cluster("user-1", "nope")


class TestPromoteJournalEntry:
    def test_promotes_without_cluster(self, service, mock_db, collaborators, proj42_activities):
        _, cursor = mock_db
        _, activity_service, _ = collaborators
        activity_service.get_by_ids.return_value = proj42_activities
        cursor.fetchone.side_effect = [_journal_row(), _story_row(cluster_id=None, journal_entry_id="entry-1")]

        outcome = service.promote_journal_entry("user-1", "entry-1")

        assert outcome.accepted
        activity_service.get_by_ids.assert_called_once_with("user-1", ["act-jira", "act-pr", "act-doc"])
        insert_params = cursor.execute.call_args_list[1].args[1]
        assert insert_params[1] is None
        assert insert_params[2] == "entry-1"
        assert insert_params[3] == "Checkout speedup"

    def test_unknown_entry(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError):
            service.promote_journal_entry("user-1", "missing")


class TestRegenerate:
    """Regeneration replaces sections in one UPDATE."""

    def test_reuses_stored_framework_when_no_options(
        self, service, mock_db, collaborators, proj42_activities
    ):
        _, cursor = mock_db
        _, activity_service, _ = collaborators
        activity_service.get_by_ids.return_value = proj42_activities
        cursor.fetchone.side_effect = [
            _story_row(framework="SOAR", needs_regeneration=True),
            _story_row(framework="SOAR", generation_tier="template"),
        ]

        outcome = service.regenerate_narrative("user-1", "story-1")

        assert outcome.accepted
        assert outcome.result.tier == "template"
        update_sql, update_params = cursor.execute.call_args_list[1].args
        assert "needs_regeneration = FALSE" in update_sql
        assert update_params[1] == "SOAR"
        assert update_params[-2:] == ("story-1", "user-1")
        sections = json.loads(update_params[2])
        assert set(sections) == {"situation", "obstacles", "actions", "results"}

    def test_explicit_options_override_framework(self, service, mock_db, collaborators, proj42_activities):
        _, cursor = mock_db
        _, activity_service, _ = collaborators
        activity_service.get_by_ids.return_value = proj42_activities
        cursor.fetchone.side_effect = [_story_row(framework="SOAR"), _story_row()]

        service.regenerate_narrative("user-1", "story-1", GenerationOptions(framework="STAR"))

        assert cursor.execute.call_args_list[1].args[1][1] == "STAR"

    def test_rejected_regeneration_leaves_story(self, mock_db, collaborators, hydrator, proj42_activities):
        db, cursor = mock_db
        cluster_service, activity_service, persona_service = collaborators
        activity_service.get_by_ids.return_value = proj42_activities
        cursor.fetchone.return_value = _story_row()
        service = CareerStoryService(
            db,
            generator=_unevidenced_generator(),
            cluster_service=cluster_service,
            activity_service=activity_service,
            persona_service=persona_service,
            hydrator=hydrator,
        )

        outcome = service.regenerate_narrative("user-1", "story-1")

        assert not outcome.accepted
        assert not any(s.startswith("UPDATE") for s in _sql(cursor))

    def test_story_deleted_during_generation(self, service, mock_db, collaborators, proj42_activities):
        _, cursor = mock_db
        _, activity_service, _ = collaborators
        activity_service.get_by_ids.return_value = proj42_activities
        cursor.fetchone.side_effect = [_story_row(), None]

        with pytest.raises(NotFoundError):
            service.regenerate_narrative("user-1", "story-1")


class TestReads:
    def test_get_story_parses_json_columns(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = _story_row()

        story = service.get_story("user-1", "story-1")

        assert story.sections["situation"].evidence[0].activity_id == "act-jira"
        assert story.corroborating_refs[0].ref == "PROJ-42"
        assert story.verification == []

    def test_get_story_scoped_to_user(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            service.get_story("user-2", "story-1")

        assert cursor.execute.call_args.args[1] == ("story-1", "user-2")
        assert exc_info.value.details == {"story_id": "story-1"}

    def test_get_stories_keeps_requested_order(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchall.return_value = [_story_row(id="b"), _story_row(id="a")]

        stories = service.get_stories("user-1", ["a", "b"])

        assert [s.id for s in stories] == ["a", "b"]

    def test_get_stories_reports_missing(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchall.return_value = [_story_row(id="a")]

        with pytest.raises(NotFoundError) as exc_info:
            service.get_stories("user-1", ["a", "b", "c"])

        assert exc_info.value.details == {"story_ids": ["b", "c"]}

    def test_list_published_only(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchall.return_value = []

        service.list_stories("user-1", published_only=True)

        assert "is_published = TRUE" in cursor.execute.call_args.args[0]


class TestPublishing:
    def test_publish_keeps_first_published_at(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = _story_row(is_published=True, visibility="network")

        story = service.publish("user-1", "story-1", visibility="network")

        sql, params = cursor.execute.call_args.args
        assert "COALESCE(published_at, NOW())" in sql
        assert params == ("network", "story-1", "user-1")
        assert story.is_published

    def test_publish_rejects_unknown_visibility(self, service, mock_db):
        _, cursor = mock_db

        with pytest.raises(InvalidInputError):
            service.publish("user-1", "story-1", visibility="public")

        cursor.execute.assert_not_called()

    def test_unpublish_resets_visibility(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = _story_row()

        service.unpublish("user-1", "story-1")

        sql = _sql(cursor)[0]
        assert "is_published = FALSE, visibility = 'private', published_at = NULL" in sql

    def test_set_visibility_missing_story(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError):
            service.set_visibility("user-1", "nope", "workspace")

    def test_delete_story(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = {"id": "story-1"}

        service.delete_story("user-1", "story-1")

        assert cursor.execute.call_args.args[1] == ("story-1", "user-1")

    def test_delete_missing_story(self, service, mock_db):
        _, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError):
            service.delete_story("user-1", "nope")
