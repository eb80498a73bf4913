"""Tests for ActivityService."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

from career_stories.models import ActivityCreate, DateRange
from career_stories.services.activity_service import ActivityService


def _create(**overrides):
    data = {
        "source": "jira",
        "source_id": "10001",
        "title": "AUTH-12 Session tokens expire too early",
        "timestamp": datetime(2025, 3, 3, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return ActivityCreate(**data)


class TestRecordActivities:
    """Test ingest with ref extraction."""

    def test_extracts_refs_when_not_supplied(self, mock_db):
        db, cursor = mock_db
        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = [{"id": "act-1"}]
            inserted = ActivityService(db).record_activities("user-1", [_create()])

        assert inserted == 1
        values = mock_execute.call_args.args[2]
        assert values[0][7] == ["AUTH-12"]

    def test_explicit_refs_are_kept(self, mock_db):
        db, cursor = mock_db
        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = [{"id": "act-1"}]
            ActivityService(db).record_activities("user-1", [_create(refs=["CUSTOM-1"])])

        assert mock_execute.call_args.args[2][0][7] == ["CUSTOM-1"]

    def test_explicit_empty_refs_skip_extraction(self, mock_db):
        db, cursor = mock_db
        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = [{"id": "act-1"}]
            ActivityService(db).record_activities("user-1", [_create(refs=[])])

        assert mock_execute.call_args.args[2][0][7] == []

    def test_raw_data_serialized(self, mock_db):
        db, cursor = mock_db
        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = [{"id": "act-1"}]
            ActivityService(db).record_activities("user-1", [_create(raw_data={"storyPoints": 5})])

        assert json.loads(mock_execute.call_args.args[2][0][8]) == {"storyPoints": 5}

    def test_conflicts_ignored(self, mock_db):
        db, cursor = mock_db
        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = []
            inserted = ActivityService(db).record_activities("user-1", [_create()])

        assert inserted == 0
        assert "ON CONFLICT (user_id, source, source_id) DO NOTHING" in mock_execute.call_args.args[1]

    def test_counts_rows_across_pages(self, mock_db):
        db, cursor = mock_db
        batch = [_create(source_id=str(i)) for i in range(150)]

        with patch("career_stories.services.activity_service.execute_values") as mock_execute:
            mock_execute.return_value = [{"id": f"act-{i}"} for i in range(150)]
            inserted = ActivityService(db).record_activities("user-1", batch)

        assert inserted == 150
        assert len(mock_execute.call_args.args[2]) == 150
        assert mock_execute.call_args.kwargs["fetch"] is True
        assert "RETURNING id" in mock_execute.call_args.args[1]

    def test_empty_batch(self, mock_db):
        db, cursor = mock_db
        assert ActivityService(db).record_activities("user-1", []) == 0
        db.cursor.assert_not_called()


class TestReads:
    def test_list_unclustered_with_date_range(self, mock_db, activity_row, make_activity):
        db, cursor = mock_db
        cursor.fetchall.return_value = [activity_row(make_activity("a", refs=["X-1"]))]
        date_range = DateRange(
            start=datetime(2025, 1, 1, tzinfo=timezone.utc),
            end=datetime(2025, 12, 31, tzinfo=timezone.utc),
        )

        activities = ActivityService(db).list_unclustered("user-1", date_range)

        sql, params = cursor.execute.call_args.args
        assert "cluster_id IS NULL" in sql
        assert "BETWEEN" in sql
        assert params == ["user-1", date_range.start, date_range.end]
        assert activities[0].refs == ["X-1"]

    def test_raw_data_string_is_parsed(self, mock_db, activity_row, make_activity):
        db, cursor = mock_db
        row = activity_row(make_activity("a"))
        row["raw_data"] = '{"additions": 10}'
        cursor.fetchall.return_value = [row]

        activities = ActivityService(db).get_by_ids("user-1", ["a"])

        assert activities[0].raw_data == {"additions": 10}

    def test_get_by_ids_empty_skips_query(self, mock_db):
        db, _ = mock_db
        assert ActivityService(db).get_by_ids("user-1", []) == []
        db.cursor.assert_not_called()

    def test_clear_activities(self, mock_db):
        db, cursor = mock_db
        cursor.rowcount = 7

        assert ActivityService(db).clear_activities("user-1") == 7
        assert cursor.execute.call_args.args[1] == ("user-1",)
