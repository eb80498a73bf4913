"""
Tests for ClusterService.

Database access is mocked at the cursor; activity reads go through a mocked
ActivityService.
"""

from unittest.mock import Mock

import pytest

from career_stories.errors import InvalidInputError, NotFoundError
from career_stories.services.activity_service import ActivityService
from career_stories.services.cluster_service import ClusterService


@pytest.fixture
def activity_service():
    return Mock(spec=ActivityService)


@pytest.fixture
def cluster_row():
    return {
        "id": "cluster-1",
        "user_id": "user-1",
        "name": None,
        "created_at": None,
        "updated_at": None,
    }


def _executed_sql(cursor):
    return [" ".join(call.args[0].split()) for call in cursor.execute.call_args_list]


class TestClusterActivities:
    """Test running the clusterer and persisting results."""

    def test_persists_candidate_and_assigns_members(self, mock_db, activity_service, proj42_activities):
        db, cursor = mock_db
        activity_service.list_unclustered.return_value = proj42_activities
        cursor.fetchone.return_value = {"id": "cluster-1", "created_at": None, "updated_at": None}
        cursor.fetchall.return_value = [{"id": "act-jira"}, {"id": "act-pr"}, {"id": "act-doc"}]

        service = ClusterService(db, activity_service=activity_service)
        clusters = service.cluster_activities("user-1")

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.id == "cluster-1"
        assert cluster.activity_ids == ["act-jira", "act-pr", "act-doc"]
        assert cluster.shared_refs == ["PROJ-42"]
        assert cluster.metrics.activity_count == 3

        sql = _executed_sql(cursor)
        assert any(s.startswith("INSERT INTO story_clusters") for s in sql)
        update_call = cursor.execute.call_args_list[1]
        assert "cluster_id IS NULL" in update_call.args[0]
        assert update_call.args[1] == ("cluster-1", "user-1", ["act-jira", "act-pr", "act-doc"])

    def test_members_claimed_elsewhere_are_left_out(self, mock_db, activity_service, proj42_activities):
        """Another clustering run took act-doc between the read and the update."""
        db, cursor = mock_db
        activity_service.list_unclustered.return_value = proj42_activities
        cursor.fetchone.return_value = {"id": "cluster-1", "created_at": None, "updated_at": None}
        cursor.fetchall.return_value = [{"id": "act-jira"}, {"id": "act-pr"}]

        clusters = ClusterService(db, activity_service=activity_service).cluster_activities("user-1")

        assert clusters[0].activity_ids == ["act-jira", "act-pr"]
        assert clusters[0].shared_refs == ["PROJ-42"]
        assert clusters[0].metrics.activity_count == 2

    def test_undersized_claim_discards_cluster(self, mock_db, activity_service, proj42_activities):
        db, cursor = mock_db
        activity_service.list_unclustered.return_value = proj42_activities
        cursor.fetchone.return_value = {"id": "cluster-1", "created_at": None, "updated_at": None}
        cursor.fetchall.return_value = []

        clusters = ClusterService(db, activity_service=activity_service).cluster_activities("user-1")

        assert clusters == []
        delete_call = cursor.execute.call_args_list[-1]
        assert delete_call.args == ("DELETE FROM story_clusters WHERE id = %s", ("cluster-1",))

    def test_rerun_with_nothing_unclustered_creates_nothing(self, mock_db, activity_service):
        """Clustered activities are excluded, so a second run is a no-op."""
        db, cursor = mock_db
        activity_service.list_unclustered.return_value = []

        clusters = ClusterService(db, activity_service=activity_service).cluster_activities("user-1")

        assert clusters == []
        cursor.execute.assert_not_called()

    def test_invalid_min_size_rejected_before_reading(self, mock_db, activity_service):
        db, _ = mock_db
        service = ClusterService(db, activity_service=activity_service)

        with pytest.raises(InvalidInputError):
            service.cluster_activities("user-1", min_cluster_size=101)

        activity_service.list_unclustered.assert_not_called()


class TestReads:
    """Test loading clusters."""

    def test_get_cluster_derives_fields_from_members(
        self, mock_db, activity_service, cluster_row, proj42_activities
    ):
        db, cursor = mock_db
        cursor.fetchone.return_value = cluster_row
        activity_service.get_by_cluster.return_value = proj42_activities

        cluster = ClusterService(db, activity_service=activity_service).get_cluster("user-1", "cluster-1")

        assert cluster.activity_ids == ["act-jira", "act-pr", "act-doc"]
        assert cluster.shared_refs == ["PROJ-42"]
        assert cluster.metrics.tool_types == ["jira", "github", "confluence"]

    def test_get_cluster_not_found(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            ClusterService(db, activity_service=activity_service).get_cluster("user-1", "nope")

        assert exc_info.value.code == "NOT_FOUND"

    def test_list_clusters_groups_members(self, mock_db, activity_service, make_activity):
        db, cursor = mock_db
        cursor.fetchall.return_value = [
            {"id": "c-1", "user_id": "user-1", "name": "Auth", "created_at": None, "updated_at": None},
            {"id": "c-2", "user_id": "user-1", "name": None, "created_at": None, "updated_at": None},
        ]
        a = make_activity("a", refs=["AUTH-1"])
        b = make_activity("b", refs=["AUTH-1"], hours=1)
        a.cluster_id = "c-1"
        b.cluster_id = "c-1"
        activity_service.get_by_clusters.return_value = [a, b]

        clusters = ClusterService(db, activity_service=activity_service).list_clusters("user-1")

        assert [c.id for c in clusters] == ["c-1", "c-2"]
        assert clusters[0].activity_ids == ["a", "b"]
        assert clusters[0].shared_refs == ["AUTH-1"]
        assert clusters[1].activity_ids == []

    def test_hydrate(self, mock_db, activity_service, cluster_row, proj42_activities):
        db, cursor = mock_db
        cursor.fetchone.return_value = {**cluster_row, "name": "Checkout"}
        activity_service.get_by_cluster.return_value = proj42_activities

        hydrated = ClusterService(db, activity_service=activity_service).hydrate("user-1", "cluster-1")

        assert hydrated.cluster_id == "cluster-1"
        assert hydrated.name == "Checkout"
        assert hydrated.size == 3


class TestRename:
    def test_rename_updates_name_only(self, mock_db, activity_service, cluster_row):
        db, cursor = mock_db
        cursor.fetchone.side_effect = [{"id": "cluster-1"}, {**cluster_row, "name": "Checkout"}]
        activity_service.get_by_cluster.return_value = []

        cluster = ClusterService(db, activity_service=activity_service).rename_cluster(
            "user-1", "cluster-1", "  Checkout  "
        )

        assert cluster.name == "Checkout"
        assert cursor.execute.call_args_list[0].args[1] == ("Checkout", "cluster-1", "user-1")

    @pytest.mark.parametrize("name", ["", "   ", "x" * 201])
    def test_rename_rejects_bad_names(self, mock_db, activity_service, name):
        db, cursor = mock_db

        with pytest.raises(InvalidInputError):
            ClusterService(db, activity_service=activity_service).rename_cluster("user-1", "c", name)

        cursor.execute.assert_not_called()

    def test_rename_missing_cluster(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError):
            ClusterService(db, activity_service=activity_service).rename_cluster("user-1", "c", "New")


class TestMembership:
    """Test add/remove of single activities."""

    def test_add_activity_locks_cluster_first(self, mock_db, activity_service, cluster_row):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "cluster-1"}]
        cursor.fetchone.side_effect = [{"id": "act-9"}, cluster_row]
        activity_service.get_by_cluster.return_value = []

        ClusterService(db, activity_service=activity_service).add_activity_to_cluster(
            "user-1", "cluster-1", "act-9"
        )

        sql = _executed_sql(cursor)
        assert "FOR UPDATE" in sql[0]
        assert sql[1].startswith("UPDATE activities SET cluster_id = %s")

    def test_add_unknown_activity(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "cluster-1"}]
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            ClusterService(db, activity_service=activity_service).add_activity_to_cluster(
                "user-1", "cluster-1", "missing"
            )

        assert "missing" in exc_info.value.message

    def test_remove_activity_not_in_cluster(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "cluster-1"}]
        cursor.fetchone.return_value = None

        with pytest.raises(NotFoundError):
            ClusterService(db, activity_service=activity_service).remove_activity_from_cluster(
                "user-1", "cluster-1", "act-x"
            )

    def test_remove_last_activity_keeps_cluster(self, mock_db, activity_service, cluster_row):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "cluster-1"}]
        cursor.fetchone.side_effect = [{"id": "act-1"}, cluster_row]
        activity_service.get_by_cluster.return_value = []

        cluster = ClusterService(db, activity_service=activity_service).remove_activity_from_cluster(
            "user-1", "cluster-1", "act-1"
        )

        assert cluster.id == "cluster-1"
        assert cluster.activity_ids == []
        assert not any(s.startswith("DELETE") for s in _executed_sql(cursor))


class TestMerge:
    """Test merge validation and execution."""

    @pytest.mark.parametrize(
        "target,sources",
        [
            ("t", []),
            ("t", ["a", "a"]),
            ("t", ["a", "t"]),
        ],
    )
    def test_invalid_merge_requests(self, mock_db, activity_service, target, sources):
        db, cursor = mock_db

        with pytest.raises(InvalidInputError):
            ClusterService(db, activity_service=activity_service).merge_clusters("user-1", target, sources)

        cursor.execute.assert_not_called()

    def test_missing_source_changes_nothing(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "t"}, {"id": "a"}]

        with pytest.raises(NotFoundError) as exc_info:
            ClusterService(db, activity_service=activity_service).merge_clusters("user-1", "t", ["a", "b"])

        assert exc_info.value.details == {"cluster_ids": ["b"]}
        assert cursor.execute.call_count == 1  # only the lock query ran

    def test_merge_moves_members_and_deletes_sources(
        self, mock_db, activity_service, cluster_row, make_activity
    ):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "t"}, {"id": "a"}, {"id": "b"}]
        cursor.fetchone.return_value = {**cluster_row, "id": "t"}
        union = [
            make_activity("t1", refs=["M-1"], hours=0),
            make_activity("a1", refs=["M-1"], hours=1),
            make_activity("b1", refs=["N-1"], hours=2),
        ]
        activity_service.get_by_cluster.return_value = union

        merged = ClusterService(db, activity_service=activity_service).merge_clusters(
            "user-1", "t", ["a", "b"]
        )

        assert merged.id == "t"
        assert merged.activity_ids == ["t1", "a1", "b1"]
        sql = _executed_sql(cursor)
        assert "FOR UPDATE" in sql[0]
        assert cursor.execute.call_args_list[0].args[1] == ("user-1", ["t", "a", "b"])
        assert sql[1].startswith("UPDATE activities SET cluster_id = %s")
        assert cursor.execute.call_args_list[1].args[1] == ("t", "user-1", ["a", "b"])
        assert sql[2].startswith("DELETE FROM story_clusters")
        assert cursor.execute.call_args_list[2].args[1] == ("user-1", ["a", "b"])


class TestDelete:
    def test_delete_unassigns_members(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchall.return_value = [{"id": "cluster-1"}]
        cursor.rowcount = 3

        ClusterService(db, activity_service=activity_service).delete_cluster("user-1", "cluster-1")

        sql = _executed_sql(cursor)
        assert sql[1].startswith("UPDATE activities SET cluster_id = NULL")
        assert sql[2].startswith("DELETE FROM story_clusters")

    def test_delete_missing_cluster(self, mock_db, activity_service):
        db, cursor = mock_db
        cursor.fetchall.return_value = []

        with pytest.raises(NotFoundError):
            ClusterService(db, activity_service=activity_service).delete_cluster("user-1", "nope")
