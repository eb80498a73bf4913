"""
Cluster Service

Persists clustering results and manages cluster membership. All mutations
run on the caller's connection and are committed (or rolled back) when the
outer connection context manager exits, so each public method is atomic.

Membership changes lock the affected cluster rows with SELECT ... FOR UPDATE
so concurrent merge/add/remove calls against the same cluster serialize.
Clustering claims members with a conditional UPDATE; a candidate left below
the minimum size by a concurrent run is discarded.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from career_stories.errors import InvalidInputError, NotFoundError
from career_stories.models import CLUSTER_NAME_MAX_LENGTH, Activity, Cluster, DateRange
from career_stories.services.activity_clustering import (
    DEFAULT_MIN_CLUSTER_SIZE,
    ActivityClusterer,
    compute_metrics,
    compute_shared_refs,
    validate_min_cluster_size,
)
from career_stories.services.activity_service import ActivityService
from career_stories.services.cluster_hydrator import ClusterHydrator, HydratedCluster

logger = logging.getLogger(__name__)


class ClusterService:
    """
    Manages clusters for a user.

    Responsibilities:
    - Run the clusterer over unclustered activities and persist candidates
    - Rename, add/remove members, merge and delete clusters
    - Load clusters with membership-derived shared refs and metrics
    """

    def __init__(
        self,
        db_connection,
        activity_service: Optional[ActivityService] = None,
        clusterer: Optional[ActivityClusterer] = None,
        hydrator: Optional[ClusterHydrator] = None,
    ):
        self.db = db_connection
        self.activity_service = activity_service or ActivityService(db_connection)
        self.clusterer = clusterer or ActivityClusterer()
        self.hydrator = hydrator or ClusterHydrator(self.clusterer.shared_ref_min_occurrences)

    # -------------------------------------------------------------------------
    # Clustering
    # -------------------------------------------------------------------------

    def cluster_activities(
        self,
        user_id: str,
        date_range: Optional[DateRange] = None,
        min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    ) -> List[Cluster]:
        """
        Cluster the user's unclustered activities and persist the survivors.

        Activities outside ``date_range`` and activities already in a cluster
        are not considered, so re-running is idempotent.

        Returns:
            Newly created clusters, ordered by earliest member
        """
        validate_min_cluster_size(min_cluster_size)

        activities = self.activity_service.list_unclustered(user_id, date_range)
        result = self.clusterer.cluster(activities, min_cluster_size=min_cluster_size)
        if not result.clusters:
            return []

        by_id = {a.id: a for a in activities}
        created: List[Cluster] = []

        with self.db.cursor() as cur:
            for candidate in result.clusters:
                cur.execute(
                    """
                    INSERT INTO story_clusters (user_id)
                    VALUES (%s)
                    RETURNING id, created_at, updated_at
                    """,
                    (user_id,),
                )
                row = cur.fetchone()
                cluster_id = row["id"]

                cur.execute(
                    """
                    UPDATE activities SET cluster_id = %s
                    WHERE user_id = %s AND id = ANY(%s) AND cluster_id IS NULL
                    RETURNING id
                    """,
                    (cluster_id, user_id, candidate.activity_ids),
                )
                claimed = {r["id"] for r in cur.fetchall()}

                # A concurrent run may have claimed some members first. Deleting
                # the cluster row releases any partial claim (ON DELETE SET NULL).
                if len(claimed) < min_cluster_size:
                    cur.execute("DELETE FROM story_clusters WHERE id = %s", (cluster_id,))
                    logger.warning(
                        f"Dropped candidate cluster for user {user_id}: claimed "
                        f"{len(claimed)} of {len(candidate.activity_ids)} activities"
                    )
                    continue

                members = [by_id[aid] for aid in candidate.activity_ids if aid in claimed]
                if len(members) == len(candidate.activity_ids):
                    shared_refs = list(candidate.shared_refs)
                else:
                    shared_refs = compute_shared_refs(members, self.hydrator.shared_ref_min_occurrences)
                created.append(Cluster(
                    id=cluster_id,
                    user_id=user_id,
                    activity_ids=[a.id for a in members],
                    shared_refs=shared_refs,
                    metrics=compute_metrics(members),
                    created_at=row.get("created_at"),
                    updated_at=row.get("updated_at"),
                ))

        logger.info(f"Created {len(created)} clusters for user {user_id}")
        return created

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_cluster(self, user_id: str, cluster_id: str) -> Cluster:
        """Load a cluster with membership-derived fields. Raises NotFoundError."""
        row, activities = self._load(user_id, cluster_id)
        return self._row_to_cluster(row, activities)

    def _load(self, user_id: str, cluster_id: str):
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT id, user_id, name, created_at, updated_at
                FROM story_clusters
                WHERE id = %s AND user_id = %s
                """,
                (cluster_id, user_id),
            )
            row = cur.fetchone()

        if not row:
            raise NotFoundError(f"Cluster not found: {cluster_id}", {"cluster_id": cluster_id})

        return row, self.activity_service.get_by_cluster(user_id, cluster_id)

    def list_clusters(self, user_id: str) -> List[Cluster]:
        """All of the user's clusters, oldest first."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT id, user_id, name, created_at, updated_at
                FROM story_clusters
                WHERE user_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (user_id,),
            )
            rows = cur.fetchall()

        if not rows:
            return []

        members: Dict[str, List[Activity]] = defaultdict(list)
        for activity in self.activity_service.get_by_clusters(user_id, [r["id"] for r in rows]):
            members[activity.cluster_id].append(activity)

        return [self._row_to_cluster(row, members.get(row["id"], [])) for row in rows]

    def hydrate(self, user_id: str, cluster_id: str) -> HydratedCluster:
        """Load and hydrate a cluster for narrative generation."""
        row, activities = self._load(user_id, cluster_id)
        cluster = self._row_to_cluster(row, activities)
        return self.hydrator.hydrate_cluster(cluster, activities)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def rename_cluster(self, user_id: str, cluster_id: str, name: str) -> Cluster:
        """Update the display name only."""
        name = (name or "").strip()
        if not name or len(name) > CLUSTER_NAME_MAX_LENGTH:
            raise InvalidInputError(
                f"Cluster name must be 1-{CLUSTER_NAME_MAX_LENGTH} characters",
                {"cluster_id": cluster_id},
            )

        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE story_clusters SET name = %s, updated_at = NOW()
                WHERE id = %s AND user_id = %s
                RETURNING id
                """,
                (name, cluster_id, user_id),
            )
            if cur.fetchone() is None:
                raise NotFoundError(f"Cluster not found: {cluster_id}", {"cluster_id": cluster_id})

        return self.get_cluster(user_id, cluster_id)

    def add_activity_to_cluster(self, user_id: str, cluster_id: str, activity_id: str) -> Cluster:
        """Assign one activity to a cluster, moving it out of any previous cluster."""
        with self.db.cursor() as cur:
            self._lock_clusters(cur, user_id, [cluster_id])
            cur.execute(
                """
                UPDATE activities SET cluster_id = %s
                WHERE id = %s AND user_id = %s
                RETURNING id
                """,
                (cluster_id, activity_id, user_id),
            )
            if cur.fetchone() is None:
                raise NotFoundError(f"Activity not found: {activity_id}", {"activity_id": activity_id})
            cur.execute(
                "UPDATE story_clusters SET updated_at = NOW() WHERE id = %s",
                (cluster_id,),
            )

        logger.debug(f"Added activity {activity_id} to cluster {cluster_id}")
        return self.get_cluster(user_id, cluster_id)

    def remove_activity_from_cluster(self, user_id: str, cluster_id: str, activity_id: str) -> Cluster:
        """
        Unassign one activity. Removing the last member leaves an empty
        cluster in place.
        """
        with self.db.cursor() as cur:
            self._lock_clusters(cur, user_id, [cluster_id])
            cur.execute(
                """
                UPDATE activities SET cluster_id = NULL
                WHERE id = %s AND user_id = %s AND cluster_id = %s
                RETURNING id
                """,
                (activity_id, user_id, cluster_id),
            )
            if cur.fetchone() is None:
                raise NotFoundError(
                    f"Activity {activity_id} is not in cluster {cluster_id}",
                    {"activity_id": activity_id, "cluster_id": cluster_id},
                )
            cur.execute(
                "UPDATE story_clusters SET updated_at = NOW() WHERE id = %s",
                (cluster_id,),
            )

        logger.debug(f"Removed activity {activity_id} from cluster {cluster_id}")
        return self.get_cluster(user_id, cluster_id)

    def merge_clusters(self, user_id: str, target_id: str, source_ids: Sequence[str]) -> Cluster:
        """
        Move every member of the source clusters into the target and delete
        the sources.

        Raises:
            InvalidInputError: empty or duplicated source ids, or the target
                               listed among the sources
            NotFoundError: any id not owned by the user (nothing is changed)
        """
        source_ids = list(source_ids or [])
        if not source_ids:
            raise InvalidInputError("merge requires at least one source cluster")
        if len(set(source_ids)) != len(source_ids):
            raise InvalidInputError("duplicate source cluster ids", {"source_ids": source_ids})
        if target_id in source_ids:
            raise InvalidInputError(
                "target cluster cannot also be a source",
                {"target_id": target_id},
            )

        with self.db.cursor() as cur:
            self._lock_clusters(cur, user_id, [target_id] + source_ids)
            cur.execute(
                """
                UPDATE activities SET cluster_id = %s
                WHERE user_id = %s AND cluster_id = ANY(%s)
                """,
                (target_id, user_id, source_ids),
            )
            moved = cur.rowcount
            cur.execute(
                "DELETE FROM story_clusters WHERE user_id = %s AND id = ANY(%s)",
                (user_id, source_ids),
            )
            cur.execute(
                "UPDATE story_clusters SET updated_at = NOW() WHERE id = %s",
                (target_id,),
            )

        logger.info(
            f"Merged {len(source_ids)} clusters into {target_id} ({moved} activities moved)"
        )
        return self.get_cluster(user_id, target_id)

    def delete_cluster(self, user_id: str, cluster_id: str) -> None:
        """Unassign all members, then remove the cluster row."""
        with self.db.cursor() as cur:
            self._lock_clusters(cur, user_id, [cluster_id])
            cur.execute(
                "UPDATE activities SET cluster_id = NULL WHERE user_id = %s AND cluster_id = %s",
                (user_id, cluster_id),
            )
            released = cur.rowcount
            cur.execute(
                "DELETE FROM story_clusters WHERE id = %s AND user_id = %s",
                (cluster_id, user_id),
            )

        logger.info(f"Deleted cluster {cluster_id} ({released} activities unclustered)")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _lock_clusters(self, cur, user_id: str, cluster_ids: List[str]) -> None:
        """Row-lock the clusters in id order; NotFoundError if any is missing."""
        cur.execute(
            """
            SELECT id FROM story_clusters
            WHERE user_id = %s AND id = ANY(%s)
            ORDER BY id
            FOR UPDATE
            """,
            (user_id, cluster_ids),
        )
        found = {row["id"] for row in cur.fetchall()}
        missing = [cid for cid in cluster_ids if cid not in found]
        if missing:
            raise NotFoundError(
                f"Cluster not found: {', '.join(missing)}",
                {"cluster_ids": missing},
            )

    def _row_to_cluster(self, row: dict, activities: List[Activity]) -> Cluster:
        metrics = compute_metrics(activities)
        ordered_ids = [a.id for a in sorted(activities, key=lambda a: (a.timestamp, a.id))]
        return Cluster(
            id=row["id"],
            user_id=row["user_id"],
            name=row.get("name"),
            activity_ids=ordered_ids,
            shared_refs=compute_shared_refs(activities, self.hydrator.shared_ref_min_occurrences),
            metrics=metrics,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
