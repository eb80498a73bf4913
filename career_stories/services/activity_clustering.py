"""
ActivityClusterer: group related activities into candidate clusters.

Two activities are related when they share at least one cross-tool ref
(Jira key, PR ref, doc id, ...) and their timestamps lie within the sliding
window. Relatedness is merged transitively: if A~B and B~C then A, B and C
form one candidate even when A and C share nothing.

Transitive merging is done with single-linkage agglomerative clustering on
a precomputed 0/1 distance matrix (0 = related), which yields exactly the
connected components of the relatedness graph.

Determinism:
    Activities are sorted by (timestamp, id) before clustering, member lists
    keep that order, and candidates are ordered by their earliest member.
    The same input therefore always produces the same clusters in the same
    order.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.cluster import AgglomerativeClustering

from career_stories.config import CLUSTER_WINDOW_DAYS, SHARED_REF_MIN_OCCURRENCES
from career_stories.errors import InvalidInputError
from career_stories.models import Activity, ClusterMetrics, CorroboratingRef, DateRange

logger = logging.getLogger(__name__)


DEFAULT_MIN_CLUSTER_SIZE = 2
MIN_CLUSTER_SIZE_FLOOR = 2
MIN_CLUSTER_SIZE_CEILING = 100

# Distances are 0 (related) or 1 (unrelated); anything under 0.5 merges
RELATED_DISTANCE_THRESHOLD = 0.5


@dataclass
class CandidateCluster:
    """A group of related activities that passed the size filter."""

    activity_ids: List[str] = field(default_factory=list)
    shared_refs: List[str] = field(default_factory=list)
    earliest: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self.activity_ids)


@dataclass
class ClusteringResult:
    """Result of one clustering pass over a user's activities."""

    total_activities: int
    clusters: List[CandidateCluster] = field(default_factory=list)
    unclustered_activity_ids: List[str] = field(default_factory=list)
    discarded_groups: int = 0  # related groups smaller than the minimum size
    cluster_size_distribution: Dict[int, int] = field(default_factory=dict)  # size -> count


def validate_min_cluster_size(min_cluster_size: int) -> int:
    """Raise INVALID_INPUT unless the minimum size is within [2, 100]."""
    if not isinstance(min_cluster_size, int) or isinstance(min_cluster_size, bool):
        raise InvalidInputError(
            "min_cluster_size must be an integer",
            {"min_cluster_size": min_cluster_size},
        )
    if not (MIN_CLUSTER_SIZE_FLOOR <= min_cluster_size <= MIN_CLUSTER_SIZE_CEILING):
        raise InvalidInputError(
            f"min_cluster_size must be between {MIN_CLUSTER_SIZE_FLOOR} and "
            f"{MIN_CLUSTER_SIZE_CEILING}",
            {"min_cluster_size": min_cluster_size},
        )
    return min_cluster_size


def sort_activities(activities: Sequence[Activity]) -> List[Activity]:
    """Chronological order with id as the tie-break."""
    return sorted(activities, key=lambda a: (a.timestamp, a.id))


def compute_corroborating_refs(
    activities: Sequence[Activity],
    min_occurrences: int = SHARED_REF_MIN_OCCURRENCES,
) -> List[CorroboratingRef]:
    """
    Refs carried by at least ``min_occurrences`` distinct activities.

    Returned in order of first appearance across the chronologically sorted
    activities, each with the ids of the activities that carry it.
    """
    carriers: Dict[str, List[str]] = {}
    for activity in sort_activities(activities):
        for ref in dict.fromkeys(activity.refs):
            carriers.setdefault(ref, []).append(activity.id)

    return [
        CorroboratingRef(ref=ref, activity_ids=ids)
        for ref, ids in carriers.items()
        if len(ids) >= min_occurrences
    ]


def compute_shared_refs(
    activities: Sequence[Activity],
    min_occurrences: int = SHARED_REF_MIN_OCCURRENCES,
) -> List[str]:
    return [c.ref for c in compute_corroborating_refs(activities, min_occurrences)]


def compute_metrics(activities: Sequence[Activity]) -> ClusterMetrics:
    """Activity count, distinct ref count, tool types and date span."""
    ordered = sort_activities(activities)
    if not ordered:
        return ClusterMetrics()

    refs = set()
    for activity in ordered:
        refs.update(activity.refs)

    return ClusterMetrics(
        activity_count=len(ordered),
        ref_count=len(refs),
        tool_types=list(dict.fromkeys(a.source for a in ordered)),
        date_range=DateRange(start=ordered[0].timestamp, end=ordered[-1].timestamp),
    )


class ActivityClusterer:
    """
    Groups activities by shared refs inside a time window.

    Pure: operates on in-memory activities and never touches storage.
    """

    def __init__(
        self,
        window_days: int = CLUSTER_WINDOW_DAYS,
        shared_ref_min_occurrences: int = SHARED_REF_MIN_OCCURRENCES,
    ):
        """
        Args:
            window_days: Maximum distance in days between two activities
                         for a shared ref to relate them.
            shared_ref_min_occurrences: How many members must carry a ref
                         for it to count as shared.
        """
        self.window = timedelta(days=window_days)
        self.shared_ref_min_occurrences = shared_ref_min_occurrences

    def cluster(
        self,
        activities: Sequence[Activity],
        min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    ) -> ClusteringResult:
        """
        Partition activities into candidate clusters.

        Args:
            activities: Activities to consider (typically the unclustered ones)
            min_cluster_size: Groups smaller than this are discarded and their
                              activities stay unclustered.

        Returns:
            ClusteringResult with candidates ordered by earliest member
        """
        validate_min_cluster_size(min_cluster_size)

        ordered = sort_activities(activities)
        result = ClusteringResult(total_activities=len(ordered))
        if not ordered:
            return result

        labels = self._related_labels(ordered)

        groups: Dict[int, List[Activity]] = defaultdict(list)
        for activity, label in zip(ordered, labels):
            groups[int(label)].append(activity)

        # Members are already chronological; order groups by first member
        candidates = sorted(
            groups.values(),
            key=lambda members: (members[0].timestamp, members[0].id),
        )

        for members in candidates:
            if len(members) < min_cluster_size:
                if len(members) > 1:
                    result.discarded_groups += 1
                result.unclustered_activity_ids.extend(a.id for a in members)
                continue

            result.clusters.append(CandidateCluster(
                activity_ids=[a.id for a in members],
                shared_refs=compute_shared_refs(members, self.shared_ref_min_occurrences),
                earliest=members[0].timestamp,
            ))
            size = len(members)
            result.cluster_size_distribution[size] = (
                result.cluster_size_distribution.get(size, 0) + 1
            )

        self._log_clustering_results(result)
        return result

    def _distance_matrix(self, ordered: List[Activity]) -> np.ndarray:
        """0/1 distance matrix: 0 where two activities are related."""
        n = len(ordered)
        distances = np.ones((n, n), dtype=float)
        np.fill_diagonal(distances, 0.0)

        ref_index: Dict[str, List[int]] = defaultdict(list)
        for idx, activity in enumerate(ordered):
            for ref in set(activity.refs):
                ref_index[ref].append(idx)

        for indices in ref_index.values():
            # indices ascend in time, so stop scanning once past the window
            for pos, i in enumerate(indices):
                for j in indices[pos + 1:]:
                    if ordered[j].timestamp - ordered[i].timestamp > self.window:
                        break
                    distances[i, j] = 0.0
                    distances[j, i] = 0.0

        return distances

    def _related_labels(self, ordered: List[Activity]) -> np.ndarray:
        if len(ordered) == 1:
            return np.array([0])

        distance_matrix = self._distance_matrix(ordered)

        clustering = AgglomerativeClustering(
            n_clusters=None,  # Let distance_threshold determine cluster count
            metric="precomputed",
            linkage="single",
            distance_threshold=RELATED_DISTANCE_THRESHOLD,
        )
        labels = clustering.fit_predict(distance_matrix)

        logger.debug(
            f"Relatedness clustering: {len(ordered)} activities -> "
            f"{len(set(labels))} groups (window={self.window.days}d)"
        )
        return labels

    def _log_clustering_results(self, result: ClusteringResult) -> None:
        clustered = sum(c.size for c in result.clusters)
        logger.info(
            f"Clustering complete: {result.total_activities} activities -> "
            f"{len(result.clusters)} clusters ({clustered} clustered, "
            f"{len(result.unclustered_activity_ids)} unclustered, "
            f"{result.discarded_groups} undersized groups discarded)"
        )
        if result.cluster_size_distribution:
            sizes = ", ".join(
                f"{size}:{count}" for size, count in sorted(result.cluster_size_distribution.items())
            )
            logger.debug(f"Cluster size distribution: {sizes}")
