"""
ClusterHydrator: expand a persisted cluster into its working representation.

Hydration is side-effect free and recomputed on every call: shared refs,
tool types, date range and activity count always reflect the cluster's
current membership rather than anything cached on the cluster row.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from career_stories.config import SHARED_REF_MIN_OCCURRENCES
from career_stories.models import Activity, Cluster, ClusterMetrics, CorroboratingRef
from career_stories.services.activity_clustering import (
    compute_corroborating_refs,
    compute_metrics,
    sort_activities,
)

logger = logging.getLogger(__name__)

MAX_MISSING_IDS_REPORTED = 10


@dataclass
class HydrationWarning:
    code: str
    message: str
    missing_ids: List[str] = field(default_factory=list)


@dataclass
class HydratedCluster:
    """A cluster with its activities loaded and metrics derived."""

    cluster_id: Optional[str]
    name: Optional[str]
    activities: List[Activity] = field(default_factory=list)
    corroborating_refs: List[CorroboratingRef] = field(default_factory=list)
    metrics: ClusterMetrics = field(default_factory=ClusterMetrics)
    warnings: List[HydrationWarning] = field(default_factory=list)

    @property
    def activity_ids(self) -> List[str]:
        return [a.id for a in self.activities]

    @property
    def shared_refs(self) -> List[str]:
        return [c.ref for c in self.corroborating_refs]

    @property
    def size(self) -> int:
        return len(self.activities)


class ClusterHydrator:
    """Joins cluster membership with activity records."""

    def __init__(self, shared_ref_min_occurrences: int = SHARED_REF_MIN_OCCURRENCES):
        self.shared_ref_min_occurrences = shared_ref_min_occurrences

    def hydrate(
        self,
        activities: Sequence[Activity],
        cluster_id: Optional[str] = None,
        name: Optional[str] = None,
        member_ids: Optional[Sequence[str]] = None,
    ) -> HydratedCluster:
        """
        Build a HydratedCluster.

        Args:
            activities: Activity records available for the cluster
            cluster_id: Persisted cluster id (None for pseudo-clusters)
            name: Display name
            member_ids: Expected membership. When given, only these activities
                        are included and ids with no matching record are
                        reported as an ACTIVITIES_NOT_FOUND warning.

        Returns:
            HydratedCluster with activities sorted earliest first
        """
        lookup = build_lookup(activities)
        warnings: List[HydrationWarning] = []

        if member_ids is None:
            members = list(lookup.values())
        else:
            members = []
            missing = []
            for activity_id in dict.fromkeys(member_ids):
                activity = lookup.get(activity_id)
                if activity is None:
                    missing.append(activity_id)
                else:
                    members.append(activity)
            if missing:
                logger.warning(
                    f"Cluster {cluster_id}: {len(missing)} member activities not found"
                )
                warnings.append(HydrationWarning(
                    code="ACTIVITIES_NOT_FOUND",
                    message=f"{len(missing)} activities referenced by the cluster were not found",
                    missing_ids=missing[:MAX_MISSING_IDS_REPORTED],
                ))

        ordered = sort_activities(members)
        return HydratedCluster(
            cluster_id=cluster_id,
            name=name,
            activities=ordered,
            corroborating_refs=compute_corroborating_refs(ordered, self.shared_ref_min_occurrences),
            metrics=compute_metrics(ordered),
            warnings=warnings,
        )

    def hydrate_cluster(self, cluster: Cluster, activities: Sequence[Activity]) -> HydratedCluster:
        """Hydrate a persisted cluster against its stored membership."""
        return self.hydrate(
            activities,
            cluster_id=cluster.id,
            name=cluster.name,
            member_ids=cluster.activity_ids,
        )


def build_lookup(activities: Sequence[Activity]) -> Dict[str, Activity]:
    """Id -> activity. On duplicate ids the last record wins."""
    lookup: Dict[str, Activity] = {}
    for activity in activities:
        lookup[activity.id] = activity
    return lookup
