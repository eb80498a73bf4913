"""
Activity Service

Storage for raw tool activities. From the pipeline's point of view
activities are append-only; only cluster assignment changes after ingest,
and a user may clear all of their activities at once.
"""

import json
import logging
from typing import List, Optional

from psycopg2.extras import execute_values

from career_stories.models import Activity, ActivityCreate, DateRange
from career_stories.services.ref_extractor import RefExtractor

logger = logging.getLogger(__name__)

ACTIVITY_COLUMNS = """
    id, user_id, source, source_id, source_url, title, description,
    timestamp, refs, raw_data, cluster_id
"""


class ActivityService:
    """Reads and writes the activities table."""

    def __init__(self, db_connection, ref_extractor: Optional[RefExtractor] = None):
        self.db = db_connection
        self.ref_extractor = ref_extractor or RefExtractor()

    def record_activities(self, user_id: str, activities: List[ActivityCreate]) -> int:
        """
        Store activities delivered by a tool integration.

        Activities without explicit refs get refs extracted from their
        content. Re-delivery of the same (source, source_id) is ignored.

        Returns:
            Number of new rows inserted
        """
        if not activities:
            return 0

        values = []
        for item in activities:
            refs = item.refs
            if refs is None:
                refs = self.ref_extractor.extract_from_activity(
                    title=item.title,
                    description=item.description,
                    source_url=item.source_url,
                    raw_data=item.raw_data,
                )
            values.append((
                user_id,
                item.source,
                item.source_id,
                item.source_url,
                item.title,
                item.description,
                item.timestamp,
                refs,
                json.dumps(item.raw_data) if item.raw_data is not None else None,
            ))

        with self.db.cursor() as cur:
            rows = execute_values(
                cur,
                """
                INSERT INTO activities (
                    user_id, source, source_id, source_url, title,
                    description, timestamp, refs, raw_data
                ) VALUES %s
                ON CONFLICT (user_id, source, source_id) DO NOTHING
                RETURNING id
                """,
                values,
                fetch=True,
            )
        inserted = len(rows)  # ids from every page, not just the last

        logger.info(f"Recorded {inserted} new activities for user {user_id} ({len(values)} delivered)")
        return inserted

    def list_unclustered(
        self,
        user_id: str,
        date_range: Optional[DateRange] = None,
    ) -> List[Activity]:
        """Activities not assigned to any cluster, oldest first."""
        sql = f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE user_id = %s AND cluster_id IS NULL"
        params: list = [user_id]
        if date_range is not None:
            sql += " AND timestamp BETWEEN %s AND %s"
            params.extend([date_range.start, date_range.end])
        sql += " ORDER BY timestamp ASC, id ASC"

        with self.db.cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        return [_row_to_activity(row) for row in rows]

    def get_by_ids(self, user_id: str, activity_ids: List[str]) -> List[Activity]:
        """Fetch the user's activities among the given ids, oldest first."""
        if not activity_ids:
            return []
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activities
                WHERE user_id = %s AND id = ANY(%s)
                ORDER BY timestamp ASC, id ASC
                """,
                (user_id, list(activity_ids)),
            )
            rows = cur.fetchall()
        return [_row_to_activity(row) for row in rows]

    def get_by_cluster(self, user_id: str, cluster_id: str) -> List[Activity]:
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activities
                WHERE user_id = %s AND cluster_id = %s
                ORDER BY timestamp ASC, id ASC
                """,
                (user_id, cluster_id),
            )
            rows = cur.fetchall()
        return [_row_to_activity(row) for row in rows]

    def get_by_clusters(self, user_id: str, cluster_ids: List[str]) -> List[Activity]:
        if not cluster_ids:
            return []
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activities
                WHERE user_id = %s AND cluster_id = ANY(%s)
                ORDER BY timestamp ASC, id ASC
                """,
                (user_id, list(cluster_ids)),
            )
            rows = cur.fetchall()
        return [_row_to_activity(row) for row in rows]

    def clear_activities(self, user_id: str) -> int:
        """Delete every activity owned by the user. Returns rows deleted."""
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM activities WHERE user_id = %s", (user_id,))
            deleted = cur.rowcount
        logger.info(f"Cleared {deleted} activities for user {user_id}")
        return deleted


def _row_to_activity(row: dict) -> Activity:
    raw_data = row.get("raw_data")
    if isinstance(raw_data, str):
        raw_data = json.loads(raw_data)
    return Activity(
        id=row["id"],
        user_id=row["user_id"],
        source=row["source"],
        source_id=row["source_id"],
        source_url=row.get("source_url"),
        title=row["title"],
        description=row.get("description"),
        timestamp=row["timestamp"],
        refs=list(row.get("refs") or []),
        raw_data=raw_data,
        cluster_id=row.get("cluster_id"),
    )
