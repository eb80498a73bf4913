"""
Pytest configuration for career stories tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: Tests against a real PostgreSQL database
- slow: Real language model calls

Run tiers:
- pytest                          # Fast only (default, quick feedback)
- pytest -m medium                # Medium only
- pytest -m "not slow"            # Fast + Medium (pre-merge)
- pytest -m slow                  # Slow only
- pytest --override-ini="addopts=" -v   # Full suite (all tiers)

Note: Unmarked tests are auto-assigned to 'fast' tier.
- Tests marked @pytest.mark.integration (without tier) default to 'medium'

API Key Safety:
- Fast/medium tests force-set a fake OPENAI_API_KEY to prevent accidental API calls
- Only slow tests (and full suite) preserve real API keys from environment
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, Mock

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from career_stories.models import Activity  # noqa: E402


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """
    Automatically assign tier markers to unmarked tests.

    Tests are fast by default unless explicitly marked as medium or slow.
    Tests marked with @pytest.mark.integration (but no tier) are assigned to
    'medium'.
    """
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        # Don't assign tier to skipped tests
        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Force a fake OpenAI key unless slow tests are selected."""
    markexpr = getattr(config.option, 'markexpr', '') or ''

    includes_slow_tests = (
        not markexpr or  # Full suite (no marker filter)
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    if includes_slow_tests:
        os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key-for-testing")
    else:
        os.environ["OPENAI_API_KEY"] = "sk-test-fake-key-for-testing"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path (session-scoped for efficiency)."""
    return PROJECT_ROOT


@pytest.fixture
def mock_db():
    """Create a mock database connection."""
    db = Mock()
    cursor = MagicMock()
    db.cursor.return_value.__enter__ = Mock(return_value=cursor)
    db.cursor.return_value.__exit__ = Mock(return_value=False)
    return db, cursor


BASE_TIME = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_activity():
    """Factory for Activity records; ``hours`` offsets from a fixed base time."""

    def _make(
        activity_id,
        refs=None,
        hours=0.0,
        source="github",
        title=None,
        description=None,
        raw_data=None,
        user_id="user-1",
    ):
        return Activity(
            id=activity_id,
            user_id=user_id,
            source=source,
            source_id=f"{source}-{activity_id}",
            title=title or f"Activity {activity_id}",
            description=description,
            timestamp=BASE_TIME + timedelta(hours=hours),
            refs=list(refs or []),
            raw_data=raw_data,
        )

    return _make


@pytest.fixture
def proj42_activities(make_activity):
    """Three activities from three tools sharing PROJ-42 within 48 hours."""
    return [
        make_activity(
            "act-jira",
            refs=["PROJ-42"],
            hours=0,
            source="jira",
            title="PROJ-42: Checkout latency is too slow for mobile users",
            description="Checkout p95 latency was 2.4 seconds, causing cart abandonment.",
        ),
        make_activity(
            "act-pr",
            refs=["PROJ-42", "acme/checkout#318"],
            hours=20,
            source="github",
            title="Implement response caching for checkout pricing",
            description="Adds a Redis cache in front of the pricing service.",
            raw_data={"additions": 420, "deletions": 85},
        ),
        make_activity(
            "act-doc",
            refs=["PROJ-42", "confluence:98765"],
            hours=44,
            source="confluence",
            title="PROJ-42 rollout notes",
            description="Reduced checkout p95 latency from 2.4s to 800ms after rollout.",
        ),
    ]


def _activity_row(activity: Activity) -> dict:
    return {
        "id": activity.id,
        "user_id": activity.user_id,
        "source": activity.source,
        "source_id": activity.source_id,
        "source_url": activity.source_url,
        "title": activity.title,
        "description": activity.description,
        "timestamp": activity.timestamp,
        "refs": list(activity.refs),
        "raw_data": activity.raw_data,
        "cluster_id": activity.cluster_id,
    }


@pytest.fixture
def activity_row():
    """Converts an Activity into a database row (RealDictCursor shape)."""
    return _activity_row
