"""
Runtime configuration loaded from the environment.

Values come from the process environment, with a project-level .env file
loaded first when present.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


def _parse_env_int(name: str, default: int, min_val: int, max_val: int) -> int:
    """Parse an integer environment variable with bounds checking.

    Args:
        name: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value (inclusive)
        max_val: Maximum allowed value (inclusive)

    Returns:
        Parsed integer within bounds, or default if invalid
    """
    try:
        val = int(os.getenv(name, str(default)))
        if not (min_val <= val <= max_val):
            logger.warning(f"{name}={val} out of bounds [{min_val}, {max_val}], using {default}")
            return default
        return val
    except ValueError:
        logger.warning(f"{name} invalid, using {default}")
        return default


def _parse_env_float(name: str, default: float, min_val: float, max_val: float) -> float:
    """Parse a float environment variable with bounds checking."""
    try:
        val = float(os.getenv(name, str(default)))
        if not (min_val <= val <= max_val):
            logger.warning(f"{name}={val} out of bounds [{min_val}, {max_val}], using {default}")
            return default
        return val
    except ValueError:
        logger.warning(f"{name} invalid, using {default}")
        return default


# Database
DB_STATEMENT_TIMEOUT_MS = _parse_env_int("DB_STATEMENT_TIMEOUT_MS", 30000, 1000, 600000)

# Language model
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_TIMEOUT_SECONDS = _parse_env_float("LLM_TIMEOUT_SECONDS", 30.0, 1.0, 300.0)
LLM_MAX_RETRIES = _parse_env_int("LLM_MAX_RETRIES", 3, 1, 10)

# Clustering: activities sharing a ref are related only inside this window
CLUSTER_WINDOW_DAYS = _parse_env_int("CLUSTER_WINDOW_DAYS", 14, 1, 365)

# A ref counts as "shared" once this many member activities carry it
SHARED_REF_MIN_OCCURRENCES = _parse_env_int("SHARED_REF_MIN_OCCURRENCES", 2, 2, 100)

# Acceptance gate: fraction of cluster members that must be cited as evidence
MIN_PARTICIPATION_RATIO = _parse_env_float("MIN_PARTICIPATION_RATIO", 0.5, 0.0, 1.0)

# Acceptance gate: highest share of members the user only observed (needs persona identities)
MAX_OBSERVER_RATIO = _parse_env_float("MAX_OBSERVER_RATIO", 0.6, 0.0, 1.0)


def llm_enabled() -> bool:
    """True when an OpenAI key is configured."""
    return bool(os.getenv("OPENAI_API_KEY"))
