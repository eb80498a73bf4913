"""PostgreSQL connection helpers for the career stories tables."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor

from career_stories.config import DB_STATEMENT_TIMEOUT_MS

logger = logging.getLogger(__name__)

APPLICATION_NAME = "career-stories"
SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/career_stories"
    )


def connect():
    """Open a connection whose cursors return dict rows."""
    return psycopg2.connect(
        get_connection_string(),
        cursor_factory=RealDictCursor,
        application_name=APPLICATION_NAME,
        options=f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}",
    )


@contextmanager
def get_connection() -> Generator:
    """
    One unit of work: commit when the block exits cleanly, roll back when
    it raises. Services write on the connection they are given and never
    commit themselves.
    """
    conn = connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create tables and indexes (schema.sql is idempotent)."""
    schema_sql = SCHEMA_PATH.read_text()

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
    logger.info(f"Applied schema from {SCHEMA_PATH.name}")
