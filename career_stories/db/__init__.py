"""Database access for career stories."""

from .connection import get_connection, get_connection_string, init_db

__all__ = ["get_connection", "get_connection_string", "init_db"]
