"""
Persistence for the retention engine: table definitions, engine helpers
and the data access layer.
"""

from .database import get_connection, get_engine, init_database
from .schema import metadata
from .store import RetentionStore

__all__ = ["RetentionStore", "get_connection", "get_engine", "init_database", "metadata"]
