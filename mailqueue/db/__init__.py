"""
Database module.
Contains database connection, table definitions, the job store and the lock manager.
"""

from mailqueue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_engine,
    init_db,
    session_scope,
)
from mailqueue.db.locks import LockManager
from mailqueue.db.repository import JobStore
from mailqueue.db.tables import TableNames, Tables, build_tables

__all__ = [
    "get_engine",
    "init_db",
    "close_db",
    "create_schema",
    "create_session_factory",
    "session_scope",
    "JobStore",
    "LockManager",
    "TableNames",
    "Tables",
    "build_tables",
]
