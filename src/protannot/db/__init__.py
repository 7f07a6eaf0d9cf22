"""
Record store: SQLAlchemy models, engine setup and the pipeline store adapter.
"""

from protannot.db.engine import create_engine, create_session_factory, init_schema, session_scope
from protannot.db.store import RecordStore, SqlRecordStore

__all__ = [
    "RecordStore",
    "SqlRecordStore",
    "create_engine",
    "create_session_factory",
    "init_schema",
    "session_scope",
]
