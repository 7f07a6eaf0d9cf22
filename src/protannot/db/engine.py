"""Database engine factory and session management."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, event
from sqlalchemy import create_engine as _create_engine
from sqlalchemy.orm import Session, sessionmaker

from protannot.db.models import Base


def create_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for the record store.

    SQLite connections get foreign key enforcement, and SQLAlchemy
    (not pysqlite) emits BEGIN so that per-record SAVEPOINTs nest inside
    the sub-batch transaction.
    """
    engine = _create_engine(url, echo=echo)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def init_schema(engine: Engine) -> None:
    """Create all record store tables that do not exist yet."""
    Base.metadata.create_all(engine)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a database session with automatic cleanup."""
    db = factory()
    try:
        yield db
    finally:
        db.close()
