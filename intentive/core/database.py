"""Database configuration and session management.

The event store lives in a single ``events`` table. SQLite is the default
backend, tuned the same way for the web process and the background jobs:

    - **WAL (Write-Ahead Logging)**: readers are not blocked while a
      create/delete commits, so the live event stream can re-query while
      a write is in flight.

    - **Foreign Keys**: enabled so any future child tables keep
      referential integrity.

    - **check_same_thread=False**: FastAPI runs sync dependencies in a
      thread pool, so a connection may be used outside the thread that
      opened it.
"""

from collections.abc import Callable

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

from intentive.core.config import settings

connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


@sa_event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection.

    These settings are connection-level, not database-level, so they must
    be set each time a new connection is established from the pool.
    """
    if not settings.database_url.startswith("sqlite"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """Dependency for code that outlives a request (e.g. the event stream)."""
    return lambda: Session(engine)
