"""Database configuration and session management.

SQLite is the default store. Several operators save hour slots and checklist
modules at nearly the same moment, and the background clock job reads while
they write, so the SQLite connection is tuned for that mix:

    - **WAL (Write-Ahead Logging)**: readers are not blocked while an
      operator's autosave is being written.

    - **Foreign Keys**: enforced so a flagged issue can never point at a slot
      or checklist day that does not exist.

    - **check_same_thread=False**: FastAPI may hand a connection to a worker
      thread other than the one that opened it.

Any other URL (e.g. PostgreSQL) is passed to SQLAlchemy unchanged; the
uniqueness and CHECK constraints declared on the models carry over.
"""

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

import hydrolog.models  # noqa: F401  registers every table on the metadata
from hydrolog.core.config import settings

is_sqlite = settings.database_url.startswith("sqlite")
connect_args = {"check_same_thread": False} if is_sqlite else {}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection.

    These settings are connection-level, not database-level, so they must
    be set each time a new connection is established from the pool.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if is_sqlite:
    sa_event.listen(engine, "connect", set_sqlite_pragma)


def create_db_and_tables():
    """Create all database tables."""
    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session


def get_engine():
    """Dependency for components that open their own short-lived sessions."""
    return engine
