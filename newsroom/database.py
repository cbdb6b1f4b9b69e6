"""SQLite engine for the registry, identity and activity tables.

Every pooled connection gets the same pragmas when it is opened. WAL is a
property of the database file, so init_db() switches it on once.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from newsroom.config import settings

# Import all models so SQLModel registers them
import newsroom.models  # noqa: F401

logger = logging.getLogger(__name__)

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _configure_connection(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute(f"PRAGMA busy_timeout={int(settings.db_busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def init_db() -> None:
    """Create the tables and put the database file in WAL mode."""
    SQLModel.metadata.create_all(engine)

    with engine.connect() as conn:
        mode = conn.exec_driver_sql("PRAGMA journal_mode=WAL").scalar()
    if str(mode).lower() != "wal":
        logger.warning("SQLite journal mode is %s, not WAL: %s", mode, settings.db_path)


@contextmanager
def session_scope() -> Iterator[Session]:
    """A session outside a request, rolled back if the block raises."""
    session = Session(engine)
    try:
        yield session
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Database work failed: %s", e)
        raise
    finally:
        session.close()


def get_session():
    """FastAPI dependency: yields a database session."""
    with session_scope() as session:
        yield session
