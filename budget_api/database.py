"""
Database setup and session management.

SQLite at ~/BudgetApp/budget.db by default; DATABASE_URL points the app at
any other SQLAlchemy URL. The engine is built on first use so tests (and
the no-database mode) can configure it before anything connects.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

engine: Optional[Engine] = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(database_url: str) -> Engine:
    """(Re)bind the module engine and session factory to `database_url`."""
    global engine

    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Required for SQLite + FastAPI
        db_path = database_url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if engine is not None:
        engine.dispose()

    engine = create_engine(database_url, connect_args=connect_args, echo=False)
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragma)

    SessionLocal.configure(bind=engine)
    logger.debug(f"Database engine bound to {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_engine() -> Engine:
    if engine is None:
        from .config import get_settings
        configure_engine(get_settings().database_url)
    return engine


def get_db():
    """FastAPI dependency that provides a database session."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def new_session(bind) -> Session:
    """A session on its own connection, independent of any request session."""
    return Session(bind=bind, autoflush=False)


def init_db():
    """Create all tables if they don't exist."""
    from . import models  # noqa: F401 (registers the models)
    Base.metadata.create_all(bind=get_engine())
