"""Engine and session factory for the analytics store.

Settings come from the environment:

* ``SCANGO_DATABASE_URL``: SQLAlchemy URL, defaults to a local SQLite file.

SQLite connections run in WAL mode so device event ingestion does not block
the metrics reads that scan the whole event table.
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DATABASE_URL_ENV = "SCANGO_DATABASE_URL"
DEFAULT_DATABASE_URL = "sqlite:///./scango.db"


def get_database_url() -> str:
    return os.environ.get(DATABASE_URL_ENV) or DEFAULT_DATABASE_URL


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _connect_args(url: str) -> Dict[str, Any]:
    # FastAPI serves sync routes from a thread pool
    return {"check_same_thread": False} if _is_sqlite(url) else {}


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def create_db_engine(url: str) -> Engine:
    db_engine = create_engine(url, connect_args=_connect_args(url), future=True)
    if _is_sqlite(url):
        event.listen(db_engine, "connect", _enable_sqlite_wal)
    return db_engine


DATABASE_URL = get_database_url()

engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, future=True)


def init_schema(db_engine: Engine = engine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    Base.metadata.create_all(bind=db_engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on any error, always close."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
