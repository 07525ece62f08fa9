import sys
from importlib import reload
from pathlib import Path

import pytest
from sqlalchemy import func, select

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.models import AnalyticsEvent, EventLogMutationError, Post  # noqa: E402


@pytest.fixture
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("SCANGO_DATABASE_URL", f"sqlite:///{tmp_path / 'scango.db'}")

    from backend.app import database as database_module

    reload(database_module)
    database_module.init_schema()
    yield database_module
    database_module.engine.dispose()


def test_database_url_defaults_to_local_sqlite(monkeypatch):
    from backend.app import database

    monkeypatch.delenv("SCANGO_DATABASE_URL", raising=False)
    assert database.get_database_url() == "sqlite:///./scango.db"

    monkeypatch.setenv("SCANGO_DATABASE_URL", "")
    assert database.get_database_url() == "sqlite:///./scango.db"

    monkeypatch.setenv("SCANGO_DATABASE_URL", "postgresql+psycopg://scango@db/scango")
    assert database.get_database_url() == "postgresql+psycopg://scango@db/scango"


def test_sqlite_connections_use_wal_journal(database):
    with database.engine.connect() as connection:
        mode = connection.exec_driver_sql("PRAGMA journal_mode").scalar()

    assert mode.lower() == "wal"


def test_session_scope_commits_or_rolls_back(database):
    with database.session_scope() as session:
        session.add(Post(content="kept"))

    with pytest.raises(ValueError):
        with database.session_scope() as session:
            session.add(Post(content="discarded"))
            session.flush()
            raise ValueError("abort")

    with database.SessionLocal() as session:
        contents = session.scalars(select(Post.content)).all()

    assert contents == ["kept"]


def test_stored_events_cannot_be_rewritten_or_deleted(database):
    with database.session_scope() as session:
        session.add(AnalyticsEvent(event_name="qr_scan", user_pseudo_id="u1"))

    with database.SessionLocal() as session:
        stored = session.scalars(select(AnalyticsEvent)).one()
        stored.event_name = "first_visit"
        with pytest.raises(EventLogMutationError):
            session.commit()
        session.rollback()

        stored = session.scalars(select(AnalyticsEvent)).one()
        session.delete(stored)
        with pytest.raises(EventLogMutationError):
            session.commit()
        session.rollback()

    with database.SessionLocal() as session:
        names = session.scalars(select(AnalyticsEvent.event_name)).all()
        total = session.scalar(select(func.count()).select_from(AnalyticsEvent))

    assert names == ["qr_scan"]
    assert total == 1
