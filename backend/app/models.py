"""SQLAlchemy models for the event log and the content store."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text, event
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventLogMutationError(RuntimeError):
    """Raised when code tries to rewrite or delete a stored analytics event."""


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    event_name = Column(String(64), index=True, nullable=False)
    user_pseudo_id = Column(String(255), index=True, nullable=True)
    post_id = Column(String(36), nullable=True)
    metadata_json = Column("metadata", Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)


@event.listens_for(AnalyticsEvent, "before_update", propagate=True)
def _event_log_is_append_only(mapper, connection, target) -> None:
    raise EventLogMutationError(f"Analytics event {target.id} is immutable")


@event.listens_for(AnalyticsEvent, "before_delete", propagate=True)
def _event_log_keeps_rows(mapper, connection, target) -> None:
    raise EventLogMutationError(f"Analytics event {target.id} cannot be deleted")


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=_new_id)
    content = Column(Text, nullable=False)
    media_url = Column(String(2048), nullable=True)
    media_type = Column(String(16), nullable=True)
    likes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True, default=_new_id)
    post_id = Column(String(36), nullable=True)
    rating = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
