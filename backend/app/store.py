"""Event log and content store access."""
from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Select, func, select, update
from sqlalchemy.orm import Session

from . import schemas
from .database import session_scope
from .models import AnalyticsEvent, Feedback, Post
from .timewindow import parse_timestamp

DEFAULT_EVENT_FETCH_LIMIT = 10_000


def get_event_fetch_limit() -> int:
    return int(os.environ.get("SCANGO_EVENT_FETCH_LIMIT", str(DEFAULT_EVENT_FETCH_LIMIT)))


def append_event(db: Session, event_in: schemas.EventIn) -> AnalyticsEvent:
    event = AnalyticsEvent(
        event_name=event_in.event_name,
        user_pseudo_id=event_in.user_pseudo_id,
        post_id=event_in.post_id,
        metadata_json=json.dumps(event_in.metadata),
    )
    db.add(event)
    db.flush()
    return event


def database_sink(record: Dict[str, Any]) -> None:
    """Event sink that writes straight to the event log in its own transaction."""
    with session_scope() as db:
        append_event(db, schemas.EventIn(**record))


def _event_query(
    event_name: Optional[str],
    user_pseudo_id: Optional[str],
    since: Optional[datetime],
    until: Optional[datetime],
) -> Select:
    stmt = select(AnalyticsEvent)
    if event_name is not None:
        stmt = stmt.where(AnalyticsEvent.event_name == event_name)
    if user_pseudo_id is not None:
        stmt = stmt.where(AnalyticsEvent.user_pseudo_id == user_pseudo_id)
    if since is not None:
        stmt = stmt.where(AnalyticsEvent.created_at >= parse_timestamp(since))
    if until is not None:
        stmt = stmt.where(AnalyticsEvent.created_at < parse_timestamp(until))
    return stmt


def query_events(
    db: Session,
    event_name: Optional[str] = None,
    user_pseudo_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[AnalyticsEvent]:
    """Events matching every given filter, newest first, at most ``limit`` rows."""
    cap = get_event_fetch_limit()
    limit = cap if limit is None else min(limit, cap)
    stmt = (
        _event_query(event_name, user_pseudo_id, since, until)
        .order_by(AnalyticsEvent.created_at.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def fetch_event_rows(db: Session, limit: Optional[int] = None) -> Sequence[Any]:
    """The aggregation working set: the most recent events as lightweight mappings."""
    limit = get_event_fetch_limit() if limit is None else limit
    stmt = (
        select(
            AnalyticsEvent.id,
            AnalyticsEvent.event_name,
            AnalyticsEvent.user_pseudo_id,
            AnalyticsEvent.created_at,
        )
        .order_by(AnalyticsEvent.created_at.desc())
        .limit(limit)
    )
    return db.execute(stmt).mappings().all()


def count_events(db: Session, event_name: str) -> int:
    stmt = select(func.count()).select_from(AnalyticsEvent).where(AnalyticsEvent.event_name == event_name)
    return int(db.execute(stmt).scalar_one())


def fetch_post_counters(db: Session) -> Sequence[Any]:
    return db.execute(select(Post.likes)).mappings().all()


def fetch_feedback_ratings(db: Session) -> Sequence[Any]:
    return db.execute(select(Feedback.rating)).mappings().all()


def create_post(db: Session, post_in: schemas.PostIn) -> Post:
    post = Post(
        content=post_in.content,
        media_url=post_in.media_url,
        media_type=post_in.media_type,
        likes=0,
    )
    db.add(post)
    db.flush()
    return post


def list_posts(db: Session, page: int, page_size: int) -> List[Post]:
    offset = (page - 1) * page_size
    stmt: Select = select(Post).order_by(Post.created_at.desc()).offset(offset).limit(page_size)
    return list(db.execute(stmt).scalars().all())


def increment_likes(db: Session, post_id: str) -> Optional[Post]:
    result = db.execute(update(Post).where(Post.id == post_id).values(likes=Post.likes + 1))
    if result.rowcount == 0:
        return None
    db.flush()
    return db.get(Post, post_id, populate_existing=True)


def add_feedback(db: Session, feedback_in: schemas.FeedbackIn) -> Feedback:
    feedback = Feedback(rating=feedback_in.rating, post_id=feedback_in.post_id)
    db.add(feedback)
    db.flush()
    return feedback
