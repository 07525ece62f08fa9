"""FastAPI application entrypoint for the analytics API."""
from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from . import schemas, store
from .aggregator import SHARE_POST, clean_likes, clean_ratings, compute_metrics
from .auth import verify_admin
from .database import SessionLocal, init_schema
from .quota import MemoryCounterStore, QuotaConfig, QuotaDecision, QuotaEnforcer
from .timewindow import percent, round_half_up, utc_now

logger = logging.getLogger(__name__)

init_schema()

app = FastAPI(
    title="Scan & Go Analytics API",
    description="API for collecting pseudonymous usage events and computing product metrics.",
    version="0.1.0",
)

FEED_PAGE_SIZE = 15


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class ClientCooldowns:
    """Fetch-cooldown policy per client, each over its own in-memory counter store.

    A client only has an entry while its cooldown is running; entries whose
    cooldown has elapsed are evicted on every check and record.
    """

    def __init__(self, cooldown_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self._config = QuotaConfig(fetch_cooldown_seconds=cooldown_seconds)
        self._clock = clock
        self._enforcers: Dict[str, QuotaEnforcer] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._enforcers)

    def _evict_expired(self) -> None:
        expired = [key for key, enforcer in self._enforcers.items() if enforcer.can_fetch()]
        for key in expired:
            del self._enforcers[key]

    def check(self, key: str) -> QuotaDecision:
        with self._lock:
            self._evict_expired()
            enforcer = self._enforcers.get(key)
            if enforcer is None:
                return QuotaDecision(allowed=True)
            return QuotaDecision(allowed=False, wait_seconds=enforcer.fetch_wait_seconds())

    def record(self, key: str) -> None:
        """Start the cooldown for ``key``. Call only after a successful fetch."""
        with self._lock:
            self._evict_expired()
            enforcer = QuotaEnforcer(MemoryCounterStore(), self._config, self._clock)
            enforcer.record_fetch()
            self._enforcers[key] = enforcer



def _get_metrics_cooldowns() -> ClientCooldowns:
    cooldown_seconds = float(os.environ.get("SCANGO_METRICS_COOLDOWN_SECONDS", "3"))
    return ClientCooldowns(cooldown_seconds)


_metrics_cooldowns = _get_metrics_cooldowns()


def _client_identifier(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


@app.post("/events", response_model=schemas.EventOut, status_code=status.HTTP_201_CREATED)
def ingest_event(event_in: schemas.EventIn, db: Session = Depends(get_db)) -> schemas.EventOut:
    event = store.append_event(db, event_in)
    db.commit()
    db.refresh(event)
    return schemas.EventOut.model_validate(event)


@app.get("/events", response_model=List[schemas.EventOut])
def list_events(
    event_name: Optional[str] = None,
    user_pseudo_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1),
    _: dict = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> List[schemas.EventOut]:
    events = store.query_events(
        db,
        event_name=event_name,
        user_pseudo_id=user_pseudo_id,
        since=since,
        until=until,
        limit=limit,
    )
    return [schemas.EventOut.model_validate(event) for event in events]


@app.post("/posts", response_model=schemas.PostOut, status_code=status.HTTP_201_CREATED)
def create_post(post_in: schemas.PostIn, db: Session = Depends(get_db)) -> schemas.PostOut:
    post = store.create_post(db, post_in)
    db.commit()
    db.refresh(post)
    return schemas.PostOut.model_validate(post)


@app.get("/posts", response_model=List[schemas.PostOut])
def list_posts(
    page: int = Query(1, ge=1),
    page_size: int = Query(FEED_PAGE_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
) -> List[schemas.PostOut]:
    posts = store.list_posts(db, page=page, page_size=page_size)
    return [schemas.PostOut.model_validate(post) for post in posts]


@app.post("/posts/{post_id}/like", response_model=schemas.PostOut)
def like_post(post_id: str, db: Session = Depends(get_db)) -> schemas.PostOut:
    post = store.increment_likes(db, post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    db.commit()
    db.refresh(post)
    return schemas.PostOut.model_validate(post)


@app.post("/feedback", response_model=schemas.FeedbackOut, status_code=status.HTTP_201_CREATED)
def submit_feedback(feedback_in: schemas.FeedbackIn, db: Session = Depends(get_db)) -> schemas.FeedbackOut:
    feedback = store.add_feedback(db, feedback_in)
    db.commit()
    db.refresh(feedback)
    return schemas.FeedbackOut.model_validate(feedback)


@app.get("/metrics", response_model=schemas.MetricsOut)
def get_metrics(
    request: Request,
    _: dict = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.MetricsOut:
    client = _client_identifier(request)
    decision = _metrics_cooldowns.check(client)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Metrics were refreshed recently. Try again in {decision.wait_seconds}s.",
            headers={"Retry-After": str(decision.wait_seconds)},
        )

    events = store.fetch_event_rows(db)
    feedback = store.fetch_feedback_ratings(db)
    posts = store.fetch_post_counters(db)
    metrics = compute_metrics(events, feedback, posts, now=utc_now())
    logger.info(
        "Computed metrics over %d events, %d feedback rows, %d posts",
        len(events),
        len(feedback),
        len(posts),
    )
    _metrics_cooldowns.record(client)
    return schemas.MetricsOut.model_validate(metrics)


@app.get("/dashboard", response_model=schemas.DashboardOut)
def get_dashboard(db: Session = Depends(get_db)) -> schemas.DashboardOut:
    likes = clean_likes(store.fetch_post_counters(db))
    ratings = clean_ratings(store.fetch_feedback_ratings(db))
    total_feedback = len(ratings)
    happy_count = ratings.count("happy")
    sad_count = ratings.count("sad")
    return schemas.DashboardOut(
        total_posts=len(likes),
        total_likes=sum(likes),
        total_shares=store.count_events(db, SHARE_POST),
        total_feedback=total_feedback,
        happy_count=happy_count,
        normal_count=ratings.count("normal"),
        sad_count=sad_count,
        happy_percent=int(round_half_up(percent(happy_count, total_feedback))),
        sad_percent=int(round_half_up(percent(sad_count, total_feedback))),
    )


def reset_application_state() -> None:
    """Reset mutable globals for test isolation."""

    global _metrics_cooldowns
    _metrics_cooldowns = _get_metrics_cooldowns()
