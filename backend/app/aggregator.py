"""Batch reconstruction of product metrics from raw event rows.

:func:`compute_metrics` is a pure function of the event working set, the
feedback ratings, the post like counters and a reference time. Nothing is
persisted between calls; sessions and cohorts are rebuilt every time.

Rows may be mappings (``RowMapping``, ``dict``) or objects with matching
attributes. Rows with an unusable timestamp, event name, rating or like
count are dropped before any metric is computed, so they count in neither
numerator nor denominator.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .timewindow import DAY, SESSION_GAP, in_window, parse_timestamp, percent, round_half_up, utc_now

logger = logging.getLogger(__name__)

FIRST_VISIT = "first_visit"
SESSION_START = "session_start"
QR_SCAN = "qr_scan"
POST_CREATED = "post_created"
SHARE_POST = "share_post"

RATINGS = ("happy", "normal", "sad")

ACTIVATION_GOAL = 50
NPS_THRESHOLD = 40


@dataclass(frozen=True)
class CleanEvent:
    event_name: str
    user_pseudo_id: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Session:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class Metrics:
    # Acquisition & activation
    unique_visits: int = 0
    activation_rate: float = 0.0
    activation_goal_met: bool = False
    total_qr_scans: int = 0

    # Engagement
    dau: int = 0
    total_posts: int = 0
    total_likes: int = 0
    total_shares: int = 0
    engagement_rate: float = 0.0
    avg_session_length_min: float = 0.0

    # Retention
    churn_rate: float = 0.0
    day1_retention: float = 0.0

    # Virality & satisfaction
    viral_coefficient: float = 0.0
    nps_score: int = 0
    nps_threshold_met: bool = False
    happy_count: int = 0
    normal_count: int = 0
    sad_count: int = 0
    total_feedback: int = 0


EMPTY_METRICS = Metrics()


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def clean_events(rows: Iterable[Any]) -> List[CleanEvent]:
    events: List[CleanEvent] = []
    skipped = 0
    for row in rows:
        event_name = _field(row, "event_name")
        created_at = parse_timestamp(_field(row, "created_at"))
        if not isinstance(event_name, str) or created_at is None:
            skipped += 1
            continue
        user_id = _field(row, "user_pseudo_id")
        if not isinstance(user_id, str) or not user_id:
            user_id = None
        events.append(CleanEvent(event_name, user_id, created_at))
    if skipped:
        logger.debug("Skipped %d malformed event rows", skipped)
    return events


def clean_likes(rows: Iterable[Any]) -> List[int]:
    likes: List[int] = []
    for row in rows:
        value = _field(row, "likes")
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            likes.append(value)
    return likes


def clean_ratings(rows: Iterable[Any]) -> List[str]:
    return [rating for rating in (_field(row, "rating") for row in rows) if rating in RATINGS]


def identities(events: Iterable[CleanEvent]) -> Set[str]:
    return {event.user_pseudo_id for event in events if event.user_pseudo_id}


def reconstruct_sessions(
    timestamps: Iterable[datetime], gap: timedelta = SESSION_GAP
) -> Iterator[Session]:
    """Split one identity's activity into sessions.

    A new session starts whenever two consecutive events are more than ``gap``
    apart. The final session is closed at the end of the input.
    """

    ordered = sorted(timestamps)
    if not ordered:
        return
    start = last = ordered[0]
    for moment in ordered[1:]:
        if moment - last > gap:
            yield Session(start, last)
            start = moment
        last = moment
    yield Session(start, last)


def session_totals(events: Iterable[CleanEvent], gap: timedelta = SESSION_GAP) -> Tuple[timedelta, int]:
    by_user: Dict[str, List[datetime]] = defaultdict(list)
    for event in events:
        if event.user_pseudo_id:
            by_user[event.user_pseudo_id].append(event.created_at)

    total = timedelta(0)
    count = 0
    for timestamps in by_user.values():
        for session in reconstruct_sessions(timestamps, gap):
            total += session.duration
            count += 1
    return total, count


def daily_active(events: Iterable[CleanEvent], now: datetime) -> Set[str]:
    cutoff = now - DAY
    return {
        event.user_pseudo_id
        for event in events
        if event.user_pseudo_id and event.created_at > cutoff
    }


def churn_rate(events: List[CleanEvent], now: datetime) -> float:
    """Share of identities active 7-8 days ago with no event in the last day."""
    week_ago_start, week_ago_end = now - 8 * DAY, now - 7 * DAY
    active_week_ago = {
        event.user_pseudo_id
        for event in events
        if event.user_pseudo_id and in_window(event.created_at, week_ago_start, week_ago_end)
    }
    active_now = daily_active(events, now)
    churned = active_week_ago - active_now
    return percent(len(churned), len(active_week_ago))


def day1_retention(events: List[CleanEvent], now: datetime) -> float:
    """Share of identities (first visit at least a day old) seen again 24-48h later."""
    first_visits: Dict[str, datetime] = {}
    returns: Dict[str, List[datetime]] = defaultdict(list)
    for event in events:
        user_id = event.user_pseudo_id
        if not user_id:
            continue
        if event.event_name == FIRST_VISIT:
            seen = first_visits.get(user_id)
            if seen is None or event.created_at < seen:
                first_visits[user_id] = event.created_at
        else:
            returns[user_id].append(event.created_at)

    eligible = 0
    returned = 0
    for user_id, first_seen in first_visits.items():
        if now - first_seen < DAY:
            continue
        eligible += 1
        window_start, window_end = first_seen + DAY, first_seen + 2 * DAY
        if any(in_window(moment, window_start, window_end) for moment in returns.get(user_id, ())):
            returned += 1
    return percent(returned, eligible)


def nps_score(happy: int, sad: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round_half_up((happy / total - sad / total) * 100))


def compute_metrics(
    events: Iterable[Any],
    feedback: Iterable[Any],
    posts: Iterable[Any],
    now: Optional[datetime] = None,
) -> Metrics:
    now = parse_timestamp(now) if now is not None else utc_now()
    if now is None:
        raise ValueError("now must be a datetime or ISO-8601 string")

    clean = clean_events(events)
    likes = clean_likes(posts)
    ratings = clean_ratings(feedback)

    users = identities(clean)
    unique_visits = len(users)

    activated = identities(event for event in clean if event.event_name == POST_CREATED)
    activation_rate = percent(len(activated), unique_visits)

    total_qr_scans = sum(1 for event in clean if event.event_name == QR_SCAN)
    dau = len(daily_active(clean, now))

    total_posts = len(likes)
    total_likes = sum(likes)
    total_shares = sum(1 for event in clean if event.event_name == SHARE_POST)
    total_views = sum(1 for event in clean if event.event_name in (SESSION_START, FIRST_VISIT))
    engagement_rate = percent(total_likes + total_shares, total_views)

    session_time, session_count = session_totals(clean)
    avg_session_min = (
        session_time.total_seconds() / session_count / 60 if session_count else 0.0
    )

    viral_coefficient = total_shares / unique_visits if unique_visits else 0.0

    total_feedback = len(ratings)
    happy_count = ratings.count("happy")
    normal_count = ratings.count("normal")
    sad_count = ratings.count("sad")
    score = nps_score(happy_count, sad_count, total_feedback)

    return Metrics(
        unique_visits=unique_visits,
        activation_rate=round_half_up(activation_rate, 1),
        activation_goal_met=activation_rate > ACTIVATION_GOAL,
        total_qr_scans=total_qr_scans,
        dau=dau,
        total_posts=total_posts,
        total_likes=total_likes,
        total_shares=total_shares,
        engagement_rate=round_half_up(engagement_rate, 1),
        avg_session_length_min=round_half_up(avg_session_min, 1),
        churn_rate=round_half_up(churn_rate(clean, now), 1),
        day1_retention=round_half_up(day1_retention(clean, now), 1),
        viral_coefficient=round_half_up(viral_coefficient, 2),
        nps_score=score,
        nps_threshold_met=score > NPS_THRESHOLD,
        happy_count=happy_count,
        normal_count=normal_count,
        sad_count=sad_count,
        total_feedback=total_feedback,
    )
