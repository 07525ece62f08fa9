"""Device-side event tracking.

Every tracked action goes through :class:`EventTracker`, which stamps the
device's pseudo-identity on the record and hands it to a sink (an HTTP
client, or the event store directly when running inside the service).
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .identity import get_user_id, is_first_visit
from .quota import CounterStore, read_or_fallback
from .timewindow import SESSION_GAP

logger = logging.getLogger(__name__)

LAST_SESSION_KEY = "sg_last_session_ts"

EventSink = Callable[[Dict[str, Any]], None]


class EventTracker:
    def __init__(self, store: CounterStore, sink: EventSink) -> None:
        self._store = store
        self._sink = sink

    def track(
        self,
        event_name: str,
        post_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Send one event. Failures are logged and reported as False, never raised."""
        try:
            record = {
                "event_name": event_name,
                "user_pseudo_id": get_user_id(self._store),
                "post_id": post_id,
                "metadata": metadata or {},
            }
            self._sink(record)
        except Exception:
            logger.exception("Error tracking %r", event_name)
            return False
        return True


def page_load_events(
    store: CounterStore,
    source: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> List[str]:
    """Return the events an app open should emit, updating the session marker.

    ``first_visit`` fires once per device, ``session_start`` at most once per
    session gap, and ``qr_scan`` whenever the app was opened from a QR code.
    """

    events: List[str] = []
    if is_first_visit(store):
        events.append("first_visit")
    get_user_id(store)

    now = clock()
    last_session = read_or_fallback(store, LAST_SESSION_KEY, None)
    if not isinstance(last_session, (int, float)) or now - last_session > SESSION_GAP.total_seconds():
        store.set(LAST_SESSION_KEY, now)
        events.append("session_start")

    if source == "qr":
        events.append("qr_scan")
    return events


def track_page_load(
    tracker: EventTracker,
    store: CounterStore,
    source: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> List[str]:
    events = page_load_events(store, source=source, clock=clock)
    for event_name in events:
        tracker.track(event_name)
    return events
