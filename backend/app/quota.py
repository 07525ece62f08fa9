"""Per-device usage quotas backed by a device-local counter store.

Three independent policies share one store:

* likes: a lifetime ceiling per post,
* posts: a sliding window of recent creation timestamps,
* fetches: a cooldown since the last successful refresh.

The store is injected, so the policies can run against an in-memory map in
tests and a JSON file on a real device.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from .timewindow import ceil_seconds

logger = logging.getLogger(__name__)

LIKES_KEY = "sg_likes"
POST_TIMES_KEY = "sg_post_times"
LAST_FETCH_KEY = "sg_last_fetch"


class CounterStoreError(Exception):
    """Raised when the device-local store cannot be read or written."""


class CounterStore(Protocol):
    def get(self, key: str, fallback: Any) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryCounterStore:
    """Dictionary-backed store. Values are kept as JSON text like a browser store."""

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def get(self, key: str, fallback: Any) -> Any:
        raw = self._entries.get(key)
        if raw is None:
            return fallback
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._entries[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise CounterStoreError(f"Value for {key!r} is not JSON serializable") from exc


class JsonFileCounterStore:
    """Persists every key in a single JSON document on disk."""

    def __init__(self, path: os.PathLike | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CounterStoreError(f"Unable to read counter store at {self._path}") from exc
        if not isinstance(data, dict):
            raise CounterStoreError(f"Counter store at {self._path} is not a JSON object")
        return data

    def get(self, key: str, fallback: Any) -> Any:
        with self._lock:
            return self._load().get(key, fallback)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            try:
                data = self._load()
            except CounterStoreError:
                # A corrupt document is replaced rather than blocking every write.
                data = {}
            data[key] = value
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(data), encoding="utf-8")
                os.replace(tmp_path, self._path)
            except (OSError, TypeError, ValueError) as exc:
                raise CounterStoreError(f"Unable to write counter store at {self._path}") from exc


def read_or_fallback(store: CounterStore, key: str, fallback: Any) -> Any:
    """Read ``key``, treating an unreadable store as absent data.

    The next ``set`` on a file-backed store replaces the unreadable document.
    """
    try:
        return store.get(key, fallback)
    except CounterStoreError:
        logger.warning("Counter store read failed for %s; using default", key, exc_info=True)
        return fallback


@dataclass(frozen=True)
class QuotaConfig:
    like_limit_per_post: int = 5
    post_limit: int = 3
    post_window_seconds: float = 10 * 60
    fetch_cooldown_seconds: float = 3


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    wait_seconds: int = 0


class QuotaEnforcer:
    """Like, post-creation and fetch-cooldown policies over one counter store."""

    def __init__(
        self,
        store: CounterStore,
        config: Optional[QuotaConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config or QuotaConfig()
        self._clock = clock

    @property
    def config(self) -> QuotaConfig:
        return self._config

    def _read(self, key: str, fallback: Any, expected: Any) -> Any:
        value = read_or_fallback(self._store, key, fallback)
        if not isinstance(value, expected) or isinstance(value, bool):
            return fallback
        return value

    # Likes

    def _likes(self) -> Dict[str, Any]:
        return self._read(LIKES_KEY, {}, dict)

    def likes_given(self, post_id: str) -> int:
        count = self._likes().get(post_id, 0)
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            return 0
        return count

    def remaining_likes(self, post_id: str) -> int:
        return max(0, self._config.like_limit_per_post - self.likes_given(post_id))

    def can_like(self, post_id: str) -> bool:
        return self.likes_given(post_id) < self._config.like_limit_per_post

    def record_like(self, post_id: str) -> bool:
        """Count a like for ``post_id``; returns False and changes nothing at the limit."""
        if not self.can_like(post_id):
            return False
        likes = dict(self._likes())
        likes[post_id] = self.likes_given(post_id) + 1
        self._store.set(LIKES_KEY, likes)
        return True

    # Posts

    def _recent_post_times(self, now: float) -> List[float]:
        window = self._config.post_window_seconds
        times = self._read(POST_TIMES_KEY, [], list)
        return [
            t
            for t in times
            if isinstance(t, (int, float)) and not isinstance(t, bool) and now - t < window
        ]

    def can_post(self) -> QuotaDecision:
        now = self._clock()
        recent = self._recent_post_times(now)
        if len(recent) < self._config.post_limit:
            return QuotaDecision(allowed=True, wait_seconds=0)
        oldest = min(recent)
        wait = self._config.post_window_seconds - (now - oldest)
        return QuotaDecision(allowed=False, wait_seconds=ceil_seconds(wait))

    def record_post(self) -> None:
        """Append the current time. Does not re-check the limit; call ``can_post`` first."""
        now = self._clock()
        recent = self._recent_post_times(now)
        recent.append(now)
        self._store.set(POST_TIMES_KEY, recent)

    def check_and_record_post(self) -> QuotaDecision:
        decision = self.can_post()
        if decision.allowed:
            self.record_post()
        return decision

    def posts_remaining(self) -> int:
        recent = self._recent_post_times(self._clock())
        return max(0, self._config.post_limit - len(recent))

    # Fetches

    def _last_fetch(self) -> float:
        return self._read(LAST_FETCH_KEY, 0, (int, float))

    def can_fetch(self) -> bool:
        return self._clock() - self._last_fetch() >= self._config.fetch_cooldown_seconds

    def fetch_wait_seconds(self) -> int:
        elapsed = self._clock() - self._last_fetch()
        return ceil_seconds(self._config.fetch_cooldown_seconds - elapsed)

    def record_fetch(self) -> None:
        self._store.set(LAST_FETCH_KEY, self._clock())
