import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.quota import (  # noqa: E402  pylint: disable=wrong-import-position
    LIKES_KEY,
    POST_TIMES_KEY,
    CounterStoreError,
    JsonFileCounterStore,
    MemoryCounterStore,
    QuotaConfig,
    QuotaDecision,
    QuotaEnforcer,
)

START = 1_760_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenStore:
    """Store whose reads and/or writes always fail."""

    def __init__(self, fail_reads: bool = True, fail_writes: bool = True) -> None:
        self._inner = MemoryCounterStore()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def get(self, key, fallback):
        if self.fail_reads:
            raise CounterStoreError("read failed")
        return self._inner.get(key, fallback)

    def set(self, key, value):
        if self.fail_writes:
            raise CounterStoreError("write failed")
        self._inner.set(key, value)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def enforcer(clock):
    return QuotaEnforcer(MemoryCounterStore(), clock=clock)


def test_like_ceiling_and_remaining_are_clamped(enforcer):
    results = [enforcer.record_like("post-1") for _ in range(7)]

    assert results == [True] * 5 + [False] * 2
    assert enforcer.likes_given("post-1") == 5
    assert enforcer.remaining_likes("post-1") == 0
    assert enforcer.can_like("post-1") is False


def test_remaining_likes_tracks_each_attempt(enforcer):
    for given in range(8):
        assert enforcer.remaining_likes("post-1") == max(0, 5 - given)
        enforcer.record_like("post-1")


def test_like_counters_are_independent_per_post(enforcer):
    for _ in range(5):
        enforcer.record_like("post-1")

    assert enforcer.can_like("post-2") is True
    assert enforcer.remaining_likes("post-2") == 5


def test_empty_store_means_no_usage(enforcer):
    assert enforcer.likes_given("unknown") == 0
    assert enforcer.can_post() == QuotaDecision(allowed=True, wait_seconds=0)
    assert enforcer.posts_remaining() == 3
    assert enforcer.can_fetch() is True


def test_post_window_reports_wait_until_oldest_expires(enforcer, clock):
    for _ in range(3):
        enforcer.record_post()
        clock.advance(60)

    # now = START + 180, oldest = START
    decision = enforcer.can_post()
    assert decision.allowed is False
    assert decision.wait_seconds == 600 - 180
    assert enforcer.posts_remaining() == 0

    clock.advance(0.5)
    assert enforcer.can_post().wait_seconds == 420


def test_post_window_reopens_when_oldest_leaves(enforcer, clock):
    for _ in range(3):
        enforcer.record_post()
        clock.advance(60)

    clock.now = START + 600
    assert enforcer.can_post().allowed is True
    assert enforcer.posts_remaining() == 1


def test_record_post_prunes_expired_timestamps():
    clock = FakeClock()
    store = MemoryCounterStore()
    enforcer = QuotaEnforcer(store, clock=clock)

    enforcer.record_post()
    clock.advance(700)
    enforcer.record_post()

    assert store.get(POST_TIMES_KEY, []) == [START + 700]


def test_no_window_holds_more_than_limit_when_checked_first():
    clock = FakeClock()
    enforcer = QuotaEnforcer(MemoryCounterStore(), clock=clock)
    accepted = []

    for _ in range(240):
        if enforcer.check_and_record_post().allowed:
            accepted.append(clock.now)
        clock.advance(17)

    assert accepted
    for start in accepted:
        in_window = [t for t in accepted if start <= t < start + 600]
        assert len(in_window) <= 3


def test_record_post_does_not_recheck_limit(enforcer):
    for _ in range(4):
        enforcer.record_post()

    assert enforcer.posts_remaining() == 0
    assert enforcer.can_post().allowed is False


def test_fetch_cooldown(enforcer, clock):
    enforcer.record_fetch()
    assert enforcer.can_fetch() is False
    assert enforcer.fetch_wait_seconds() == 3

    clock.now = START + 2.5
    assert enforcer.can_fetch() is False
    assert enforcer.fetch_wait_seconds() == 1

    clock.now = START + 3
    assert enforcer.can_fetch() is True
    assert enforcer.fetch_wait_seconds() == 0


def test_custom_config_is_honoured(clock):
    config = QuotaConfig(like_limit_per_post=1, post_limit=1, post_window_seconds=60, fetch_cooldown_seconds=10)
    enforcer = QuotaEnforcer(MemoryCounterStore(), config=config, clock=clock)

    assert enforcer.record_like("p") is True
    assert enforcer.record_like("p") is False
    enforcer.record_post()
    assert enforcer.can_post() == QuotaDecision(allowed=False, wait_seconds=60)


def test_read_failures_fail_open(clock):
    enforcer = QuotaEnforcer(BrokenStore(fail_reads=True, fail_writes=False), clock=clock)

    assert enforcer.remaining_likes("post-1") == 5
    assert enforcer.can_post().allowed is True
    assert enforcer.can_fetch() is True


def test_write_failures_are_surfaced(clock):
    enforcer = QuotaEnforcer(BrokenStore(fail_reads=False, fail_writes=True), clock=clock)

    with pytest.raises(CounterStoreError):
        enforcer.record_like("post-1")
    with pytest.raises(CounterStoreError):
        enforcer.record_post()
    with pytest.raises(CounterStoreError):
        enforcer.record_fetch()


def test_garbage_values_are_treated_as_zero_usage(clock):
    store = MemoryCounterStore()
    store.set(LIKES_KEY, {"post-1": "many"})
    store.set(POST_TIMES_KEY, "not-a-list")
    enforcer = QuotaEnforcer(store, clock=clock)

    assert enforcer.likes_given("post-1") == 0
    assert enforcer.posts_remaining() == 3


def test_memory_store_rejects_unserializable_values():
    with pytest.raises(CounterStoreError):
        MemoryCounterStore().set("key", object())


def test_json_file_store_survives_reopen(tmp_path, clock):
    path = tmp_path / "device.json"
    first = QuotaEnforcer(JsonFileCounterStore(path), clock=clock)
    first.record_like("post-1")
    first.record_like("post-1")
    first.record_post()

    second = QuotaEnforcer(JsonFileCounterStore(path), clock=clock)
    assert second.likes_given("post-1") == 2
    assert second.posts_remaining() == 2
    assert json.loads(path.read_text())[LIKES_KEY] == {"post-1": 2}


def test_corrupt_json_file_fails_open_and_is_rewritten(tmp_path, clock):
    path = tmp_path / "device.json"
    path.write_text("{not json")
    enforcer = QuotaEnforcer(JsonFileCounterStore(path), clock=clock)

    assert enforcer.remaining_likes("post-1") == 5
    assert enforcer.record_like("post-1") is True
    assert enforcer.likes_given("post-1") == 1
