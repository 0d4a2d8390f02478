"""Tests for the in-memory session store."""

from datetime import datetime, timedelta

from soun.sessions import SessionStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestSessionStore:
    """Idle expiry and size cap."""

    def test_get_returns_state(self):
        store = SessionStore(timedelta(minutes=5), 10)
        sid = store.add({"cards": 3})
        assert store.get(sid) == {"cards": 3}
        assert sid in store

    def test_idle_session_expires(self):
        clock = FakeClock()
        store = SessionStore(timedelta(minutes=5), 10, clock=clock)
        sid = store.add("state")
        clock.advance(minutes=6)
        assert store.get(sid) is None
        assert len(store) == 0

    def test_access_refreshes_ttl(self):
        clock = FakeClock()
        store = SessionStore(timedelta(minutes=5), 10, clock=clock)
        sid = store.add("state")
        clock.advance(minutes=4)
        assert store.get(sid) == "state"
        clock.advance(minutes=4)
        assert store.get(sid) == "state"

    def test_cap_evicts_least_recently_used(self):
        store = SessionStore(timedelta(minutes=5), 2)
        first = store.add("a")
        second = store.add("b")
        store.get(first)
        store.add("c")
        assert store.get(second) is None
        assert store.get(first) == "a"

    def test_purge_expired(self):
        clock = FakeClock()
        store = SessionStore(timedelta(minutes=5), 10, clock=clock)
        store.add("old")
        clock.advance(minutes=10)
        store.add("new")
        assert store.purge_expired() == 1
        assert len(store) == 1

    def test_zero_ttl_is_honoured(self):
        clock = FakeClock()
        store = SessionStore(timedelta(0), 10, clock=clock)
        sid = store.add("state")
        clock.advance(seconds=1)
        assert store.ttl == timedelta(0)
        assert store.get(sid) is None
