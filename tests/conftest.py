"""
Shared pytest fixtures for the hookrelay test suite.

Test dependencies: pytest, httpx (for fastapi.testclient)
"""

import threading
from datetime import datetime, timedelta

import pytest

from hookrelay import crud
from hookrelay.config import Settings
from hookrelay.database import init_db, make_engine, make_session_factory
from hookrelay.delivery import DeliveryResult


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 6, 15, 10, 0, 0)
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, seconds=1):
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)


class FakeSender:
    """
    Stands in for WebhookSender without touching the network.

    ``outcomes`` maps a URL to a list of booleans consumed one per attempt
    (the last value repeats), or to a single boolean.
    """

    def __init__(self, outcomes=None, default=True):
        self.outcomes = outcomes or {}
        self.default = default
        self.calls = []
        self.blockers = {}
        self._lock = threading.Lock()

    def block(self, url):
        event = threading.Event()
        self.blockers[url] = event
        return event

    def _next_outcome(self, url):
        plan = self.outcomes.get(url, self.default)
        if isinstance(plan, list):
            return plan.pop(0) if len(plan) > 1 else plan[0]
        return plan

    def send(self, url, secret, event, body, timestamp_ms):
        blocker = self.blockers.get(url)
        if blocker is not None:
            blocker.wait(timeout=10)
        with self._lock:
            self.calls.append({
                "url": url,
                "secret": secret,
                "event": event,
                "body": body,
                "timestamp_ms": timestamp_ms,
            })
            ok = self._next_outcome(url)
        if ok:
            return DeliveryResult(success=True, status_code=200)
        return DeliveryResult(success=False, error="Connection refused")

    def urls(self):
        with self._lock:
            return [call["url"] for call in self.calls]

    def close(self):
        pass


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'hookrelay-test.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def test_settings():
    return Settings(
        environment="development",
        retry_worker_enabled=False,
        retry_interval_seconds=15,
        max_retry_attempts=5,
        batch_size=10,
        claim_timeout_seconds=120,
    )


@pytest.fixture
def make_subscription(db):
    def _make(user_id=1, url="https://hooks.example.com/a", secret="s3cret", events=("note.updated",)):
        return crud.create_subscription(db, user_id=user_id, url=url, secret=secret, events=list(events))

    return _make
