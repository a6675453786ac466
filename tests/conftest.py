"""
Pytest configuration and fixtures for Link tests.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

# Set test environment before importing link modules
os.environ["LINK_ENV"] = "development"
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-key-not-real")

from link.cache import MemoryStore, ProfileCache
from link.profile.errors import StaleWriteRejected
from link.profile.sync import SyncCoordinator


# ---------------------------------------------------------------------------
# In-memory DocumentStore
# ---------------------------------------------------------------------------


class FakeSubscription:
    def __init__(self, user_id: str, callback: Callable[[dict], None]):
        self.user_id = user_id
        self.callback = callback
        self.closed = False
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeDocumentStore:
    """
    DocumentStore double with injectable failures.

    - fail_fetch / fail_writes: exception raised by every fetch / write
    - stale_rejections: number of writes to reject with StaleWriteRejected
    - fetch_gate / write_gate: fetches / writes block on this event until it is set
    """

    def __init__(self, documents: dict[str, dict] | None = None):
        self.documents: dict[str, dict] = {k: dict(v) for k, v in (documents or {}).items()}
        self.fail_fetch: Exception | None = None
        self.fail_writes: Exception | None = None
        self.stale_rejections = 0
        self.fetch_gate: asyncio.Event | None = None
        self.write_gate: asyncio.Event | None = None
        self.fetch_count = 0
        self.write_attempts: list[tuple[str, dict]] = []
        self.writes: list[tuple[str, dict]] = []
        self.subscriptions: list[FakeSubscription] = []

    async def fetch(self, user_id: str) -> dict[str, Any] | None:
        self.fetch_count += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise self.fail_fetch
        doc = self.documents.get(user_id)
        return dict(doc) if doc is not None else None

    async def merge_update(self, user_id: str, fields: dict[str, Any]) -> None:
        self.write_attempts.append((user_id, dict(fields)))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.stale_rejections:
            self.stale_rejections -= 1
            raise StaleWriteRejected("concurrent update")
        if self.fail_writes:
            raise self.fail_writes
        self.documents.setdefault(user_id, {}).update(fields)
        self.writes.append((user_id, dict(fields)))

    async def subscribe(self, user_id: str, on_change: Callable[[dict], None]) -> FakeSubscription:
        subscription = FakeSubscription(user_id, on_change)
        self.subscriptions.append(subscription)
        return subscription

    def notify(self, user_id: str, payload: dict | None = None) -> None:
        """Deliver a change notification to every open subscription."""
        for subscription in self.subscriptions:
            if subscription.user_id == user_id and not subscription.closed:
                subscription.callback(payload or {})


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def wait_until(predicate: Callable[[], bool], attempts: int = 100) -> None:
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

USER_ID = "user-1"


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def sample_profile():
    """Partly completed profile document."""
    return {
        "id": USER_ID,
        "name": "Ana",
        "bio": "Climber, cook, terrible at karaoke.",
        "location": {"_latitude": 40.71, "_longitude": -74.0},
        "profilePictures": ["https://cdn.example/1.jpg", "https://cdn.example/2.jpg"],
        "gender": "woman",
        "preferSimilarFitness": False,
        "setupProgress": "genderComplete",
    }


@pytest.fixture
def store(sample_profile):
    return FakeDocumentStore({USER_ID: sample_profile})


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def cache(memory_store):
    return ProfileCache(memory_store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(store, cache, clock):
    return SyncCoordinator(
        store,
        cache,
        staleness_window=timedelta(minutes=5),
        remote_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def settle():
    """Async helper: `await settle(lambda: cond)` yields until cond holds."""
    return wait_until
