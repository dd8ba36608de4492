"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tutorrito.notifications.transport import MockEmailTransport
from tutorrito.sessions.models import Profile, ProfileRole, Session, SessionStatus
from tutorrito.sessions.store import SessionStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class GatedTransport(MockEmailTransport):
    """Blocks inside send until released, to hold a delivery in flight."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, payload, idempotency_key):
        self.entered.set()
        await self.release.wait()
        return await super().send(payload, idempotency_key)


class UpperBoundRng:
    """Makes full jitter deterministic by always picking the ceiling."""

    def uniform(self, a: float, b: float) -> float:
        return b


def seed_marketplace(store: SessionStore, now: datetime = NOW) -> SessionStore:
    """T1 has a confirmed session in two hours with S1; T2 has none."""
    store.save_profile(Profile(id="T1", email="t1@example.com", full_name="Tara Tutor", role=ProfileRole.TUTOR))
    store.save_profile(Profile(id="T2", email="t2@example.com", full_name="Tom Tutor", role=ProfileRole.TUTOR))
    store.save_profile(Profile(id="S1", email="s1@example.com", full_name="Sam Student"))
    store.save_session(
        Session(
            id="sess-1",
            tutor_id="T1",
            student_id="S1",
            start_time=now + timedelta(hours=2),
            status=SessionStatus.CONFIRMED,
        )
    )
    return store


@pytest.fixture
def session_store() -> SessionStore:
    return seed_marketplace(SessionStore())


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
