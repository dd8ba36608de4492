"""Tests for PostgresNotificationRepository with SQLite async."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import NOW, GatedTransport, RecordingSleep, UpperBoundRng, seed_marketplace
from tutorrito.core.errors import DependencyUnavailable
from tutorrito.db.base import Base
from tutorrito.db.engine import DatabaseManager
from tutorrito.notifications.composer import NotificationComposer
from tutorrito.notifications.coordinator import DeliveryCoordinator
from tutorrito.notifications.models import (
    DeliveryStatus,
    NotificationRecord,
    NotificationRequest,
    ResultStatus,
)
from tutorrito.notifications.transport import MockEmailTransport
from tutorrito.repositories.postgres.notifications import PostgresNotificationRepository
from tutorrito.sessions.lookup import SessionLookup
from tutorrito.sessions.store import SessionStore

import tutorrito.db.models  # noqa: F401


@pytest.fixture
async def repo():
    db = DatabaseManager("sqlite+aiosqlite:///:memory:")
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield PostgresNotificationRepository(db)
    await db.close()


@pytest.fixture
async def file_repo(tmp_path):
    """File-backed database so concurrent sessions get their own connections."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield PostgresNotificationRepository(db)
    await db.close()


def _record(key: str = "k1", recipient: str = "S1") -> NotificationRecord:
    return NotificationRecord(
        recipient_id=recipient,
        tutor_id="T1",
        session_id="sess-1",
        idempotency_key=key,
        message="On my way",
        metadata={"estimated_time": "15 min"},
    )


def _long_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=1)


async def test_claim_and_get(repo):
    result = await repo.claim(_record(), _long_ago())
    assert result.claimed
    found = await repo.get(result.record.id)
    assert found.status == DeliveryStatus.PENDING
    assert found.metadata == {"estimated_time": "15 min"}


async def test_unique_key_enforced(repo):
    first = await repo.claim(_record(), _long_ago())
    second = await repo.claim(_record(), _long_ago())
    assert not second.claimed
    assert second.record.id == first.record.id
    assert await repo.async_count() == 1


async def test_sent_never_superseded(repo):
    first = await repo.claim(_record(), _long_ago())
    await repo.mark_sent(first.record.id)
    again = await repo.claim(_record(), datetime.now(timezone.utc) + timedelta(hours=1))
    assert not again.claimed
    assert again.record.status == DeliveryStatus.SENT


async def test_failed_superseded(repo):
    first = await repo.claim(_record(), _long_ago())
    failed = await repo.mark_failed(first.record.id, "timeout")
    assert failed.last_error == "timeout"

    again = await repo.claim(_record(), _long_ago())
    assert again.claimed
    assert again.record.id == first.record.id
    stored = await repo.get(first.record.id)
    assert stored.status == DeliveryStatus.PENDING
    assert stored.attempts == 2


async def test_mark_sent_is_final(repo):
    first = await repo.claim(_record(), _long_ago())
    sent = await repo.mark_sent(first.record.id)
    assert sent.sent_at is not None
    after = await repo.mark_failed(first.record.id, "late")
    assert after.status == DeliveryStatus.SENT


async def test_mark_unknown_raises(repo):
    with pytest.raises(KeyError):
        await repo.mark_sent("nope")


async def test_inbox(repo):
    a = await repo.claim(_record("a"), _long_ago())
    await repo.claim(_record("b"), _long_ago())
    await repo.claim(_record("c", recipient="S2"), _long_ago())

    assert len(await repo.list_for_recipient("S1")) == 2
    read = await repo.mark_read(a.record.id)
    assert read.is_read
    unread = await repo.list_for_recipient("S1", unread_only=True)
    assert [r.idempotency_key for r in unread] == ["b"]
    assert len(await repo.list_all()) == 3
    assert (await repo.get_by_key("c")).recipient_id == "S2"


async def test_unreachable_database_is_unavailable():
    db = DatabaseManager("sqlite+aiosqlite:////nonexistent-dir/tutorrito.db")
    repo = PostgresNotificationRepository(db)
    try:
        with pytest.raises(DependencyUnavailable):
            await repo.get("anything")
    finally:
        await db.close()


async def test_stale_pending_superseded(repo):
    first = await repo.claim(_record(), _long_ago())
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    again = await repo.claim(_record(), later, later)

    assert again.claimed
    assert again.record.id == first.record.id
    stored = await repo.get(first.record.id)
    assert stored.status == DeliveryStatus.PENDING
    assert stored.attempts == 2
    assert stored.updated_at == later


async def test_fresh_pending_not_superseded(repo):
    await repo.claim(_record(), _long_ago())
    again = await repo.claim(_record(), _long_ago())
    assert not again.claimed
    assert again.record.status == DeliveryStatus.PENDING


async def test_racing_supersede_single_winner(file_repo, monkeypatch):
    first = await file_repo.claim(_record(), _long_ago())
    await file_repo.mark_failed(first.record.id, "timeout")

    real_get = PostgresNotificationRepository._get_row_by_key
    paused = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def held_after_read(db, key):
        row = await real_get(db, key)
        calls.append(key)
        if len(calls) == 1:
            paused.set()
            await release.wait()
        return row

    monkeypatch.setattr(PostgresNotificationRepository, "_get_row_by_key", staticmethod(held_after_read))

    # The slow claimant reads the failed row, then waits while another claimant supersedes it.
    slow = asyncio.create_task(file_repo.claim(_record(), _long_ago()))
    await paused.wait()
    fast = await file_repo.claim(_record(), _long_ago())
    release.set()
    slow_result = await slow

    assert fast.claimed
    assert not slow_result.claimed
    stored = await file_repo.get(first.record.id)
    assert stored.status == DeliveryStatus.PENDING
    assert stored.attempts == 2


async def test_claim_when_holder_disappears(repo, monkeypatch):
    await repo.claim(_record(), _long_ago())

    async def missing(db, key):
        return None

    monkeypatch.setattr(PostgresNotificationRepository, "_get_row_by_key", staticmethod(missing))
    candidate = _record()
    result = await repo.claim(candidate, _long_ago())

    assert not result.claimed
    assert result.record.id == candidate.id
    assert await repo.async_count() == 1


def _coordinator(repo, transport) -> DeliveryCoordinator:
    sessions = seed_marketplace(SessionStore())
    return DeliveryCoordinator(
        lookup=SessionLookup(sessions),
        composer=NotificationComposer(),
        transport=transport,
        records=repo,
        sessions=sessions,
        sleep=RecordingSleep(),
        rng=UpperBoundRng(),
        clock=lambda: NOW,
    )


ARRIVAL = NotificationRequest(tutor_id="T1", message="On my way", estimated_time="15 min")


class TestCoordinatorOverRepository:
    async def test_in_flight_duplicate_sends_once(self, repo) -> None:
        transport = GatedTransport()
        coordinator = _coordinator(repo, transport)

        first = asyncio.create_task(coordinator.deliver(ARRIVAL))
        await transport.entered.wait()
        second = await coordinator.deliver(ARRIVAL)
        transport.release.set()
        first_result = await first

        assert first_result.status == ResultStatus.SENT
        assert second.status == ResultStatus.ALREADY_SENT
        assert second.detail == "Delivery in progress"
        assert len(transport.sent) == 1
        rows = await repo.list_all()
        assert [r.status for r in rows] == [DeliveryStatus.SENT]
        assert rows[0].sent_at == NOW

        third = await coordinator.deliver(ARRIVAL)
        assert third.status == ResultStatus.ALREADY_SENT
        assert third.detail is None
        assert await repo.async_count() == 1

    async def test_failed_delivery_resent_on_same_row(self, repo) -> None:
        transport = MockEmailTransport(failures=[DependencyUnavailable("503")] * 3)
        coordinator = _coordinator(repo, transport)

        first = await coordinator.deliver(ARRIVAL)
        assert first.status == ResultStatus.DEPENDENCY_UNAVAILABLE
        assert (await repo.get(first.notification_id)).status == DeliveryStatus.FAILED

        second = await coordinator.deliver(ARRIVAL)
        assert second.status == ResultStatus.SENT
        assert second.notification_id == first.notification_id
        stored = await repo.get(first.notification_id)
        assert stored.status == DeliveryStatus.SENT
        assert stored.attempts == 2
