"""Tests for the in-memory notification store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tutorrito.notifications.models import DeliveryStatus, NotificationRecord
from tutorrito.notifications.store import NotificationStore


def _record(key: str = "k1", recipient: str = "S1", **kwargs) -> NotificationRecord:
    return NotificationRecord(recipient_id=recipient, idempotency_key=key, message="On my way", **kwargs)


def _long_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=1)


class TestClaim:
    def setup_method(self) -> None:
        self.store = NotificationStore()

    def test_first_claim_wins(self) -> None:
        result = self.store.claim(_record(), _long_ago())
        assert result.claimed
        assert result.record.status == DeliveryStatus.PENDING
        assert self.store.count == 1

    def test_duplicate_key_not_claimed(self) -> None:
        first = self.store.claim(_record(), _long_ago())
        second = self.store.claim(_record(), _long_ago())
        assert not second.claimed
        assert second.record.id == first.record.id
        assert self.store.count == 1

    def test_sent_record_is_never_superseded(self) -> None:
        first = self.store.claim(_record(), _long_ago())
        self.store.mark_sent(first.record.id)
        again = self.store.claim(_record(), datetime.now(timezone.utc) + timedelta(hours=1))
        assert not again.claimed
        assert again.record.status == DeliveryStatus.SENT

    def test_failed_record_is_superseded(self) -> None:
        first = self.store.claim(_record(), _long_ago())
        self.store.mark_failed(first.record.id, "timeout")
        again = self.store.claim(_record(), _long_ago())
        assert again.claimed
        assert again.record.id == first.record.id
        assert again.record.attempts == 2
        assert again.record.last_error is None

    def test_stale_pending_is_superseded(self) -> None:
        self.store.claim(_record(), _long_ago())
        again = self.store.claim(_record(), datetime.now(timezone.utc) + timedelta(seconds=1))
        assert again.claimed


class TestRecordLifecycle:
    def setup_method(self) -> None:
        self.store = NotificationStore()
        self.record = self.store.claim(_record(), _long_ago()).record

    def test_mark_sent(self) -> None:
        sent = self.store.mark_sent(self.record.id)
        assert sent.status == DeliveryStatus.SENT
        assert sent.sent_at is not None

    def test_sent_is_immutable(self) -> None:
        self.store.mark_sent(self.record.id)
        after = self.store.mark_failed(self.record.id, "late failure")
        assert after.status == DeliveryStatus.SENT
        assert after.last_error is None

    def test_writes_use_given_time(self) -> None:
        at = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)
        failed = self.store.mark_failed(self.record.id, "timeout", at)
        assert failed.updated_at == at
        superseded = self.store.claim(_record(), _long_ago(), at + timedelta(minutes=1)).record
        assert superseded.updated_at == at + timedelta(minutes=1)
        sent = self.store.mark_sent(self.record.id, at + timedelta(minutes=2))
        assert sent.sent_at == at + timedelta(minutes=2)

    def test_mark_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            self.store.mark_sent("nope")

    def test_get_by_key(self) -> None:
        assert self.store.get_by_key("k1").id == self.record.id
        assert self.store.get_by_key("other") is None


class TestInbox:
    def setup_method(self) -> None:
        self.store = NotificationStore()
        base = datetime(2026, 10, 19, tzinfo=timezone.utc)
        for i, key in enumerate(("a", "b", "c")):
            self.store.claim(_record(key=key, created_at=base + timedelta(minutes=i)), _long_ago())
        self.store.claim(_record(key="other", recipient="S2"), _long_ago())

    def test_newest_first(self) -> None:
        records = self.store.list_for_recipient("S1")
        assert [r.idempotency_key for r in records] == ["c", "b", "a"]

    def test_unread_only(self) -> None:
        newest = self.store.list_for_recipient("S1")[0]
        read = self.store.mark_read(newest.id)
        assert read.is_read and read.read_at is not None
        unread = self.store.list_for_recipient("S1", unread_only=True)
        assert [r.idempotency_key for r in unread] == ["b", "a"]

    def test_list_all(self) -> None:
        assert len(self.store.list_all()) == 4
