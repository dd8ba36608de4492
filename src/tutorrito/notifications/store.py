"""In-memory notification record store."""

from __future__ import annotations

from datetime import datetime, timezone

from tutorrito.notifications.models import ClaimResult, DeliveryStatus, NotificationRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationStore:
    """In-memory store for notification records.

    Enforces uniqueness of ``idempotency_key``. Every method runs without
    yielding to the event loop, so check-and-insert is atomic for all
    coroutines sharing the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, NotificationRecord] = {}
        self._by_key: dict[str, str] = {}

    def claim(
        self, record: NotificationRecord, stale_before: datetime, now: datetime | None = None
    ) -> ClaimResult:
        """Insert ``record`` as pending, or report who already holds its key.

        A ``failed`` holder, or a ``pending`` holder last touched before
        ``stale_before``, is superseded in place and the caller owns it.
        ``now`` stamps the superseded record and defaults to the wall clock.
        """
        existing_id = self._by_key.get(record.idempotency_key)
        if existing_id is None:
            record.status = DeliveryStatus.PENDING
            record.attempts = max(record.attempts, 1)
            self._records[record.id] = record
            self._by_key[record.idempotency_key] = record.id
            return ClaimResult(claimed=True, record=record)

        existing = self._records[existing_id]
        stale = existing.status == DeliveryStatus.PENDING and existing.updated_at < stale_before
        if existing.status == DeliveryStatus.FAILED or stale:
            existing.status = DeliveryStatus.PENDING
            existing.attempts += 1
            existing.last_error = None
            existing.message = record.message
            existing.metadata = dict(record.metadata)
            existing.updated_at = now or _utcnow()
            return ClaimResult(claimed=True, record=existing)
        return ClaimResult(claimed=False, record=existing)

    def mark_sent(self, record_id: str, now: datetime | None = None) -> NotificationRecord:
        record = self._get_or_raise(record_id)
        if record.status != DeliveryStatus.SENT:
            record.status = DeliveryStatus.SENT
            record.sent_at = record.updated_at = now or _utcnow()
        return record

    def mark_failed(
        self, record_id: str, error: str, now: datetime | None = None
    ) -> NotificationRecord:
        record = self._get_or_raise(record_id)
        if record.status == DeliveryStatus.SENT:
            return record
        record.status = DeliveryStatus.FAILED
        record.last_error = error
        record.updated_at = now or _utcnow()
        return record

    def mark_read(self, record_id: str, now: datetime | None = None) -> NotificationRecord:
        record = self._get_or_raise(record_id)
        if not record.is_read:
            record.is_read = True
            record.read_at = now or _utcnow()
        return record

    def get(self, record_id: str) -> NotificationRecord | None:
        return self._records.get(record_id)

    def get_by_key(self, idempotency_key: str) -> NotificationRecord | None:
        record_id = self._by_key.get(idempotency_key)
        return self._records.get(record_id) if record_id else None

    def list_for_recipient(
        self, recipient_id: str, unread_only: bool = False
    ) -> list[NotificationRecord]:
        records = [
            r for r in self._records.values()
            if r.recipient_id == recipient_id and (not unread_only or not r.is_read)
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def list_all(self) -> list[NotificationRecord]:
        return list(self._records.values())

    @property
    def count(self) -> int:
        return len(self._records)

    def _get_or_raise(self, record_id: str) -> NotificationRecord:
        record = self._records.get(record_id)
        if record is None:
            raise KeyError(f"Notification {record_id!r} not found")
        return record
