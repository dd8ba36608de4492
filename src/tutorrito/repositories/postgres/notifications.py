"""PostgreSQL notification record repository."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from tutorrito.db.engine import DatabaseManager, unavailable_on_error
from tutorrito.db.models import NotificationRow
from tutorrito.notifications.models import (
    ClaimResult,
    DeliveryStatus,
    NotificationKind,
    NotificationRecord,
)
from tutorrito.sessions.models import ensure_aware


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PostgresNotificationRepository:
    """Postgres-backed notification storage.

    The unique index on ``idempotency_key`` is the deduplication point:
    concurrent claims race on the INSERT and exactly one wins.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def claim(
        self, record: NotificationRecord, stale_before: datetime, now: datetime | None = None
    ) -> ClaimResult:
        async with unavailable_on_error("Notification datastore"):
            record.status = DeliveryStatus.PENDING
            record.attempts = max(record.attempts, 1)
            async with self._db.session() as db:
                db.add(self._record_to_row(record))
                try:
                    await db.commit()
                    return ClaimResult(claimed=True, record=record)
                except IntegrityError:
                    await db.rollback()

            async with self._db.session() as db:
                row = await self._get_row_by_key(db, record.idempotency_key)
                if row is None:
                    # Holder vanished between INSERT and SELECT; report as in progress.
                    return ClaimResult(claimed=False, record=record)
                existing = self._row_to_record(row)
                stale = (
                    existing.status == DeliveryStatus.PENDING
                    and existing.updated_at < ensure_aware(stale_before)
                )
                if existing.status != DeliveryStatus.FAILED and not stale:
                    return ClaimResult(claimed=False, record=existing)

                # Compare-and-set on (status, attempts) so only one superseder wins.
                now = now or _utcnow()
                result = await db.execute(
                    update(NotificationRow)
                    .where(
                        NotificationRow.id == existing.id,
                        NotificationRow.status == existing.status.value,
                        NotificationRow.attempts == existing.attempts,
                    )
                    .values({
                        NotificationRow.status: DeliveryStatus.PENDING.value,
                        NotificationRow.attempts: existing.attempts + 1,
                        NotificationRow.last_error: None,
                        NotificationRow.message: record.message,
                        NotificationRow.metadata_json: record.metadata,
                        NotificationRow.updated_at: now,
                    })
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                if result.rowcount == 1:
                    existing.status = DeliveryStatus.PENDING
                    existing.attempts += 1
                    existing.last_error = None
                    existing.message = record.message
                    existing.metadata = dict(record.metadata)
                    existing.updated_at = now
                    return ClaimResult(claimed=True, record=existing)

                row = await self._get_row_by_key(db, record.idempotency_key)
                return ClaimResult(claimed=False, record=self._row_to_record(row) if row else existing)

    async def mark_sent(self, record_id: str, now: datetime | None = None) -> NotificationRecord:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                row = await self._get_row_or_raise(db, record_id)
                if row.status != DeliveryStatus.SENT.value:
                    now = now or _utcnow()
                    row.status = DeliveryStatus.SENT.value
                    row.sent_at = now
                    row.updated_at = now
                    await db.commit()
                return self._row_to_record(row)

    async def mark_failed(
        self, record_id: str, error: str, now: datetime | None = None
    ) -> NotificationRecord:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                row = await self._get_row_or_raise(db, record_id)
                if row.status != DeliveryStatus.SENT.value:
                    row.status = DeliveryStatus.FAILED.value
                    row.last_error = error
                    row.updated_at = now or _utcnow()
                    await db.commit()
                return self._row_to_record(row)

    async def mark_read(self, record_id: str, now: datetime | None = None) -> NotificationRecord:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                row = await self._get_row_or_raise(db, record_id)
                if not row.is_read:
                    row.is_read = True
                    row.read_at = now or _utcnow()
                    await db.commit()
                return self._row_to_record(row)

    async def get(self, record_id: str) -> NotificationRecord | None:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                row = await db.get(NotificationRow, record_id)
                return self._row_to_record(row) if row else None

    async def get_by_key(self, idempotency_key: str) -> NotificationRecord | None:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                row = await self._get_row_by_key(db, idempotency_key)
                return self._row_to_record(row) if row else None

    async def list_for_recipient(
        self, recipient_id: str, unread_only: bool = False
    ) -> list[NotificationRecord]:
        stmt = select(NotificationRow).where(NotificationRow.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(NotificationRow.is_read.is_(False))
        stmt = stmt.order_by(NotificationRow.created_at.desc())
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                result = await db.execute(stmt)
                return [self._row_to_record(r) for r in result.scalars().all()]

    async def list_all(self) -> list[NotificationRecord]:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                result = await db.execute(select(NotificationRow))
                return [self._row_to_record(r) for r in result.scalars().all()]

    async def async_count(self) -> int:
        async with unavailable_on_error("Notification datastore"):
            async with self._db.session() as db:
                result = await db.execute(select(func.count()).select_from(NotificationRow))
                return result.scalar_one()

    @staticmethod
    async def _get_row_by_key(db, idempotency_key: str) -> NotificationRow | None:
        result = await db.execute(
            select(NotificationRow).where(NotificationRow.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_row_or_raise(db, record_id: str) -> NotificationRow:
        row = await db.get(NotificationRow, record_id)
        if row is None:
            raise KeyError(f"Notification {record_id!r} not found")
        return row

    @staticmethod
    def _record_to_row(record: NotificationRecord) -> NotificationRow:
        return NotificationRow(
            id=record.id,
            recipient_id=record.recipient_id,
            tutor_id=record.tutor_id,
            session_id=record.session_id,
            kind=record.kind.value,
            message=record.message,
            metadata_json=record.metadata,
            status=record.status.value,
            idempotency_key=record.idempotency_key,
            attempts=record.attempts,
            last_error=record.last_error,
            is_read=record.is_read,
            created_at=record.created_at,
            updated_at=record.updated_at,
            sent_at=record.sent_at,
            read_at=record.read_at,
        )

    @staticmethod
    def _row_to_record(row: NotificationRow) -> NotificationRecord:
        return NotificationRecord(
            id=row.id,
            recipient_id=row.recipient_id,
            tutor_id=row.tutor_id,
            session_id=row.session_id,
            kind=NotificationKind(row.kind),
            message=row.message,
            metadata=row.metadata_json or {},
            status=DeliveryStatus(row.status),
            idempotency_key=row.idempotency_key,
            attempts=row.attempts,
            last_error=row.last_error,
            is_read=row.is_read,
            created_at=ensure_aware(row.created_at),
            updated_at=ensure_aware(row.updated_at),
            sent_at=ensure_aware(row.sent_at) if row.sent_at else None,
            read_at=ensure_aware(row.read_at) if row.read_at else None,
        )
