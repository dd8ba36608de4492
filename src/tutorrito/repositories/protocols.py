"""Protocol definitions for repository interfaces.

Each protocol mirrors the public methods of the corresponding in-memory
store class, so both sync (in-memory) and async (Postgres) implementations
satisfy the same interface. Callers wrap results in ``resolve()``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from tutorrito.notifications.models import ClaimResult, NotificationRecord
from tutorrito.sessions.models import Profile, Session, SessionEta, SessionStatus


@runtime_checkable
class SessionRepository(Protocol):
    """Protocol for profile, session and ETA storage."""

    def save_profile(self, profile: Profile) -> Profile: ...

    def get_profile(self, profile_id: str) -> Profile | None: ...

    def save_session(self, session: Session) -> Session: ...

    def get_session(self, session_id: str) -> Session | None: ...

    def list_for_tutor(self, tutor_id: str) -> list[Session]: ...

    def next_confirmed_session(self, tutor_id: str, now: datetime) -> Session | None: ...

    def transition_status(self, session_id: str, status: SessionStatus) -> Session: ...

    def save_eta(self, eta: SessionEta) -> SessionEta: ...

    def get_eta(self, session_id: str) -> SessionEta | None: ...


@runtime_checkable
class NotificationRepository(Protocol):
    """Protocol for notification record storage.

    Implementations must enforce uniqueness of ``idempotency_key`` in
    ``claim`` at the storage layer. ``now`` stamps the written timestamps
    and defaults to the wall clock.
    """

    def claim(
        self, record: NotificationRecord, stale_before: datetime, now: datetime | None = None
    ) -> ClaimResult: ...

    def mark_sent(self, record_id: str, now: datetime | None = None) -> NotificationRecord: ...

    def mark_failed(
        self, record_id: str, error: str, now: datetime | None = None
    ) -> NotificationRecord: ...

    def mark_read(self, record_id: str, now: datetime | None = None) -> NotificationRecord: ...

    def get(self, record_id: str) -> NotificationRecord | None: ...

    def get_by_key(self, idempotency_key: str) -> NotificationRecord | None: ...

    def list_for_recipient(
        self, recipient_id: str, unread_only: bool = False
    ) -> list[NotificationRecord]: ...

    def list_all(self) -> list[NotificationRecord]: ...
