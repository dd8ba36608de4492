"""PostgreSQL session and profile repository."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select

from tutorrito.core.errors import InvalidInput
from tutorrito.db.engine import DatabaseManager, unavailable_on_error
from tutorrito.db.models import ProfileRow, SessionEtaRow, SessionRow
from tutorrito.sessions.models import (
    ALLOWED_TRANSITIONS,
    Profile,
    ProfileRole,
    Session,
    SessionEta,
    SessionStatus,
    ensure_aware,
)


def _utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


class PostgresSessionRepository:
    """Postgres-backed profile, session and ETA storage."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def save_profile(self, profile: Profile) -> Profile:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(ProfileRow, profile.id)
                if row is None:
                    row = ProfileRow(id=profile.id)
                    db.add(row)
                row.email = profile.email
                row.full_name = profile.full_name
                row.role = profile.role.value
                row.updated_at = datetime.now(timezone.utc)
                await db.commit()
        return profile

    async def get_profile(self, profile_id: str) -> Profile | None:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(ProfileRow, profile_id)
                if row is None:
                    return None
                return Profile(
                    id=row.id,
                    email=row.email,
                    full_name=row.full_name,
                    role=ProfileRole(row.role),
                )

    async def save_session(self, session: Session) -> Session:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(SessionRow, session.id)
                if row is None:
                    row = SessionRow(id=session.id, created_at=_utc(session.created_at))
                    db.add(row)
                row.tutor_id = session.tutor_id
                row.student_id = session.student_id
                row.start_time = _utc(session.start_time)
                row.status = session.status.value
                row.duration_minutes = session.duration_minutes
                row.location = session.location
                await db.commit()
        return session

    async def get_session(self, session_id: str) -> Session | None:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(SessionRow, session_id)
                return self._row_to_session(row) if row else None

    async def list_for_tutor(self, tutor_id: str) -> list[Session]:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                result = await db.execute(
                    select(SessionRow)
                    .where(SessionRow.tutor_id == tutor_id)
                    .order_by(SessionRow.start_time, SessionRow.id)
                )
                return [self._row_to_session(r) for r in result.scalars().all()]

    async def next_confirmed_session(self, tutor_id: str, now: datetime) -> Session | None:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                result = await db.execute(
                    select(SessionRow)
                    .where(
                        SessionRow.tutor_id == tutor_id,
                        SessionRow.status == SessionStatus.CONFIRMED.value,
                        SessionRow.start_time >= _utc(now),
                    )
                    .order_by(SessionRow.start_time, SessionRow.id)
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return self._row_to_session(row) if row else None

    async def transition_status(self, session_id: str, status: SessionStatus) -> Session:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(SessionRow, session_id)
                if row is None:
                    raise KeyError(f"Session {session_id!r} not found")
                current = SessionStatus(row.status)
                if status not in ALLOWED_TRANSITIONS[current]:
                    raise InvalidInput(f"Cannot move session from {current} to {status}")
                row.status = status.value
                await db.commit()
                return self._row_to_session(row)

    async def save_eta(self, eta: SessionEta) -> SessionEta:
        eta.updated_at = datetime.now(timezone.utc)
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(SessionEtaRow, eta.session_id)
                if row is None:
                    row = SessionEtaRow(session_id=eta.session_id)
                    db.add(row)
                row.estimated_arrival = eta.estimated_arrival
                row.updated_by = eta.updated_by
                row.updated_at = eta.updated_at
                await db.commit()
        return eta

    async def get_eta(self, session_id: str) -> SessionEta | None:
        async with unavailable_on_error("Session datastore"):
            async with self._db.session() as db:
                row = await db.get(SessionEtaRow, session_id)
                if row is None:
                    return None
                return SessionEta(
                    session_id=row.session_id,
                    estimated_arrival=row.estimated_arrival,
                    updated_by=row.updated_by,
                    updated_at=ensure_aware(row.updated_at),
                )

    @staticmethod
    def _row_to_session(row: SessionRow) -> Session:
        return Session(
            id=row.id,
            tutor_id=row.tutor_id,
            student_id=row.student_id,
            start_time=ensure_aware(row.start_time),
            status=SessionStatus(row.status),
            duration_minutes=row.duration_minutes,
            location=row.location,
            created_at=ensure_aware(row.created_at),
        )
