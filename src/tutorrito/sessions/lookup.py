"""Resolve a tutor's next confirmed session and the student to notify."""

from __future__ import annotations

from datetime import datetime, timezone

from tutorrito.core.errors import InvalidInput, NotFound, NoUpcomingSession
from tutorrito.repositories import resolve
from tutorrito.repositories.protocols import SessionRepository
from tutorrito.sessions.models import ProfileRole, Recipient, UpcomingSession


class SessionLookup:
    """Finds the nearest-future confirmed session for a tutor.

    Read-only. Works against either the in-memory ``SessionStore`` or the
    Postgres repository; datastore faults propagate as
    ``DependencyUnavailable`` from the repository layer.
    """

    def __init__(self, repository: SessionRepository) -> None:
        self._repo = repository

    async def find_next(self, tutor_id: str, now: datetime | None = None) -> UpcomingSession:
        if not tutor_id or not tutor_id.strip():
            raise InvalidInput("tutorId is required")
        now = now or datetime.now(timezone.utc)

        tutor = await resolve(self._repo.get_profile(tutor_id))
        if tutor is None or tutor.role != ProfileRole.TUTOR:
            raise NotFound(f"Tutor {tutor_id!r} not found")

        session = await resolve(self._repo.next_confirmed_session(tutor_id, now))
        if session is None:
            raise NoUpcomingSession(f"No confirmed upcoming session for tutor {tutor_id!r}")

        student = await resolve(self._repo.get_profile(session.student_id))
        if student is None:
            raise NotFound(f"Student {session.student_id!r} not found")

        return UpcomingSession(
            session=session,
            recipient=Recipient.from_profile(student),
            tutor_name=tutor.full_name or "Your tutor",
        )
