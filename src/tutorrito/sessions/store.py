"""In-memory session and profile store."""

from __future__ import annotations

from datetime import datetime, timezone

from tutorrito.core.errors import InvalidInput
from tutorrito.sessions.models import (
    ALLOWED_TRANSITIONS,
    Profile,
    Session,
    SessionEta,
    SessionStatus,
)


class SessionStore:
    """In-memory store for profiles, sessions and session ETAs."""

    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._sessions: dict[str, Session] = {}
        self._etas: dict[str, SessionEta] = {}

    def save_profile(self, profile: Profile) -> Profile:
        self._profiles[profile.id] = profile
        return profile

    def get_profile(self, profile_id: str) -> Profile | None:
        return self._profiles.get(profile_id)

    def save_session(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_for_tutor(self, tutor_id: str) -> list[Session]:
        return sorted(
            (s for s in self._sessions.values() if s.tutor_id == tutor_id),
            key=lambda s: (s.start_time, s.id),
        )

    def next_confirmed_session(self, tutor_id: str, now: datetime) -> Session | None:
        """Earliest confirmed session at or after ``now``, ties broken by id."""
        for session in self.list_for_tutor(tutor_id):
            if session.is_eligible(now):
                return session
        return None

    def transition_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session {session_id!r} not found")
        if status not in ALLOWED_TRANSITIONS[session.status]:
            raise InvalidInput(f"Cannot move session from {session.status} to {status}")
        session.status = status
        return session

    def save_eta(self, eta: SessionEta) -> SessionEta:
        eta.updated_at = datetime.now(timezone.utc)
        self._etas[eta.session_id] = eta
        return eta

    def get_eta(self, session_id: str) -> SessionEta | None:
        return self._etas.get(session_id)

    @property
    def count(self) -> int:
        return len(self._sessions)
