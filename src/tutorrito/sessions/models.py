"""Session and profile data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field


class SessionStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ProfileRole(StrEnum):
    STUDENT = "student"
    TUTOR = "tutor"


# Allowed status edges. Sessions are never deleted, only transitioned.
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.CONFIRMED, SessionStatus.CANCELLED}),
    SessionStatus.CONFIRMED: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.CANCELLED: frozenset(),
    SessionStatus.COMPLETED: frozenset(),
}


class Profile(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str | None = None
    full_name: str | None = None
    role: ProfileRole = ProfileRole.STUDENT


class Session(BaseModel):
    """A scheduled tutoring engagement created by the booking workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tutor_id: str
    student_id: str
    start_time: datetime
    status: SessionStatus = SessionStatus.PENDING
    duration_minutes: int = 60
    location: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_eligible(self, now: datetime) -> bool:
        """Only confirmed sessions starting at or after ``now`` get arrival updates."""
        return self.status == SessionStatus.CONFIRMED and self.start_time >= now


class Recipient(BaseModel):
    """Read-only snapshot of a student profile used for messaging."""

    id: str
    email: str | None = None
    display_name: str = "Student"

    @classmethod
    def from_profile(cls, profile: Profile) -> Recipient:
        return cls(
            id=profile.id,
            email=profile.email,
            display_name=profile.full_name or "Student",
        )


class UpcomingSession(BaseModel):
    """Result of a session lookup: the session plus who to notify."""

    session: Session
    recipient: Recipient
    tutor_name: str = "Your tutor"


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionEta(BaseModel):
    """Latest estimated arrival a tutor reported for a session."""

    session_id: str
    estimated_arrival: str
    updated_by: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
