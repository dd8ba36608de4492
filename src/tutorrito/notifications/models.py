"""Notification data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class NotificationKind(StrEnum):
    ARRIVAL_UPDATE = "arrival_update"
    NEW_MESSAGE = "new_message"
    SESSION_BOOKED = "session_booked"
    GENERAL = "general"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ResultStatus(StrEnum):
    """Stable status returned to callers of the delivery pipeline."""

    SENT = "sent"
    ALREADY_SENT = "already_sent"
    REJECTED = "rejected"
    NO_UPCOMING_SESSION = "no_upcoming_session"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    PARTIAL_FAILURE = "partial_failure"


class AttemptState(StrEnum):
    INITIATED = "initiated"
    SESSION_RESOLVED = "session_resolved"
    COMPOSED = "composed"
    SENDING = "sending"
    RETRYING = "retrying"
    SENT = "sent"
    REJECTED = "rejected"
    DEPENDENCY_DOWN = "dependency_down"
    RECORDING = "recording"
    PARTIAL_FAILURE = "partial_failure"


class NotificationRequest(BaseModel):
    """Input to the pipeline. Constructed per call, never persisted."""

    tutor_id: str
    message: str
    estimated_time: str | None = None


class RenderedNotification(BaseModel):
    to: str
    subject: str
    text: str
    html: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationRecord(BaseModel):
    """Durable audit entry for one logical notification."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient_id: str
    tutor_id: str = ""
    session_id: str = ""
    kind: NotificationKind = NotificationKind.ARRIVAL_UPDATE
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: DeliveryStatus = DeliveryStatus.PENDING
    idempotency_key: str
    attempts: int = 0
    last_error: str | None = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sent_at: datetime | None = None
    read_at: datetime | None = None


class ClaimResult(BaseModel):
    """Outcome of trying to insert a pending record for an idempotency key.

    ``claimed`` is True when this caller now owns ``record``. Otherwise
    ``record`` is the existing row holding the key.
    """

    claimed: bool
    record: NotificationRecord


class RejectReason(StrEnum):
    """Why a ``rejected`` result was rejected."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    DELIVERY_REJECTED = "delivery_rejected"


class DeliveryResult(BaseModel):
    status: ResultStatus
    detail: str | None = None
    reason: RejectReason | None = None
    notification_id: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (ResultStatus.SENT, ResultStatus.ALREADY_SENT)


class EmailStatus(StrEnum):
    """Outcome of the best-effort email that follows an in-app notification."""

    SENT = "sent"
    PROFILE_UNAVAILABLE = "failed_to_fetch_recipient_profile"
    RECIPIENT_EMAIL_MISSING = "recipient_email_missing"
    FAILED_TO_SEND = "failed_to_send"
    INTERNAL_ERROR = "internal_error_during_send"


class CreateNotificationRequest(BaseModel):
    recipient_id: str
    kind: NotificationKind
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class CreatedNotification(BaseModel):
    record: NotificationRecord
    email_status: EmailStatus


class BookingDetails(BaseModel):
    """A freshly booked session, as reported by the booking workflow."""

    student_name: str
    student_email: str | None = None
    student_phone: str | None = None
    tutor_name: str
    tutor_email: str | None = None
    subject: str
    date: str
    time: str
    location: str
    price: float


class NewUserNotice(BaseModel):
    to: str
    subject: str
    name: str
    email: str
    timestamp: str


class BookingEmailOutcome(BaseModel):
    audience: str
    to: str | None = None
    status: str
    detail: str | None = None

    @property
    def sent(self) -> bool:
        return self.status == "sent"
