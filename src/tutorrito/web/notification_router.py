"""FastAPI router for notification endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from tutorrito.core.errors import DependencyUnavailable, InvalidInput
from tutorrito.notifications.models import (
    BookingDetails,
    CreateNotificationRequest,
    DeliveryResult,
    NewUserNotice,
    NotificationKind,
    NotificationRecord,
    NotificationRequest,
    RejectReason,
    ResultStatus,
)
from tutorrito.repositories import resolve

router = APIRouter()

_STATUS_CODES: dict[ResultStatus, int] = {
    ResultStatus.SENT: 200,
    ResultStatus.ALREADY_SENT: 200,
    ResultStatus.NO_UPCOMING_SESSION: 404,
    ResultStatus.REJECTED: 422,
    ResultStatus.DEPENDENCY_UNAVAILABLE: 503,
    ResultStatus.PARTIAL_FAILURE: 502,
}

_REJECT_CODES: dict[RejectReason, int] = {
    RejectReason.INVALID_INPUT: 400,
    RejectReason.NOT_FOUND: 404,
    RejectReason.DELIVERY_REJECTED: 422,
}


class ArrivalNotificationBody(BaseModel):
    """Inbound request. Accepts camelCase (front end) or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    tutor_id: str = Field(alias="tutorId")
    message: str
    estimated_time: str | None = Field(default=None, alias="estimatedTime")


class CreateNotificationBody(BaseModel):
    recipient_id: str
    type: NotificationKind
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def status_code_for(result: DeliveryResult) -> int:
    if result.status == ResultStatus.REJECTED and result.reason is not None:
        return _REJECT_CODES[result.reason]
    return _STATUS_CODES[result.status]


def _record_to_dict(record: NotificationRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "recipient_id": record.recipient_id,
        "session_id": record.session_id,
        "type": record.kind,
        "message": record.message,
        "metadata": record.metadata,
        "status": record.status,
        "is_read": record.is_read,
        "created_at": record.created_at.isoformat(),
        "read_at": record.read_at.isoformat() if record.read_at else None,
    }


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name.replace('_', ' ').capitalize()} not available")
    return value


@router.post("/api/notifications/arrival")
async def send_arrival_notification(body: ArrivalNotificationBody, request: Request) -> JSONResponse:
    """Notify the student of the tutor's next confirmed session."""
    coordinator = _state(request, "delivery_coordinator")
    result: DeliveryResult = await coordinator.deliver(
        NotificationRequest(
            tutor_id=body.tutor_id,
            message=body.message,
            estimated_time=body.estimated_time,
        )
    )
    content: dict[str, Any] = {"status": result.status.value}
    if result.detail:
        content["detail"] = result.detail
    if result.notification_id:
        content["notificationId"] = result.notification_id
    return JSONResponse(status_code=status_code_for(result), content=content)


@router.get("/api/notifications")
async def list_notifications(
    request: Request,
    recipient_id: str,
    unread_only: bool = False,
) -> list[dict[str, Any]]:
    """List a recipient's notifications, newest first."""
    store = _state(request, "notification_store")
    try:
        records = await resolve(store.list_for_recipient(recipient_id, unread_only=unread_only))
    except DependencyUnavailable as exc:
        raise HTTPException(status_code=503, detail=exc.detail)
    return [_record_to_dict(r) for r in records]


@router.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str, request: Request) -> dict[str, Any]:
    """Mark a notification as read."""
    store = _state(request, "notification_store")
    try:
        record = await resolve(store.mark_read(notification_id))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Notification {notification_id!r} not found")
    except DependencyUnavailable as exc:
        raise HTTPException(status_code=503, detail=exc.detail)
    return _record_to_dict(record)


@router.get("/api/sessions/{session_id}/eta")
async def get_session_eta(session_id: str, request: Request) -> dict[str, Any]:
    """Latest estimated arrival reported for a session."""
    store = _state(request, "session_store")
    try:
        eta = await resolve(store.get_eta(session_id))
    except DependencyUnavailable as exc:
        raise HTTPException(status_code=503, detail=exc.detail)
    if eta is None:
        raise HTTPException(status_code=404, detail=f"No ETA for session {session_id!r}")
    return {
        "session_id": eta.session_id,
        "estimated_arrival": eta.estimated_arrival,
        "updated_by": eta.updated_by,
        "updated_at": eta.updated_at.isoformat(),
    }


@router.post("/api/notifications", status_code=201)
async def create_notification(body: CreateNotificationBody, request: Request) -> dict[str, Any]:
    """Create an in-app notification and email a copy when possible."""
    inbox = _state(request, "inbox_service")
    try:
        created = await inbox.create(
            CreateNotificationRequest(
                recipient_id=body.recipient_id,
                kind=body.type,
                message=body.message,
                metadata=body.metadata,
            )
        )
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=exc.detail)
    except DependencyUnavailable as exc:
        raise HTTPException(status_code=503, detail=exc.detail)
    return {
        "success": True,
        "data": _record_to_dict(created.record),
        "email_status": created.email_status.value,
    }


@router.post("/api/notifications/booking")
async def send_booking_emails(body: BookingDetails, request: Request) -> dict[str, Any]:
    """Email the admin, student and tutor about a new booking."""
    mailer = _state(request, "booking_mailer")
    outcomes = await mailer.send_booking_emails(body)
    return {
        "message": "Booking email process initiated for admin, student, and tutor.",
        "results": [o.model_dump() for o in outcomes],
    }


@router.post("/api/notifications/new-user")
async def send_new_user_notice(body: NewUserNotice, request: Request) -> JSONResponse:
    """Tell the admin about a new signup."""
    mailer = _state(request, "booking_mailer")
    outcome = await mailer.send_new_user_notice(body)
    if outcome.sent:
        return JSONResponse(
            status_code=200, content={"message": "New user notification sent successfully"},
        )
    return JSONResponse(status_code=502, content={"error": outcome.detail or "Email not sent"})
