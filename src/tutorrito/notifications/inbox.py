"""In-app notification creation with a best-effort email copy."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable

from tutorrito.core.config import DeliveryConfig, EmailConfig
from tutorrito.core.errors import DeliveryRejected, DependencyUnavailable, InvalidInput
from tutorrito.notifications.composer import NotificationComposer, is_usable_address
from tutorrito.notifications.models import (
    CreatedNotification,
    CreateNotificationRequest,
    EmailStatus,
    NotificationKind,
    NotificationRecord,
)
from tutorrito.notifications.retry import BackoffPolicy, retry_transient
from tutorrito.notifications.transport import EmailTransport
from tutorrito.repositories import resolve
from tutorrito.repositories.protocols import NotificationRepository, SessionRepository

logger = logging.getLogger(__name__)

_TEMPLATE_FOR_KIND: dict[NotificationKind, str] = {
    NotificationKind.NEW_MESSAGE: "new_message",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboxService:
    """Creates inbox entries for any notification kind.

    The in-app record is the primary effect. The email copy is attempted
    once per transient-retry policy and its outcome is reported as an
    ``EmailStatus``; an email failure never undoes the record.
    """

    def __init__(
        self,
        records: NotificationRepository,
        profiles: SessionRepository,
        composer: NotificationComposer,
        transport: EmailTransport,
        email_config: EmailConfig | None = None,
        delivery_config: DeliveryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        delivery_config = delivery_config or DeliveryConfig()
        self._records = records
        self._profiles = profiles
        self._composer = composer
        self._transport = transport
        self._app_url = (email_config or EmailConfig()).app_url.rstrip("/")
        self._send_policy = BackoffPolicy.from_config(delivery_config, delivery_config.send_attempts)
        self._sleep = sleep
        self._rng = rng
        self._clock = clock

    async def create(self, request: CreateNotificationRequest) -> CreatedNotification:
        """Store the notification, then try to email a copy.

        Raises ``InvalidInput`` for missing fields and
        ``DependencyUnavailable`` when the record cannot be stored.
        """
        if not request.recipient_id.strip() or not request.message.strip():
            raise InvalidInput("Missing required fields: recipient_id, type, or message")

        now = self._clock()
        record = NotificationRecord(
            recipient_id=request.recipient_id,
            kind=request.kind,
            message=request.message.strip(),
            metadata=dict(request.metadata),
            idempotency_key=uuid.uuid4().hex,
            created_at=now,
            updated_at=now,
        )
        claim = await resolve(self._records.claim(record, now, now))
        record = claim.record
        logger.info("Created %s notification %s for %s", record.kind, record.id, record.recipient_id)

        email_status = await self._email_copy(record)
        return CreatedNotification(record=record, email_status=email_status)

    async def _email_copy(self, record: NotificationRecord) -> EmailStatus:
        try:
            profile = await resolve(self._profiles.get_profile(record.recipient_id))
        except DependencyUnavailable:
            profile = None
        if profile is None:
            logger.warning("No profile for recipient %s; skipping email", record.recipient_id)
            await self._mark(record, "recipient profile unavailable")
            return EmailStatus.PROFILE_UNAVAILABLE
        if not is_usable_address(profile.email):
            logger.warning("Recipient %s has no email address; skipping email", record.recipient_id)
            await self._mark(record, "recipient email missing")
            return EmailStatus.RECIPIENT_EMAIL_MISSING

        conversation_id = record.metadata.get("conversation_id")
        if conversation_id:
            view_hint = f"View the conversation: {self._app_url}/chat/{conversation_id}"
        else:
            view_hint = "Open the app to view the message."
        context = {
            "recipient_name": profile.full_name or "User",
            "sender_name": record.metadata.get("sender_name") or "Someone",
            "message": record.message,
            "view_hint": view_hint,
        }

        try:
            payload = self._composer.compose_from_template(
                _TEMPLATE_FOR_KIND.get(record.kind, "general"), profile.email, context,
            )
            await retry_transient(
                lambda: self._transport.send(payload, record.idempotency_key),
                self._send_policy,
                label="inbox email",
                sleep=self._sleep,
                rng=self._rng,
            )
        except (DeliveryRejected, DependencyUnavailable) as exc:
            logger.warning("Email copy of notification %s not sent: %s", record.id, exc.detail)
            await self._mark(record, exc.detail)
            return EmailStatus.FAILED_TO_SEND
        except Exception:
            logger.exception("Unexpected error emailing notification %s", record.id)
            await self._mark(record, "internal error during send")
            return EmailStatus.INTERNAL_ERROR

        await self._mark(record, None)
        return EmailStatus.SENT

    async def _mark(self, record: NotificationRecord, error: str | None) -> None:
        """Record the email outcome on the inbox entry, best effort."""
        now = self._clock()
        try:
            if error is None:
                updated = await resolve(self._records.mark_sent(record.id, now))
            else:
                updated = await resolve(self._records.mark_failed(record.id, error, now))
        except Exception:
            logger.exception("Could not record email outcome for notification %s", record.id)
            return
        record.status = updated.status
        record.last_error = updated.last_error
        record.sent_at = updated.sent_at
        record.updated_at = updated.updated_at
