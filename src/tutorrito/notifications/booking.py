"""Booking confirmation and signup emails."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

from tutorrito.core.config import DeliveryConfig
from tutorrito.core.errors import DeliveryRejected, DependencyUnavailable, InvalidInput
from tutorrito.notifications.composer import NotificationComposer
from tutorrito.notifications.idempotency import canonical_key
from tutorrito.notifications.models import BookingDetails, BookingEmailOutcome, NewUserNotice
from tutorrito.notifications.retry import BackoffPolicy, retry_transient
from tutorrito.notifications.transport import EmailTransport

logger = logging.getLogger(__name__)


class BookingMailer:
    """Sends the admin, student and tutor emails for a new booking.

    Each email is independent: one failing does not stop the others, and
    every audience gets an outcome in the report.
    """

    def __init__(
        self,
        composer: NotificationComposer,
        transport: EmailTransport,
        admin_email: str,
        config: DeliveryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        config = config or DeliveryConfig()
        self._composer = composer
        self._transport = transport
        self._admin_email = admin_email
        self._policy = BackoffPolicy.from_config(config, config.send_attempts)
        self._sleep = sleep
        self._rng = rng

    async def send_booking_emails(self, booking: BookingDetails) -> list[BookingEmailOutcome]:
        context = booking.model_dump()
        context["student_phone"] = booking.student_phone or "N/A"
        context["student_email"] = booking.student_email or ""
        context["tutor_email"] = booking.tutor_email or ""
        context["price"] = f"{booking.price:g}"

        plan = [
            ("admin", "booking_admin", self._admin_email),
            ("student", "booking_student", booking.student_email),
            ("tutor", "booking_tutor", booking.tutor_email),
        ]
        outcomes = await asyncio.gather(
            *(self._send_one(audience, template_id, to, context) for audience, template_id, to in plan)
        )
        failed = [o.audience for o in outcomes if o.status == "failed"]
        if failed:
            logger.error("Booking emails failed for: %s", ", ".join(failed))
        return list(outcomes)

    async def send_new_user_notice(self, notice: NewUserNotice) -> BookingEmailOutcome:
        context = notice.model_dump(exclude={"to"})
        return await self._send_one("admin", "new_user_admin", notice.to, context)

    async def _send_one(
        self,
        audience: str,
        template_id: str,
        to: str | None,
        context: dict[str, Any],
    ) -> BookingEmailOutcome:
        if not to:
            logger.warning("No %s email provided for %s", audience, template_id)
            return BookingEmailOutcome(audience=audience, status="skipped", detail="No email address")
        key = canonical_key({"template": template_id, "to": to, "context": context})
        try:
            payload = self._composer.compose_from_template(template_id, to, context)
            await retry_transient(
                lambda: self._transport.send(payload, key),
                self._policy,
                label=f"{template_id} email",
                sleep=self._sleep,
                rng=self._rng,
            )
        except (InvalidInput, DeliveryRejected, DependencyUnavailable) as exc:
            logger.warning("%s email to %s not sent: %s", template_id, audience, exc.detail)
            return BookingEmailOutcome(audience=audience, to=to, status="failed", detail=exc.detail)
        except Exception:
            logger.exception("Unexpected error sending %s email", template_id)
            return BookingEmailOutcome(
                audience=audience, to=to, status="failed", detail="Internal error during send",
            )
        return BookingEmailOutcome(audience=audience, to=to, status="sent")
