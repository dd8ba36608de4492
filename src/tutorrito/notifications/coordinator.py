"""End-to-end arrival notification delivery with retry and idempotency."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from tutorrito.core.config import DeliveryConfig
from tutorrito.core.errors import (
    DeliveryRejected,
    DependencyUnavailable,
    InvalidInput,
    NoUpcomingSession,
    NotFound,
)
from tutorrito.notifications.composer import NotificationComposer
from tutorrito.notifications.idempotency import idempotency_key
from tutorrito.notifications.models import (
    AttemptState,
    DeliveryResult,
    DeliveryStatus,
    NotificationKind,
    NotificationRecord,
    NotificationRequest,
    RejectReason,
    ResultStatus,
)
from tutorrito.notifications.retry import BackoffPolicy, retry_transient
from tutorrito.notifications.transport import EmailTransport
from tutorrito.repositories import resolve
from tutorrito.repositories.protocols import NotificationRepository, SessionRepository
from tutorrito.sessions.lookup import SessionLookup
from tutorrito.sessions.models import SessionEta

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Attempt:
    """State of one delivery attempt, logged at every transition."""

    tutor_id: str
    state: AttemptState = AttemptState.INITIATED
    history: list[AttemptState] = field(default_factory=lambda: [AttemptState.INITIATED])
    send_attempts: int = 0

    def move(self, state: AttemptState) -> None:
        logger.debug("arrival notification for tutor %s: %s -> %s", self.tutor_id, self.state, state)
        self.state = state
        self.history.append(state)


class DeliveryCoordinator:
    """Runs lookup, compose, send and record for one NotificationRequest.

    The idempotency key claim happens before the send and is enforced by
    the record store, so concurrent identical requests produce at most one
    externally visible email. Each delivery runs in its own task shielded
    from caller cancellation: a send that went out is always recorded.
    """

    def __init__(
        self,
        lookup: SessionLookup,
        composer: NotificationComposer,
        transport: EmailTransport,
        records: NotificationRepository,
        sessions: SessionRepository | None = None,
        config: DeliveryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        config = config or DeliveryConfig()
        self._lookup = lookup
        self._composer = composer
        self._transport = transport
        self._records = records
        self._sessions = sessions
        self._claim_timeout = timedelta(seconds=config.claim_timeout_seconds)
        self._lookup_policy = BackoffPolicy.from_config(config, config.lookup_attempts)
        self._send_policy = BackoffPolicy.from_config(config, config.send_attempts)
        self._record_policy = BackoffPolicy.from_config(config, config.record_attempts)
        self._sleep = sleep
        self._rng = rng
        self._clock = clock
        self._inflight: set[asyncio.Task[DeliveryResult]] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def deliver(self, request: NotificationRequest) -> DeliveryResult:
        """Deliver one arrival notification and report its terminal status."""
        task = asyncio.ensure_future(self._run(request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every in-flight delivery, including abandoned ones."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _retry(self, operation, policy: BackoffPolicy, label: str, on_retry=None):
        return await retry_transient(
            operation, policy, label=label, sleep=self._sleep, rng=self._rng, on_retry=on_retry,
        )

    async def _run(self, request: NotificationRequest) -> DeliveryResult:
        attempt = _Attempt(tutor_id=request.tutor_id)
        now = self._clock()

        if not request.message or not request.message.strip():
            return DeliveryResult(
                status=ResultStatus.REJECTED,
                detail="message must not be empty",
                reason=RejectReason.INVALID_INPUT,
            )

        try:
            upcoming = await self._retry(
                lambda: self._lookup.find_next(request.tutor_id, now),
                self._lookup_policy,
                "session lookup",
            )
        except NoUpcomingSession as exc:
            logger.info("No upcoming session for tutor %s", request.tutor_id)
            return DeliveryResult(status=ResultStatus.NO_UPCOMING_SESSION, detail=exc.detail)
        except InvalidInput as exc:
            return DeliveryResult(
                status=ResultStatus.REJECTED, detail=exc.detail, reason=RejectReason.INVALID_INPUT,
            )
        except NotFound as exc:
            return DeliveryResult(
                status=ResultStatus.REJECTED, detail=exc.detail, reason=RejectReason.NOT_FOUND,
            )
        except DependencyUnavailable:
            attempt.move(AttemptState.DEPENDENCY_DOWN)
            return DeliveryResult(
                status=ResultStatus.DEPENDENCY_UNAVAILABLE, detail="Session datastore unavailable",
            )
        except Exception:
            logger.exception("Unexpected error looking up session for tutor %s", request.tutor_id)
            attempt.move(AttemptState.DEPENDENCY_DOWN)
            return DeliveryResult(
                status=ResultStatus.DEPENDENCY_UNAVAILABLE, detail="Session datastore unavailable",
            )
        attempt.move(AttemptState.SESSION_RESOLVED)

        try:
            payload = self._composer.compose(
                upcoming.recipient,
                request.message,
                estimated_time=request.estimated_time,
                tutor_name=upcoming.tutor_name,
            )
        except InvalidInput as exc:
            return DeliveryResult(
                status=ResultStatus.REJECTED, detail=exc.detail, reason=RejectReason.INVALID_INPUT,
            )
        attempt.move(AttemptState.COMPOSED)

        message = request.message.strip()
        key = idempotency_key(request.tutor_id, upcoming.session.id, message)
        candidate = NotificationRecord(
            recipient_id=upcoming.recipient.id,
            tutor_id=request.tutor_id,
            session_id=upcoming.session.id,
            kind=NotificationKind.ARRIVAL_UPDATE,
            message=message,
            metadata=payload.metadata,
            idempotency_key=key,
            created_at=now,
            updated_at=now,
        )
        stale_before = now - self._claim_timeout
        try:
            claim = await self._retry(
                lambda: resolve(self._records.claim(candidate, stale_before, now)),
                self._lookup_policy,
                "notification claim",
            )
        except Exception as exc:
            if not isinstance(exc, DependencyUnavailable):
                logger.exception("Unexpected error claiming notification %s", key)
            attempt.move(AttemptState.DEPENDENCY_DOWN)
            return DeliveryResult(
                status=ResultStatus.DEPENDENCY_UNAVAILABLE, detail="Notification datastore unavailable",
            )

        if not claim.claimed:
            existing = claim.record
            logger.info("Notification %s already %s, skipping send", existing.id, existing.status)
            return DeliveryResult(
                status=ResultStatus.ALREADY_SENT,
                detail=None if existing.status == DeliveryStatus.SENT else "Delivery in progress",
                notification_id=existing.id,
            )
        record = claim.record

        def _count_send() -> Awaitable[str]:
            attempt.send_attempts += 1
            return self._transport.send(payload, key)

        attempt.move(AttemptState.SENDING)
        try:
            await self._retry(
                _count_send,
                self._send_policy,
                "email send",
                on_retry=lambda n, exc: attempt.move(AttemptState.RETRYING),
            )
        except DeliveryRejected as exc:
            attempt.move(AttemptState.REJECTED)
            await self._mark_failed(record.id, exc.detail)
            return DeliveryResult(
                status=ResultStatus.REJECTED,
                detail=exc.detail,
                reason=RejectReason.DELIVERY_REJECTED,
                notification_id=record.id,
                attempts=attempt.send_attempts,
            )
        except Exception as exc:
            if isinstance(exc, DependencyUnavailable):
                error = exc.detail
            else:
                logger.exception("Unexpected error sending notification %s", record.id)
                error = "Unexpected transport error"
            attempt.move(AttemptState.DEPENDENCY_DOWN)
            await self._mark_failed(record.id, error)
            return DeliveryResult(
                status=ResultStatus.DEPENDENCY_UNAVAILABLE,
                detail="Email provider unavailable",
                notification_id=record.id,
                attempts=attempt.send_attempts,
            )

        attempt.move(AttemptState.RECORDING)
        try:
            await self._retry(
                lambda: resolve(self._records.mark_sent(record.id, self._clock())),
                self._record_policy,
                "notification record",
            )
        except Exception as exc:
            attempt.move(AttemptState.PARTIAL_FAILURE)
            if isinstance(exc, DependencyUnavailable):
                logger.error(
                    "Notification %s was delivered but could not be recorded as sent", record.id,
                )
            else:
                logger.exception(
                    "Notification %s was delivered but recording it raised unexpectedly", record.id,
                )
            await self._save_eta(upcoming.session.id, request)
            return DeliveryResult(
                status=ResultStatus.PARTIAL_FAILURE,
                detail="Message delivered but audit record not saved",
                notification_id=record.id,
                attempts=attempt.send_attempts,
            )

        attempt.move(AttemptState.SENT)
        await self._save_eta(upcoming.session.id, request)
        logger.info(
            "Arrival notification %s sent to %s after %d attempt(s)",
            record.id, upcoming.recipient.id, attempt.send_attempts,
        )
        return DeliveryResult(
            status=ResultStatus.SENT,
            notification_id=record.id,
            attempts=attempt.send_attempts,
        )

    async def _mark_failed(self, record_id: str, error: str) -> None:
        try:
            await self._retry(
                lambda: resolve(self._records.mark_failed(record_id, error, self._clock())),
                self._record_policy,
                "notification failure record",
            )
        except DependencyUnavailable:
            # The pending claim expires after claim_timeout_seconds and can be superseded.
            logger.warning("Could not mark notification %s as failed", record_id)
        except Exception:
            logger.exception("Unexpected error marking notification %s as failed", record_id)

    async def _save_eta(self, session_id: str, request: NotificationRequest) -> None:
        estimated = (request.estimated_time or "").strip()
        if self._sessions is None or not estimated:
            return
        eta = SessionEta(
            session_id=session_id,
            estimated_arrival=estimated,
            updated_by=request.tutor_id,
        )
        try:
            await resolve(self._sessions.save_eta(eta))
        except DependencyUnavailable:
            logger.warning("Could not store ETA for session %s", session_id)
        except Exception:
            logger.exception("Unexpected error storing ETA for session %s", session_id)
