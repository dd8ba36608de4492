"""Email transport Protocol, Resend HTTP implementation and mock."""

from __future__ import annotations

import logging
import uuid
from typing import Protocol, runtime_checkable

import httpx

from tutorrito.core.config import EmailConfig
from tutorrito.core.errors import DeliveryRejected, DependencyUnavailable
from tutorrito.notifications.models import RenderedNotification

logger = logging.getLogger(__name__)


@runtime_checkable
class EmailTransport(Protocol):
    """Sends one rendered message. Makes exactly one attempt per call.

    Raises ``DependencyUnavailable`` for transient faults and
    ``DeliveryRejected`` for permanent refusals. Returns the provider's
    message id.
    """

    async def send(self, payload: RenderedNotification, idempotency_key: str) -> str: ...

    async def close(self) -> None: ...


class ResendEmailTransport:
    """Talks to the Resend ``POST /emails`` API."""

    def __init__(self, config: EmailConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._http = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            headers=headers,
        )

    async def send(self, payload: RenderedNotification, idempotency_key: str) -> str:
        body = {
            "from": self.config.sender,
            "to": [payload.to],
            "subject": payload.subject,
            "html": payload.html,
            "text": payload.text,
        }
        try:
            resp = await self._http.post(
                "/emails",
                json=body,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.TimeoutException as exc:
            raise DependencyUnavailable("Email provider timed out") from exc
        except httpx.TransportError as exc:
            raise DependencyUnavailable("Email provider unreachable") from exc
        except httpx.HTTPError as exc:
            logger.warning("Email provider call failed: %s", type(exc).__name__)
            raise DependencyUnavailable("Email provider error") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning("Email provider returned %d", resp.status_code)
            raise DependencyUnavailable(f"Email provider returned {resp.status_code}")
        if resp.status_code >= 400:
            logger.warning("Email provider rejected message: %d %s", resp.status_code, resp.text[:200])
            raise DeliveryRejected(f"Email provider rejected message ({resp.status_code})")

        try:
            data = resp.json()
            message_id = data["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise DependencyUnavailable("Malformed response from email provider") from exc
        return str(message_id)

    async def close(self) -> None:
        await self._http.aclose()


class MockEmailTransport:
    """In-process transport that records every accepted message.

    ``failures`` is consumed one entry per call: an exception instance is
    raised, ``None`` lets the call succeed.
    """

    def __init__(self, failures: list[Exception | None] | None = None) -> None:
        self.sent: list[tuple[RenderedNotification, str]] = []
        self.calls = 0
        self._failures = list(failures or [])

    async def send(self, payload: RenderedNotification, idempotency_key: str) -> str:
        self.calls += 1
        if self._failures:
            failure = self._failures.pop(0)
            if failure is not None:
                raise failure
        self.sent.append((payload, idempotency_key))
        return f"mock-{uuid.uuid4()}"

    async def close(self) -> None:
        return None


def create_transport(config: EmailConfig) -> EmailTransport:
    """Factory: select a transport based on config.provider."""
    provider = config.provider.lower()
    if provider == "resend":
        return ResendEmailTransport(config)
    if provider == "mock":
        return MockEmailTransport()
    raise ValueError(f"Unknown email provider: {config.provider!r}")
