"""Bounded exponential backoff with full jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tutorrito.core.config import DeliveryConfig
from tutorrito.core.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    @classmethod
    def from_config(cls, config: DeliveryConfig, attempts: int) -> BackoffPolicy:
        return cls(
            attempts=max(1, attempts),
            base_delay=config.base_delay_seconds,
            multiplier=config.multiplier,
            max_delay=config.max_delay_seconds,
        )

    def ceiling(self, retry_index: int) -> float:
        """Upper bound of the delay before retry number ``retry_index + 1``."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** retry_index))

    def delay(self, retry_index: int, rng: random.Random | None = None) -> float:
        return (rng or random).uniform(0.0, self.ceiling(retry_index))


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    label: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
    on_retry: Callable[[int, DependencyUnavailable], None] | None = None,
) -> T:
    """Run ``operation`` retrying only on ``DependencyUnavailable``.

    Any other exception propagates on the first occurrence. After the last
    attempt the final ``DependencyUnavailable`` is re-raised.
    """
    for attempt in range(policy.attempts):
        try:
            return await operation()
        except DependencyUnavailable as exc:
            if attempt >= policy.attempts - 1:
                logger.warning("%s failed after %d attempts: %s", label, policy.attempts, exc.detail)
                raise
            delay = policy.delay(attempt, rng)
            logger.warning(
                "%s failed: %s, retrying in %.2fs (%d/%d)",
                label, exc.detail, delay, attempt + 1, policy.attempts,
            )
            if on_retry is not None:
                on_retry(attempt + 1, exc)
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
