"""Error taxonomy shared by the notification pipeline.

Every dependency failure is mapped to one of these kinds before it reaches
a caller. ``detail`` is a short opaque string safe to return over HTTP.
"""

from __future__ import annotations


class TutorritoError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidInput(TutorritoError):
    """Caller supplied unusable input. Never retried."""


class NotFound(TutorritoError):
    """A referenced tutor, student or record does not exist."""


class NoUpcomingSession(TutorritoError):
    """The tutor has no confirmed future session. An expected outcome."""


class DependencyUnavailable(TutorritoError):
    """Transient infrastructure fault: timeout, unreachable host, 5xx."""


class DeliveryRejected(TutorritoError):
    """The email provider permanently refused the recipient or content."""
