"""Exception hierarchy surfaced by the viewer session.

Decode failures are deliberately absent: malformed device payloads are noise,
not faults, and are dropped without raising.
"""

from __future__ import annotations


class ViewerError(Exception):
    """Base exception for all viewer errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PresignError(ViewerError):
    """The presigning authority did not return a usable connection URL."""


class TransportError(ViewerError):
    """The transport reported an error or never became connected."""


class SubscriptionAckError(ViewerError):
    """The broker rejected (or the transport refused) a subscribe/unsubscribe."""


class InvalidTransitionError(ViewerError):
    """The requested command is not valid from the session's current state."""
