"""Shared route helpers used across multiple route modules."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from ..errors import (
    InvalidTransitionError,
    PresignError,
    SubscriptionAckError,
    TransportError,
    ViewerError,
)

_STATUS_BY_ERROR: tuple[tuple[type[ViewerError], int], ...] = (
    (InvalidTransitionError, 409),
    (PresignError, 502),
    (SubscriptionAckError, 502),
    (TransportError, 503),
)


def http_status_for(exc: ViewerError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


@contextmanager
def session_errors_as_http() -> Iterator[None]:
    """Translate session failures into ``HTTPException`` with a useful status."""
    try:
        yield
    except ViewerError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
