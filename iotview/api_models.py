"""Pydantic request/response models for the viewer HTTP API.

Kept apart from ``routes/`` so routing logic stays distinct from data contracts.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from .constants import GAIN_MAX, GAIN_MIN
from .ws_models import ChartPayload, LoggedMessage, SessionStatus

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ConnectRequest(BaseModel):
    client_id: str | None = Field(default=None, min_length=1, max_length=128)


class StartRequest(BaseModel):
    topic: str | None = Field(default=None, min_length=1, max_length=256)


class ViewRequest(BaseModel):
    mode: str | None = Field(default=None, pattern="^(absolute|relative)$")
    # Tighter per-deployment bounds are enforced by the session itself.
    gain: int | None = Field(default=None, ge=GAIN_MIN, le=GAIN_MAX)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    session_state: str
    transport_online: bool
    ws_clients: int


class SessionResponse(SessionStatus):
    pass


class ChartResponse(ChartPayload):
    pass


class MessagesResponse(BaseModel):
    messages: list[LoggedMessage]
    total: int
