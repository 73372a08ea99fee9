"""Pydantic models for the live WebSocket payload contract.

These models define the versioned schema for server→UI real-time frames.
The ``schema_version`` field lets the viewer UI and this server evolve
independently while catching drift via the exported JSON Schema artifact.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

# Bump this when the payload shape changes in a backwards-incompatible way.
SCHEMA_VERSION: str = "2"


class SessionStats(BaseModel):
    messages_received: int = 0
    messages_dropped: int = 0
    messages_undecodable: int = 0
    messages_ingested: int = 0
    stale_events: int = 0


class SessionStatus(BaseModel):
    """Connection and view state shown next to the chart."""

    state: str
    online: bool = False
    topic: str | None = None
    subscribed: bool = False
    paused: bool = False
    client_id: str | None = None
    last_error: str | None = None
    mode: str
    gain: int
    gain_range: list[int]
    labels: list[str] = []
    points: list[int] = []
    stats: SessionStats = SessionStats()


class SeriesMeta(BaseModel):
    label: str
    title: str
    points: int
    y_domain: list[float]


class ChartRow(BaseModel):
    """One position on the shared index; a missing sample is ``null``."""

    model_config = ConfigDict(extra="forbid")

    idx: int
    values: dict[str, float | None]


class ChartPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    length: int = 0
    rows: list[ChartRow] = []
    series: list[SeriesMeta] = []


class LoggedMessage(BaseModel):
    seq: int
    topic: str
    payload: str
    received_at: float


class LiveWsPayload(BaseModel):
    """Root model for every WebSocket frame pushed to the UI.

    A ``snapshot`` carries every section and replaces whatever the viewer
    shows.  A ``delta`` carries only the sections that changed since the
    previous frame on the same socket; an absent section is unchanged.
    ``messages`` in a delta are the entries newer than the last ``log_seq``
    the viewer received, unless ``messages_reset`` says the log was cleared.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: str = SCHEMA_VERSION
    server_time: str
    kind: Literal["snapshot", "delta"] = "snapshot"
    log_seq: int = 0
    session: SessionStatus | None = None
    chart: ChartPayload | None = None
    messages: list[LoggedMessage] | None = None
    messages_reset: bool = False
