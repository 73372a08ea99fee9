"""Push live viewer frames to WebSocket clients, sending only what changed.

Each socket keeps a cursor of what it has already been shown: the last
session status, the chart's frame key and the message log position.  On
every tick a socket gets a ``delta`` frame with just the sections that moved
since then, or nothing at all when the viewer is idle.  A new socket, or one
that asks for a different message-log length, starts over with a full
``snapshot`` frame.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from fastapi import WebSocket

from .ws_models import SCHEMA_VERSION

LOGGER = logging.getLogger(__name__)

DEFAULT_MESSAGE_LIMIT = 50
"""Message-log entries per frame when the client does not ask for a length."""

SEND_TIMEOUT_S: float = 0.5
"""A socket that cannot take a frame within this time is dropped."""

SEND_FAILURE_LOG_INTERVAL_S: float = 10.0

MAX_TICK_BACKOFF_S: float = 5.0

ERROR_FRAME: str = json.dumps({"error": "payload_build_failed"}, separators=(",", ":"))


class FrameSource(Protocol):
    """What the hub reads from the running viewer on each tick."""

    def status(self) -> dict[str, Any]: ...

    def chart_key(self) -> Hashable: ...

    def chart_payload(self) -> dict[str, Any]: ...

    def log_position(self) -> tuple[int, int]:
        """``(epoch, last_seq)`` of the message log."""
        ...

    def messages_since(self, seq: int, limit: int) -> list[dict[str, Any]]: ...


@dataclass(frozen=True, slots=True)
class TickState:
    """Source state read once per tick and shared by every socket."""

    status: dict[str, Any]
    chart_key: Hashable
    log_epoch: int
    log_seq: int

    @classmethod
    def read(cls, source: FrameSource) -> TickState:
        epoch, seq = source.log_position()
        return cls(
            status=source.status(),
            chart_key=source.chart_key(),
            log_epoch=epoch,
            log_seq=seq,
        )


@dataclass(slots=True)
class ViewerCursor:
    status: dict[str, Any] | None = None
    chart_key: Hashable | None = None
    log_epoch: int | None = None
    log_seq: int = 0

    @property
    def fresh(self) -> bool:
        return self.status is None

    def advance(self, tick: TickState) -> None:
        self.status = tick.status
        self.chart_key = tick.chart_key
        self.log_epoch = tick.log_epoch
        self.log_seq = tick.log_seq


@dataclass(frozen=True, slots=True)
class FramePlan:
    """Sections one frame carries; equal plans within a tick share one encoding."""

    snapshot: bool
    send_status: bool
    send_chart: bool
    messages_after: int | None
    messages_reset: bool
    limit: int


def plan_frame(cursor: ViewerCursor, tick: TickState, limit: int) -> FramePlan | None:
    """Decide what *cursor* has not seen yet; ``None`` when there is nothing new."""
    if cursor.fresh:
        return FramePlan(
            snapshot=True,
            send_status=True,
            send_chart=True,
            messages_after=0,
            messages_reset=True,
            limit=limit,
        )
    send_status = cursor.status != tick.status
    send_chart = cursor.chart_key != tick.chart_key
    reset = cursor.log_epoch != tick.log_epoch
    messages_after: int | None = None
    if reset:
        messages_after = 0
    elif limit > 0 and tick.log_seq > cursor.log_seq:
        messages_after = cursor.log_seq
    if not (send_status or send_chart or messages_after is not None):
        return None
    return FramePlan(
        snapshot=False,
        send_status=send_status,
        send_chart=send_chart,
        messages_after=messages_after,
        messages_reset=reset,
        limit=limit,
    )


def build_frame(
    source: FrameSource,
    tick: TickState,
    plan: FramePlan,
    server_time: str,
) -> dict[str, Any]:
    frame: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "server_time": server_time,
        "kind": "snapshot" if plan.snapshot else "delta",
        "log_seq": tick.log_seq,
    }
    if plan.send_status:
        frame["session"] = tick.status
    if plan.send_chart:
        frame["chart"] = source.chart_payload()
    if plan.messages_after is not None:
        frame["messages"] = source.messages_since(plan.messages_after, plan.limit)
        frame["messages_reset"] = plan.messages_reset
    return frame


@dataclass(slots=True)
class WSConnection:
    websocket: WebSocket
    message_limit: int | None = None
    cursor: ViewerCursor = field(default_factory=ViewerCursor)

    @property
    def limit(self) -> int:
        return DEFAULT_MESSAGE_LIMIT if self.message_limit is None else self.message_limit


class WebSocketHub:
    def __init__(self, send_timeout_s: float = SEND_TIMEOUT_S) -> None:
        self._connections: dict[int, WSConnection] = {}
        self._lock = asyncio.Lock()
        self._send_timeout_s = send_timeout_s
        self._last_failure_log = float("-inf")

    async def add(self, websocket: WebSocket, message_limit: int | None = None) -> None:
        async with self._lock:
            self._connections[id(websocket)] = WSConnection(
                websocket=websocket,
                message_limit=message_limit,
            )

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(id(websocket), None)

    async def set_message_limit(self, websocket: WebSocket, limit: int | None) -> None:
        """Change how many log entries the socket wants; it then gets a new snapshot."""
        async with self._lock:
            conn = self._connections.get(id(websocket))
            if conn is not None and conn.message_limit != limit:
                conn.message_limit = limit
                conn.cursor = ViewerCursor()

    async def connections(self) -> list[WSConnection]:
        async with self._lock:
            return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def _encode(
        self,
        source: FrameSource,
        tick: TickState,
        plan: FramePlan,
        server_time: str,
    ) -> str:
        try:
            return json.dumps(
                build_frame(source, tick, plan, server_time),
                separators=(",", ":"),
                allow_nan=False,
            )
        except Exception:
            LOGGER.error(
                "Building %s frame failed; sending error frame",
                "snapshot" if plan.snapshot else "delta",
                exc_info=True,
            )
            return ERROR_FRAME

    async def _send(self, websocket: WebSocket, text: str) -> bool:
        try:
            await asyncio.wait_for(websocket.send_text(text), timeout=self._send_timeout_s)
        except Exception:
            now = time.monotonic()
            if now - self._last_failure_log >= SEND_FAILURE_LOG_INTERVAL_S:
                self._last_failure_log = now
                LOGGER.warning("Dropping WebSocket viewer after failed send", exc_info=True)
            return False
        return True

    async def publish(self, source: FrameSource) -> int:
        """Send every socket what it has not seen yet; returns the frames delivered.

        All frames of one tick are built from the same :class:`TickState` before
        any send is awaited.  A cursor only advances after its frame went out,
        so a socket that got the error frame is offered the same data again.
        """
        conns = await self.connections()
        if not conns:
            return 0
        tick = TickState.read(source)
        server_time = datetime.now(UTC).isoformat()
        encoded: dict[FramePlan, str] = {}
        outgoing: list[tuple[WSConnection, ViewerCursor, str]] = []
        for conn in conns:
            plan = plan_frame(conn.cursor, tick, conn.limit)
            if plan is None:
                continue
            if plan not in encoded:
                encoded[plan] = self._encode(source, tick, plan, server_time)
            outgoing.append((conn, conn.cursor, encoded[plan]))
        if not outgoing:
            return 0

        results = await asyncio.gather(
            *(self._send(conn.websocket, text) for conn, _, text in outgoing)
        )
        delivered = 0
        for (conn, cursor, text), ok in zip(outgoing, results, strict=True):
            if not ok:
                await self.remove(conn.websocket)
            elif text != ERROR_FRAME:
                cursor.advance(tick)
                delivered += 1
        return delivered

    async def run(self, hz: int, source: FrameSource) -> None:
        """Publish at *hz* until cancelled, backing off while ticks keep failing."""
        interval = 1.0 / max(1, hz)
        loop = asyncio.get_running_loop()
        failures = 0
        while True:
            started = loop.time()
            try:
                await self.publish(source)
                failures = 0
            except Exception:
                failures += 1
                LOGGER.warning(
                    "Live frame tick failed (%d in a row)",
                    failures,
                    exc_info=failures == 1,
                )
            delay = min(interval * 2**failures, MAX_TICK_BACKOFF_S) if failures else interval
            await asyncio.sleep(max(0.0, delay - (loop.time() - started)))
