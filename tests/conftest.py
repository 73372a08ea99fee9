"""Shared test helpers for the iotview test suite."""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager
from typing import Any

os.environ.setdefault("IOTVIEW_DISABLE_AUTO_APP", "1")

from iotview.errors import PresignError, TransportError  # noqa: E402
from iotview.presign import PresignedUrl  # noqa: E402
from iotview.session import Session  # noqa: E402
from iotview.transport import (  # noqa: E402
    AckReceived,
    MessageReceived,
    Transport,
    TransportClosed,
    TransportFailed,
    TransportOpened,
)

SIGNED_URL = "wss://broker.example.com/mqtt?X-Amz-Signature=deadbeef"


def wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step_s)
    return False


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Async version of :func:`wait_until` that yields to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


# ---------------------------------------------------------------------------
# Fakes injected into the Session
# ---------------------------------------------------------------------------


class FakePresignClient:
    """Returns a fixed signed URL, or raises *error*; optionally waits on *gate*."""

    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.error = error
        self.gate = gate
        self.calls: list[str] = []

    async def presign(self, client_id: str) -> PresignedUrl:
        self.calls.append(client_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return PresignedUrl(url=SIGNED_URL, client_id=client_id)


class FakeTransport(Transport):
    """In-memory transport; acks and the open event are emitted synchronously."""

    def __init__(self, factory: FakeTransportFactory, emit, generation: int) -> None:
        super().__init__(generation, emit)
        self.factory = factory
        self.opened = False
        self.close_calls = 0
        self.subscribed: list[tuple[str, int]] = []
        self.unsubscribed: list[str] = []
        self._next_mid = 0

    def open(self) -> None:
        if self.factory.fail_open:
            raise TransportError("socket refused")
        self.opened = True
        if self.factory.auto_open:
            self.emit(TransportOpened(self.generation))

    def _mid(self) -> int:
        self._next_mid += 1
        return self._next_mid

    def subscribe(self, topic: str, qos: int = 0) -> int:
        if self.factory.fail_send:
            raise TransportError("subscribe rejected: not connected")
        mid = self._mid()
        self.subscribed.append((topic, qos))
        if self.factory.auto_ack:
            self.emit(AckReceived(self.generation, "subscribe", mid, self.factory.ack_ok, "0x80"))
        return mid

    def unsubscribe(self, topic: str) -> int:
        mid = self._mid()
        self.unsubscribed.append(topic)
        if self.factory.auto_ack:
            self.emit(AckReceived(self.generation, "unsubscribe", mid, True))
        return mid

    def close(self) -> None:
        self._closed = True
        self.close_calls += 1

    # -- helpers that imitate broker traffic, bypassing the closed check ------

    def deliver(self, payload: Any, topic: str = "devices/test/telemetry") -> None:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._emit(MessageReceived(self.generation, topic, payload, time.time()))

    def drop(self, reason: str = "keepalive timeout") -> None:
        self._emit(TransportClosed(self.generation, reason))

    def reopen(self) -> None:
        self._emit(TransportOpened(self.generation))

    def fail(self, message: str = "connection refused") -> None:
        self._emit(TransportFailed(self.generation, message))


class FakeTransportFactory:
    def __init__(
        self,
        *,
        auto_open: bool = True,
        auto_ack: bool = True,
        ack_ok: bool = True,
        fail_open: bool = False,
        fail_send: bool = False,
    ) -> None:
        self.auto_open = auto_open
        self.auto_ack = auto_ack
        self.ack_ok = ack_ok
        self.fail_open = fail_open
        self.fail_send = fail_send
        self.created: list[FakeTransport] = []
        self.presigned: list[PresignedUrl] = []

    def __call__(self, presigned, config, emit, generation) -> FakeTransport:
        self.presigned.append(presigned)
        transport = FakeTransport(self, emit, generation)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


def make_session(
    *,
    presign_error: PresignError | None = None,
    presign_gate: asyncio.Event | None = None,
    **factory_kwargs: Any,
) -> tuple[Session, FakeTransportFactory, FakePresignClient]:
    factory = FakeTransportFactory(**factory_kwargs)
    presign = FakePresignClient(error=presign_error, gate=presign_gate)
    session = Session(presign, transport_factory=factory)
    return session, factory, presign


@asynccontextmanager
async def dispatching(session: Session):
    """Run the session's event consumer for the duration of the block."""
    task = asyncio.create_task(session.run(), name="test-dispatch")
    await asyncio.sleep(0)
    try:
        yield task
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


async def drain(session: Session) -> None:
    """Wait until every queued transport event has been dispatched."""
    # Events are posted with call_soon_threadsafe; let those callbacks run first.
    for _ in range(3):
        await asyncio.sleep(0)
    await session._events.join()
