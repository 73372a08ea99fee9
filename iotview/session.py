"""Viewer session: connection lifecycle, event dispatch and live series state.

Boundary note for maintainers:
- Transport callbacks never mutate session state.  They post events; the
  single ``run()`` consumer applies them one at a time via ``dispatch()``.
- Payload parsing lives in ``decoder.py``, windowing in ``series.py`` and
  display math in ``view_transform.py`` / ``chart_data.py``.

State machine::

    idle -> connecting -> connected <-> subscribed <-> paused
                 \\            \\            \\            \\
                  +----------> error <--------+------------+
    (any) --disconnect()--> idle

A presigned URL that expires while connected is not renewed; the transport
keeps the established connection until it drops, and a later reconnect fails
with a transport error that requires an explicit disconnect/connect.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .chart_data import ChartData, assemble_chart
from .config import MQTTConfig
from .constants import (
    BASELINE_SAMPLES,
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_GAIN,
    DEFAULT_KEEPALIVE_S,
    DEFAULT_RECONNECT_PERIOD_S,
    GAIN_MAX,
    GAIN_MIN,
    MAX_POINTS,
    MAX_SERIES,
    MESSAGE_LOG_SIZE,
)
from .decoder import extract_series, payload_text
from .errors import InvalidTransitionError, PresignError, SubscriptionAckError, TransportError
from .message_log import MessageLog
from .presign import new_client_id
from .series import SeriesRegistry
from .transport import (
    AckReceived,
    MessageReceived,
    MqttTransport,
    Transport,
    TransportClosed,
    TransportEvent,
    TransportFactory,
    TransportFailed,
    TransportOpened,
)
from .view_transform import ViewMode, display_frame, is_effectively_absolute, validate_gain

if TYPE_CHECKING:
    from .config import AppConfig
    from .presign import PresignClient

LOGGER = logging.getLogger(__name__)


class ConnectionState(enum.StrEnum):
    idle = "idle"
    connecting = "connecting"
    connected = "connected"
    subscribed = "subscribed"
    paused = "paused"
    error = "error"


_SUBSCRIBED_STATES = frozenset({ConnectionState.subscribed, ConnectionState.paused})
_SUBSCRIBE_FROM = frozenset({ConnectionState.connected, *_SUBSCRIBED_STATES})


@dataclass(slots=True)
class PendingAck:
    kind: str
    topic: str
    future: asyncio.Future[None]


@dataclass(slots=True)
class SessionStats:
    messages_received: int = 0
    messages_dropped: int = 0
    messages_undecodable: int = 0
    messages_ingested: int = 0
    stale_events: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "messages_received": self.messages_received,
            "messages_dropped": self.messages_dropped,
            "messages_undecodable": self.messages_undecodable,
            "messages_ingested": self.messages_ingested,
            "stale_events": self.stale_events,
        }


class Session:
    """The one live viewer: owns the transport handle, flags, view and series."""

    def __init__(
        self,
        presign_client: PresignClient,
        *,
        transport_factory: TransportFactory = MqttTransport,
        mqtt_config: MQTTConfig | None = None,
        max_series: int = MAX_SERIES,
        max_points: int = MAX_POINTS,
        baseline_samples: int = BASELINE_SAMPLES,
        gain_min: int = GAIN_MIN,
        gain_max: int = GAIN_MAX,
        default_gain: int = DEFAULT_GAIN,
        default_mode: ViewMode | str = ViewMode.relative,
        message_log_size: int = MESSAGE_LOG_SIZE,
        client_id_prefix: str = "web-",
    ) -> None:
        self._presign_client = presign_client
        self._transport_factory = transport_factory
        self._mqtt_config = mqtt_config or MQTTConfig(
            connect_timeout_s=DEFAULT_CONNECT_TIMEOUT_S,
            reconnect_period_s=DEFAULT_RECONNECT_PERIOD_S,
            keepalive_s=DEFAULT_KEEPALIVE_S,
            qos=0,
        )
        self._max_series = max_series
        self._baseline_samples = baseline_samples
        self._gain_min = gain_min
        self._gain_max = gain_max
        self._client_id_prefix = client_id_prefix

        self.state: ConnectionState = ConnectionState.idle
        self.topic: str | None = None
        self.client_id: str | None = None
        self.last_error: str | None = None
        self.online: bool = False
        self.mode: ViewMode = ViewMode(default_mode)
        self.gain: int = validate_gain(default_gain, gain_min, gain_max)
        self.view_generation: int = 0
        self.registry = SeriesRegistry(capacity=max_points)
        self.message_log = MessageLog(maxlen=message_log_size)
        self.stats = SessionStats()

        self._transport: Transport | None = None
        self._generation: int = 0
        self._pending: dict[int, PendingAck] = {}
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._state_changed = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        presign_client: PresignClient,
        transport_factory: TransportFactory = MqttTransport,
    ) -> Session:
        viewer = config.viewer
        return cls(
            presign_client,
            transport_factory=transport_factory,
            mqtt_config=config.mqtt,
            max_series=viewer.max_series,
            max_points=viewer.max_points,
            baseline_samples=viewer.baseline_samples,
            gain_min=viewer.gain_min,
            gain_max=viewer.gain_max,
            default_gain=viewer.default_gain,
            default_mode=viewer.default_mode,
            message_log_size=viewer.message_log_size,
            client_id_prefix=config.presign.client_id_prefix,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        """Generation of the current (or next) transport handle."""
        return self._generation

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def subscribed(self) -> bool:
        return self.state in _SUBSCRIBED_STATES

    @property
    def paused(self) -> bool:
        return self.state is ConnectionState.paused

    def frame_key(self) -> tuple[int, int]:
        """Changes whenever raw data, mode or gain change."""
        return (self.registry.generation, self.view_generation)

    def display_frame(self) -> list[list[float]]:
        return display_frame(
            self.registry.raw_series(),
            self.mode,
            self.gain,
            baseline_samples=self._baseline_samples,
        )

    def chart(self) -> ChartData:
        return assemble_chart(
            self.registry.labels,
            self.display_frame(),
            relative=not is_effectively_absolute(self.mode, self.gain),
            gain=self.gain,
        )

    def status(self) -> dict[str, Any]:
        """Return a JSON-serializable status snapshot with **no side effects**."""
        return {
            "state": self.state.value,
            "online": self.online,
            "topic": self.topic,
            "subscribed": self.subscribed,
            "paused": self.paused,
            "client_id": self.client_id,
            "last_error": self.last_error,
            "mode": self.mode.value,
            "gain": self.gain,
            "gain_range": [self._gain_min, self._gain_max],
            "labels": self.registry.labels,
            "points": self.registry.point_counts(),
            "stats": self.stats.to_dict(),
        }

    # ------------------------------------------------------------------
    # Event intake and dispatch
    # ------------------------------------------------------------------

    def _post_event(self, event: TransportEvent) -> None:
        """Thread-safe entry point handed to the transport as its event sink."""
        loop = self._loop
        if loop is None:
            LOGGER.debug("Dropping %s: no event loop bound", type(event).__name__)
            return
        try:
            loop.call_soon_threadsafe(self._events.put_nowait, event)
        except RuntimeError:
            LOGGER.debug("Dropping %s: event loop closed", type(event).__name__)

    async def run(self) -> None:
        """Consume transport events in arrival order, one at a time."""
        self._loop = asyncio.get_running_loop()
        while True:
            event = await self._events.get()
            try:
                self.dispatch(event)
            except Exception:
                LOGGER.warning("Error dispatching %s", type(event).__name__, exc_info=True)
            finally:
                self._events.task_done()

    def dispatch(self, event: TransportEvent) -> None:
        if self._transport is None or event.generation != self._generation:
            self.stats.stale_events += 1
            LOGGER.debug(
                "Ignoring %s from stale transport generation %d (current %d)",
                type(event).__name__,
                event.generation,
                self._generation,
            )
            return
        if isinstance(event, MessageReceived):
            self._on_message(event)
        elif isinstance(event, AckReceived):
            self._on_ack(event)
        elif isinstance(event, TransportOpened):
            self._on_opened()
        elif isinstance(event, TransportClosed):
            self.online = False
            LOGGER.info("Transport link down (%s); waiting for transport reconnect", event.reason)
        elif isinstance(event, TransportFailed):
            self._fail(event.message)

    def _on_opened(self) -> None:
        self.online = True
        if self.state is ConnectionState.connecting:
            LOGGER.info("Connected as %s", self.client_id)
            self._set_state(ConnectionState.connected)
        elif self.state is ConnectionState.error:
            LOGGER.info("Transport reopened while in error state; disconnect to recover")
        else:
            LOGGER.info("Transport reconnected (state %s)", self.state)

    def _on_message(self, event: MessageReceived) -> None:
        self.stats.messages_received += 1
        # Flag is evaluated at arrival; paused or unsubscribed means dropped.
        if self.state is not ConnectionState.subscribed:
            self.stats.messages_dropped += 1
            return
        text = payload_text(event.payload)
        self.message_log.record(event.topic, text, event.received_at)
        sample = extract_series(text, self._max_series)
        if sample is None:
            self.stats.messages_undecodable += 1
            return
        self.registry.ingest(sample)
        self.stats.messages_ingested += 1

    def _on_ack(self, event: AckReceived) -> None:
        pending = self._pending.get(event.mid)
        if pending is None or pending.kind != event.kind:
            LOGGER.debug("Ignoring unsolicited %s ack mid=%d", event.kind, event.mid)
            return
        del self._pending[event.mid]

        if not event.ok:
            message = f"{event.kind} to {pending.topic!r} rejected"
            if event.detail:
                message = f"{message}: {event.detail}"
            LOGGER.warning("%s", message)
            self.last_error = message
            if not pending.future.done():
                pending.future.set_exception(SubscriptionAckError(message))
            return

        if event.kind == "subscribe":
            if self.state not in _SUBSCRIBE_FROM:
                self._reject_pending(pending, f"session is {self.state} after subscribe ack")
                return
            self.topic = pending.topic
            self._set_state(ConnectionState.subscribed)
            LOGGER.info("Subscribed to %s", pending.topic)
        else:
            if self.state not in _SUBSCRIBED_STATES:
                self._reject_pending(pending, f"session is {self.state} after unsubscribe ack")
                return
            self.topic = None
            self._set_state(ConnectionState.connected)
            LOGGER.info("Unsubscribed from %s", pending.topic)
        if not pending.future.done():
            pending.future.set_result(None)

    @staticmethod
    def _reject_pending(pending: PendingAck, reason: str) -> None:
        if not pending.future.done():
            pending.future.set_exception(InvalidTransitionError(reason))

    def _fail(self, message: str) -> None:
        LOGGER.error("Transport error: %s", message)
        self.last_error = message
        self.online = False
        self._fail_pending(TransportError(message))
        self._set_state(ConnectionState.error)

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for ack in pending.values():
            if not ack.future.done():
                ack.future.set_exception(exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        LOGGER.debug("Session state %s -> %s", self.state, state)
        self.state = state
        waiters, self._state_changed = self._state_changed, asyncio.Event()
        waiters.set()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self, client_id: str | None = None) -> None:
        """Presign a URL and open exactly one transport handle."""
        if self.state is not ConnectionState.idle:
            raise InvalidTransitionError(
                f"connect is only valid from idle (state is {self.state})"
            )
        self._loop = asyncio.get_running_loop()
        generation = self._generation
        self.last_error = None
        self._set_state(ConnectionState.connecting)
        requested_id = client_id or new_client_id(self._client_id_prefix)

        try:
            presigned = await self._presign_client.presign(requested_id)
        except PresignError as exc:
            if generation == self._generation:
                LOGGER.error("Presign failed: %s", exc)
                self.last_error = str(exc)
                self._set_state(ConnectionState.error)
            raise

        if generation != self._generation or self.state is not ConnectionState.connecting:
            LOGGER.info("Session was reset while presigning; discarding the signed URL")
            return

        self._generation += 1
        try:
            transport = self._transport_factory(
                presigned, self._mqtt_config, self._post_event, self._generation
            )
        except (TransportError, OSError, ValueError) as exc:
            self._fail(f"could not create transport: {exc}")
            raise TransportError(str(exc)) from exc
        self._transport = transport
        self.client_id = presigned.client_id
        try:
            transport.open()
        except (TransportError, OSError, ValueError) as exc:
            self._fail(f"could not open transport: {exc}")
            raise TransportError(str(exc)) from exc

    async def wait_for_connection(self, timeout: float | None = None) -> None:
        """Wait until the transport reports open; raise if it errors or is reset."""

        async def _wait() -> None:
            while True:
                if self.state in _SUBSCRIBE_FROM:
                    return
                if self.state is ConnectionState.error:
                    raise TransportError(self.last_error or "transport error")
                if self.state is ConnectionState.idle:
                    raise TransportError("session is not connecting")
                await self._state_changed.wait()

        if timeout is None:
            timeout = self._mqtt_config.connect_timeout_s
        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
        except TimeoutError as exc:
            raise TransportError(f"not connected within {timeout:g}s") from exc

    async def subscribe(self, topic: str) -> None:
        topic = topic.strip()
        if not topic:
            raise ValueError("topic must not be empty")
        if self.state not in _SUBSCRIBE_FROM:
            raise InvalidTransitionError(
                f"subscribe is only valid when connected (state is {self.state})"
            )
        if self.subscribed and self.topic == topic:
            # Already subscribed at the transport level: only unpause.
            self._set_state(ConnectionState.subscribed)
            return
        if self.subscribed:
            await self.unsubscribe()
        await self._request("subscribe", topic)

    async def unsubscribe(self) -> None:
        if not self.subscribed or self.topic is None:
            raise InvalidTransitionError(
                f"unsubscribe is only valid while subscribed (state is {self.state})"
            )
        await self._request("unsubscribe", self.topic)

    async def _request(self, kind: str, topic: str) -> None:
        transport = self._transport
        if transport is None:
            raise InvalidTransitionError("no transport")
        try:
            if kind == "subscribe":
                mid = transport.subscribe(topic, self._mqtt_config.qos)
            else:
                mid = transport.unsubscribe(topic)
        except (TransportError, ValueError) as exc:
            self.last_error = str(exc)
            raise SubscriptionAckError(str(exc)) from exc

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending[mid] = PendingAck(kind=kind, topic=topic, future=future)
        timeout = self._mqtt_config.connect_timeout_s
        try:
            await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as exc:
            self._pending.pop(mid, None)
            self.last_error = f"{kind} to {topic!r} not acknowledged within {timeout:g}s"
            raise SubscriptionAckError(self.last_error) from exc

    def pause(self) -> None:
        """Stop feeding messages to the decoder; the subscription stays."""
        if self.state is ConnectionState.paused:
            return
        if self.state is not ConnectionState.subscribed:
            raise InvalidTransitionError(f"pause is only valid while subscribed ({self.state})")
        self._set_state(ConnectionState.paused)

    def resume(self) -> None:
        if self.state is ConnectionState.subscribed:
            return
        if self.state is not ConnectionState.paused:
            raise InvalidTransitionError(f"resume is only valid while paused ({self.state})")
        self._set_state(ConnectionState.subscribed)

    def toggle_pause(self) -> None:
        if self.paused:
            self.resume()
        else:
            self.pause()

    async def start(self, topic: str) -> None:
        """Connect if idle, wait for the transport, then subscribe to *topic*."""
        if self.state is ConnectionState.idle:
            await self.connect()
        await self.wait_for_connection()
        await self.subscribe(topic)

    def clear(self) -> None:
        """Drop all series, labels and logged messages; the connection is untouched."""
        self.registry.clear()
        self.message_log.clear()

    def set_view(self, mode: ViewMode | str | None = None, gain: int | None = None) -> None:
        new_mode = self.mode if mode is None else ViewMode(mode)
        new_gain = (
            self.gain if gain is None else validate_gain(gain, self._gain_min, self._gain_max)
        )
        if new_mode is self.mode and new_gain == self.gain:
            return
        self.mode = new_mode
        self.gain = new_gain
        self.view_generation += 1

    async def disconnect(self) -> None:
        """Tear down the handle from any state and return to idle with no data."""
        transport, self._transport = self._transport, None
        self._generation += 1
        if transport is not None:
            transport.detach()
        self._fail_pending(TransportError("session disconnected"))
        self.topic = None
        self.client_id = None
        self.last_error = None
        self.online = False
        self.clear()
        self._set_state(ConnectionState.idle)
        if transport is not None:
            LOGGER.info("Disconnecting transport generation %d", transport.generation)
            try:
                await asyncio.to_thread(transport.close)
            except Exception:
                LOGGER.warning("Error closing transport", exc_info=True)
