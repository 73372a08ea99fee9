"""MQTT-over-WebSocket transport adapter.

The adapter owns one ``paho.mqtt.client.Client`` and translates its callbacks
(which run on paho's network thread) into immutable event objects handed to
an *emit* callable.  It never touches session state itself.  Every event is
stamped with the handle generation so the session can discard events from a
handle it has already replaced.

Connection timeout and the fixed reconnect interval are paho's own; this
module adds no retry logic beyond re-issuing confirmed subscriptions after
paho reconnects with a clean session.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from .errors import TransportError

if TYPE_CHECKING:
    from .config import MQTTConfig
    from .presign import PresignedUrl

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransportOpened:
    generation: int


@dataclass(frozen=True, slots=True)
class TransportClosed:
    """The link dropped; paho will reconnect on its own schedule."""

    generation: int
    reason: str = ""


@dataclass(frozen=True, slots=True)
class TransportFailed:
    generation: int
    message: str


@dataclass(frozen=True, slots=True)
class MessageReceived:
    generation: int
    topic: str
    payload: bytes
    received_at: float


@dataclass(frozen=True, slots=True)
class AckReceived:
    generation: int
    kind: str  # "subscribe" | "unsubscribe"
    mid: int
    ok: bool
    detail: str = ""


TransportEvent = TransportOpened | TransportClosed | TransportFailed | MessageReceived | AckReceived
EventSink = Callable[[TransportEvent], None]


# ---------------------------------------------------------------------------
# Transport interface
# ---------------------------------------------------------------------------


class Transport(ABC):
    """One streaming connection handle, exclusively owned by a session."""

    def __init__(self, generation: int, emit: EventSink) -> None:
        self._generation = generation
        self._emit = emit
        self._closed = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_closed(self) -> bool:
        return self._closed

    def emit(self, event: TransportEvent) -> None:
        if self._closed:
            return
        self._emit(event)

    def detach(self) -> None:
        """Stop forwarding events immediately; ``close()`` may run later on a worker thread."""
        self._closed = True

    @abstractmethod
    def open(self) -> None:
        """Start connecting; completion is reported through a ``TransportOpened`` event."""

    @abstractmethod
    def subscribe(self, topic: str, qos: int = 0) -> int:
        """Request a subscription and return its message id.

        Raises ``TransportError`` if the request cannot be sent at all.
        """

    @abstractmethod
    def unsubscribe(self, topic: str) -> int:
        """Request removal of a subscription and return its message id."""

    @abstractmethod
    def close(self) -> None:
        """Detach every callback and tear the connection down.  Idempotent."""


TransportFactory = Callable[["PresignedUrl", "MQTTConfig", EventSink, int], Transport]


# ---------------------------------------------------------------------------
# paho-mqtt implementation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BrokerEndpoint:
    host: str
    port: int
    path: str
    tls: bool


def broker_endpoint(url: str) -> BrokerEndpoint:
    """Split a presigned ``ws(s)://host[:port]/path?query`` URL for paho."""
    parts = urlsplit(url)
    if parts.scheme not in ("ws", "wss") or not parts.hostname:
        raise TransportError(f"Not a WebSocket URL: {parts.scheme}://{parts.netloc}")
    tls = parts.scheme == "wss"
    path = parts.path or "/mqtt"
    if parts.query:
        path = f"{path}?{parts.query}"
    return BrokerEndpoint(
        host=parts.hostname,
        port=parts.port or (443 if tls else 80),
        path=path,
        tls=tls,
    )


def _reason_failed(reason_code: Any) -> bool:
    return bool(getattr(reason_code, "is_failure", False))


class MqttTransport(Transport):
    """paho-mqtt client speaking MQTT 3.1.1 over (secure) WebSockets."""

    def __init__(
        self,
        presigned: PresignedUrl,
        config: MQTTConfig,
        emit: EventSink,
        generation: int,
    ) -> None:
        super().__init__(generation, emit)
        self._endpoint = broker_endpoint(presigned.url)
        self._client_id = presigned.client_id
        self._config = config
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._pending_subs: dict[int, tuple[str, int]] = {}
        self._pending_unsubs: dict[int, str] = {}
        # Topics the broker confirmed; re-issued after paho reconnects.
        self._active_topics: dict[str, int] = {}

    def open(self) -> None:
        if self._client is not None or self._closed:
            raise TransportError("transport already opened")
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
            transport="websockets",
        )
        client.ws_set_options(path=self._endpoint.path)
        if self._endpoint.tls:
            client.tls_set()
        client.connect_timeout = self._config.connect_timeout_s
        reconnect_s = max(1, round(self._config.reconnect_period_s))
        client.reconnect_delay_set(min_delay=reconnect_s, max_delay=reconnect_s)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        client.on_unsubscribe = self._on_unsubscribe

        LOGGER.info(
            "Opening MQTT connection to %s:%d as %s",
            self._endpoint.host,
            self._endpoint.port,
            self._client_id,
        )
        self._client = client
        client.connect_async(self._endpoint.host, self._endpoint.port, self._config.keepalive_s)
        client.loop_start()

    def subscribe(self, topic: str, qos: int = 0) -> int:
        with self._lock:
            client = self._require_client()
            result, mid = client.subscribe(topic, qos)
            if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
                raise TransportError(f"subscribe rejected: {mqtt.error_string(result)}")
            self._pending_subs[mid] = (topic, qos)
            return mid

    def unsubscribe(self, topic: str) -> int:
        with self._lock:
            client = self._require_client()
            result, mid = client.unsubscribe(topic)
            if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
                raise TransportError(f"unsubscribe rejected: {mqtt.error_string(result)}")
            self._pending_unsubs[mid] = topic
            return mid

    def close(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
            self._closed = True
            self._pending_subs.clear()
            self._pending_unsubs.clear()
            self._active_topics.clear()
        if client is None:
            return
        for name in (
            "on_connect",
            "on_connect_fail",
            "on_disconnect",
            "on_message",
            "on_subscribe",
            "on_unsubscribe",
        ):
            setattr(client, name, None)
        try:
            client.disconnect()
        except Exception:
            LOGGER.warning("Error sending MQTT disconnect", exc_info=True)
        try:
            client.loop_stop()
        except Exception:
            LOGGER.warning("Error stopping MQTT network loop", exc_info=True)
        LOGGER.info("MQTT transport generation %d closed", self._generation)

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise TransportError("transport is not open")
        return self._client

    # -- paho callbacks (network thread) --------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if _reason_failed(reason_code):
            LOGGER.error("MQTT connection refused: %s", reason_code)
            self.emit(TransportFailed(self._generation, f"connection refused: {reason_code}"))
            return
        with self._lock:
            resubscribe = dict(self._active_topics)
        for topic, qos in resubscribe.items():
            result, mid = client.subscribe(topic, qos)
            if result == mqtt.MQTT_ERR_SUCCESS and mid is not None:
                with self._lock:
                    self._pending_subs[mid] = (topic, qos)
                LOGGER.info("Re-subscribing to %s after reconnect", topic)
        self.emit(TransportOpened(self._generation))

    def _on_connect_fail(self, client, userdata) -> None:
        LOGGER.warning("MQTT connection attempt to %s failed", self._endpoint.host)
        self.emit(TransportFailed(self._generation, "connection failed"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        LOGGER.warning("MQTT link dropped: %s", reason_code)
        self.emit(TransportClosed(self._generation, str(reason_code)))

    def _on_message(self, client, userdata, message) -> None:
        self.emit(
            MessageReceived(
                generation=self._generation,
                topic=message.topic,
                payload=bytes(message.payload),
                received_at=time.time(),
            )
        )

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        ok = not any(_reason_failed(rc) for rc in reason_code_list)
        with self._lock:
            pending = self._pending_subs.pop(mid, None)
            if ok and pending is not None:
                topic, qos = pending
                self._active_topics[topic] = qos
        detail = ", ".join(str(rc) for rc in reason_code_list)
        self.emit(AckReceived(self._generation, "subscribe", mid, ok, detail))

    def _on_unsubscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        # MQTT 3.1.1 UNSUBACK carries no reason codes; an empty list is success.
        ok = not any(_reason_failed(rc) for rc in reason_code_list)
        with self._lock:
            topic = self._pending_unsubs.pop(mid, None)
            if ok and topic is not None:
                self._active_topics.pop(topic, None)
        detail = ", ".join(str(rc) for rc in reason_code_list)
        self.emit(AckReceived(self._generation, "unsubscribe", mid, ok, detail))
