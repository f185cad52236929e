"""Message-bus plumbing shared by the command bridge and telemetry publisher.

Each loop owns one MQTT connection, recreated on every reconnect. A
connection is wrapped in an ``MqttChannel`` that either publishes to the
vehicle's uplink topic or consumes its downlink topic with manual
acknowledgement. ``ReconnectLoop`` drives a channel through the
Disconnected, Connecting, Connected and BackingOff states and never gives
up on transport failures.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import paho.mqtt.client as mqtt

from .errors import TransportError

LOGGER = logging.getLogger(__name__)

UPLINK_SUFFIX = "uplink"
DOWNLINK_SUFFIX = "downlink"

ChannelT = TypeVar("ChannelT")


@dataclass(frozen=True)
class BusSettings:
    host: str
    user: str
    password: str
    machine_id: str
    port: int = 1883
    keepalive_s: int = 60

    @property
    def uplink_topic(self) -> str:
        return f"{self.machine_id}/{UPLINK_SUFFIX}"

    @property
    def downlink_topic(self) -> str:
        return f"{self.machine_id}/{DOWNLINK_SUFFIX}"


@dataclass(frozen=True)
class InboundMessage:
    body: bytes
    mid: int
    qos: int


class MonitoringSwitch:
    """Process-wide "telemetry publishing enabled" flag, on by default.

    Written by the command bridge and read by the telemetry publisher; the
    underlying Event makes both sides race-free.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._event = threading.Event()
        self.set_enabled(enabled)

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self._event.set()
        else:
            self._event.clear()

    def is_enabled(self) -> bool:
        return self._event.is_set()

    def wait_enabled(self, timeout: float) -> bool:
        return self._event.wait(timeout)


class FixedBackoff:
    """Constant delay between reconnect attempts."""

    def __init__(self, delay_s: float = 3.0) -> None:
        self.delay_s = delay_s

    def delay(self, attempt: int) -> float:
        del attempt
        return self.delay_s


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKING_OFF = "backing_off"


class MqttChannel:
    """One MQTT connection bound to a single topic."""

    def __init__(
        self,
        settings: BusSettings,
        topic: str,
        *,
        consume: bool = False,
        client_id: str = "",
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._settings = settings
        self._topic = topic
        self._consume = consume
        self._client_id = client_id
        self._client_factory = client_factory or self._default_client
        self._client: Any = None
        self._inbox: "queue.Queue[InboundMessage]" = queue.Queue()
        self._lost = threading.Event()

    @property
    def topic(self) -> str:
        return self._topic

    def _default_client(self) -> mqtt.Client:
        return mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            manual_ack=True,
        )

    def connect(self) -> "MqttChannel":
        client = self._client_factory()
        client.username_pw_set(self._settings.user, self._settings.password)
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect
        try:
            client.connect(self._settings.host, self._settings.port, self._settings.keepalive_s)
        except OSError as exc:
            raise TransportError(
                f"cannot reach broker {self._settings.host}:{self._settings.port}: {exc}"
            ) from exc
        client.loop_start()
        self._client = client
        self._lost.clear()
        if self._consume:
            result, _mid = client.subscribe(self._topic, qos=1)
            if result != mqtt.MQTT_ERR_SUCCESS:
                self.close()
                raise TransportError(f"subscribe to {self._topic} failed: {mqtt.error_string(result)}")
        LOGGER.info("Connected to %s:%d on %s", self._settings.host, self._settings.port, self._topic)
        return self

    def publish(self, body: str) -> None:
        """Fire-and-forget publish; raises TransportError when the client refuses it."""
        if self._client is None or self._lost.is_set():
            raise TransportError(f"not connected to {self._topic}")
        info = self._client.publish(self._topic, body, qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"publish to {self._topic} failed: {mqtt.error_string(info.rc)}")

    def receive(self, timeout: float) -> InboundMessage | None:
        """Return the next inbound message, or None when none arrived within timeout."""
        if self._client is None or self._lost.is_set():
            raise TransportError(f"connection for {self._topic} lost")
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def ack(self, message: InboundMessage) -> None:
        if self._client is None:
            raise TransportError(f"not connected to {self._topic}")
        self._client.ack(message.mid, message.qos)

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.loop_stop()
        client.disconnect()

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:
        del client, userdata
        self._inbox.put(InboundMessage(bytes(message.payload), message.mid, message.qos))

    def _on_disconnect(
        self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None
    ) -> None:
        del client, userdata, flags, properties
        LOGGER.warning("Disconnected from %s: %s", self._topic, reason_code)
        self._lost.set()


class ReconnectLoop(Generic[ChannelT]):
    """Connect, run a session, and back off after transport failures until stopped.

    ``session`` runs while connected and returns only when the stop event is
    set; a ``TransportError`` or ``OSError`` from either ``connect`` or
    ``session`` moves the loop to BACKING_OFF and then reconnects.
    """

    def __init__(
        self,
        name: str,
        connect: Callable[[], ChannelT],
        session: Callable[[ChannelT], None],
        *,
        stop_event: threading.Event,
        backoff: FixedBackoff | None = None,
        wait: Callable[[float], Any] | None = None,
        close: Callable[[ChannelT], None] | None = None,
    ) -> None:
        self._name = name
        self._connect = connect
        self._session = session
        self._stop_event = stop_event
        self._backoff = backoff or FixedBackoff()
        self._wait = wait or stop_event.wait
        self._close = close or _close_channel
        self._state = ConnectionState.DISCONNECTED
        self.failures = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    def run(self) -> None:
        attempt = 0
        while not self._stop_event.is_set():
            self._state = ConnectionState.CONNECTING
            channel: ChannelT | None = None
            try:
                channel = self._connect()
                self._state = ConnectionState.CONNECTED
                attempt = 0
                self._session(channel)
            except (TransportError, OSError) as exc:
                self.failures += 1
                LOGGER.error("%s channel exception: %s", self._name, exc)
            finally:
                if channel is not None:
                    self._close(channel)
            self._state = ConnectionState.DISCONNECTED
            if self._stop_event.is_set():
                break
            self._state = ConnectionState.BACKING_OFF
            delay = self._backoff.delay(attempt)
            attempt += 1
            LOGGER.info("%s restarting in %.1fs", self._name, delay)
            self._wait(delay)
        self._state = ConnectionState.DISCONNECTED


def _close_channel(channel: Any) -> None:
    try:
        channel.close()
    except (TransportError, OSError) as exc:
        LOGGER.warning("Error closing channel: %s", exc)
