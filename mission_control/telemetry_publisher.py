"""Outbound telemetry loop.

Samples the vehicle once per period and publishes a ``monitor`` message on
the uplink topic while monitoring is enabled. Publishing is fire-and-forget;
a failed publish surfaces as a TransportError and the reconnect loop takes
over. Disabling monitoring pauses publishing but keeps the connection.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable

from .bus import BusSettings, FixedBackoff, MonitoringSwitch, MqttChannel, ReconnectLoop
from .geo_math import rad_to_deg
from .vehicle import TelemetrySnapshot, VehicleFacade

LOGGER = logging.getLogger(__name__)

START_MARKER = "== messageStart =="
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_monitor_message(snapshot: TelemetrySnapshot, machine_id: str) -> dict[str, Any]:
    """Encode a snapshot as the outbound ``monitor`` message."""
    position = snapshot.position
    rc = snapshot.rc
    velocity = snapshot.velocity
    attitude = snapshot.attitude
    return {
        "message_type": "monitor",
        "basic_data": {
            "flight_status": int(snapshot.status.flight),
            "position_latitude": rad_to_deg(position.latitude),
            "position_longitude": rad_to_deg(position.longitude),
            "position_altitude": position.altitude,
            "position_height": position.height,
            "gps_signal": position.health,
            "rc_roll": rc.roll,
            "rc_pitch": rc.pitch,
            "rc_yaw": rc.yaw,
            "rc_throttle": rc.throttle,
            "velocity_vx": velocity.x,
            "velocity_vy": velocity.y,
            "velocity_vz": velocity.z,
            "quaternion_w": attitude.w,
            "quaternion_x": attitude.x,
            "quaternion_y": attitude.y,
            "quaternion_z": attitude.z,
        },
        "machine_id": machine_id,
        "timestamp": time.strftime(TIMESTAMP_FORMAT, time.localtime(snapshot.timestamp)),
    }


class TelemetryPublisher:
    """Publishes vehicle telemetry on the uplink topic until the stop event is set.

    Attributes:
        published: Number of monitor messages sent since start-up.
        loop: Reconnect loop owning the uplink channel.
    """

    def __init__(
        self,
        settings: BusSettings,
        vehicle: VehicleFacade,
        switch: MonitoringSwitch,
        *,
        stop_event: threading.Event,
        period_s: float = 1.0,
        backoff: FixedBackoff | None = None,
        wait: Callable[[float], Any] | None = None,
        channel_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._vehicle = vehicle
        self._switch = switch
        self._stop_event = stop_event
        self._period_s = period_s
        self._channel_factory = channel_factory or self._default_channel
        self.published = 0
        self.loop = ReconnectLoop(
            "Telemetry send",
            lambda: self._channel_factory().connect(),
            self._publish_forever,
            stop_event=stop_event,
            backoff=backoff,
            wait=wait,
        )

    def _default_channel(self) -> MqttChannel:
        return MqttChannel(
            self._settings,
            self._settings.uplink_topic,
            client_id=f"{self._settings.machine_id}-uplink",
        )

    def run(self) -> None:
        """Publish until stopped, reconnecting after transport failures."""
        self.loop.run()

    def publish_once(self, channel: Any) -> bool:
        """Publish one sample if monitoring is enabled.

        Args:
            channel: Connected uplink channel.

        Returns:
            True when a monitor message was published.

        Raises:
            TransportError: The publish failed and the channel must be replaced.
        """
        if not self._switch.is_enabled():
            return False
        snapshot = self._vehicle.get_telemetry_snapshot()
        channel.publish(json.dumps(build_monitor_message(snapshot, self._settings.machine_id)))
        self.published += 1
        position = snapshot.position
        LOGGER.debug(
            "data sent: %f,%f,%f",
            rad_to_deg(position.longitude),
            rad_to_deg(position.latitude),
            position.altitude,
        )
        return True

    def _publish_forever(self, channel: Any) -> None:
        channel.publish(START_MARKER)
        while not self._stop_event.is_set():
            if not self.publish_once(channel):
                # Idle without dropping the connection until monitoring resumes.
                self._switch.wait_enabled(self._period_s)
                continue
            self._stop_event.wait(self._period_s)
