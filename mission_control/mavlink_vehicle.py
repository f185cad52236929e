"""MAVLink implementation of the VehicleFacade capability set.

Talks to an ArduPilot-compatible autopilot through pymavlink. Every
received message refreshes a telemetry cache or, for command and mission
replies, a reply queue. Snapshots and waiting commands can then share one
connection without losing each other's messages.
Vehicle I/O errors are reported as failed acknowledgements and never
raised into maneuvers.
"""

from __future__ import annotations

import collections
import itertools
import math
import threading
import time
from typing import Any, Callable, Iterable, Sequence

from pymavlink import mavutil

from .geo_math import LocalOffset, deg_to_rad, gps_from_local_offset, quaternion_from_euler, rad_to_deg
from .vehicle import (
    Ack,
    DisplayMode,
    FirmwareVariant,
    FlightStatus,
    GeodeticPosition,
    Quaternion,
    RCChannels,
    SubscriptionHandle,
    TelemetrySnapshot,
    TelemetryTopic,
    Vector3,
    VehicleStatus,
)

_COMMAND_ACK_RETRIES = 1
_MAX_ACK_WAIT_SEC = 5.0
_HEARTBEAT_FRESH_SEC = 3.0
_DRAIN_LIMIT = 200
_RECV_SLICE_SEC = 0.1
_PENDING_LIMIT = 64
_E7 = 1e7

# ArduCopter custom flight modes.
_COPTER_STABILIZE = 0
_COPTER_ALT_HOLD = 2
_COPTER_AUTO = 3
_COPTER_GUIDED = 4
_COPTER_LOITER = 5
_COPTER_RTL = 6
_COPTER_LAND = 9
_COPTER_POSHOLD = 16
_COPTER_SMART_RTL = 21

_DISPLAY_MODE_BY_CUSTOM_MODE = {
    _COPTER_STABILIZE: DisplayMode.MANUAL_CTRL,
    _COPTER_ALT_HOLD: DisplayMode.ATTITUDE,
    _COPTER_AUTO: DisplayMode.NAVI_SDK_CTRL,
    _COPTER_GUIDED: DisplayMode.P_GPS,
    _COPTER_LOITER: DisplayMode.P_GPS,
    _COPTER_RTL: DisplayMode.NAVI_GO_HOME,
    _COPTER_LAND: DisplayMode.AUTO_LANDING,
    _COPTER_POSHOLD: DisplayMode.P_GPS,
    _COPTER_SMART_RTL: DisplayMode.NAVI_GO_HOME,
}

_GPS_HEALTH_BY_FIX = {0: 0, 1: 0, 2: 1, 3: 3, 4: 4, 5: 5, 6: 5}

_TOPIC_MESSAGES = {
    TelemetryTopic.STATUS_FLIGHT: (mavutil.mavlink.MAVLINK_MSG_ID_EXTENDED_SYS_STATE,),
    TelemetryTopic.STATUS_DISPLAYMODE: (mavutil.mavlink.MAVLINK_MSG_ID_EXTENDED_SYS_STATE,),
    TelemetryTopic.QUATERNION: (mavutil.mavlink.MAVLINK_MSG_ID_ATTITUDE_QUATERNION,),
    TelemetryTopic.GPS_FUSED: (mavutil.mavlink.MAVLINK_MSG_ID_GLOBAL_POSITION_INT,),
}

_MISSION_REQUEST_TYPES = frozenset({"MISSION_REQUEST", "MISSION_REQUEST_INT"})
_MISSION_REPLY_TYPES = _MISSION_REQUEST_TYPES | {"MISSION_ACK"}
# Replies kept for whichever caller waits on them, whoever read them off the link.
_QUEUED_TYPES = _MISSION_REPLY_TYPES | {"COMMAND_ACK"}


class MavlinkVehicle:
    """VehicleFacade over a single pymavlink connection.

    Attributes:
        _device: pymavlink connection string or serial device path.
        _connection: Active mavutil connection.
        _connection_lock: Serializes sends and receives on the connection.
        _state_lock: Guards the telemetry cache and the reply queue.
        _pending: Command and mission replies not yet claimed by a waiter.
        _mission_count: Waypoint count announced by the last init_mission.
    """

    def __init__(
        self,
        *,
        device: str,
        baudrate: int = 57600,
        target_system: int = 1,
        target_component: int = 1,
        source_system: int = 245,
        source_component: int = 190,
        takeoff_altitude_m: float = 1.2,
        variant: FirmwareVariant = FirmwareVariant.SUBSCRIPTION,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self._device = device
        self._target_system = int(target_system)
        self._target_component = int(target_component)
        self._takeoff_altitude_m = takeoff_altitude_m
        self._variant = variant
        self._logger = logger or (lambda _: None)
        self._connection = mavutil.mavlink_connection(
            device,
            baud=baudrate,
            source_system=source_system,
            source_component=source_component,
        )
        self._connection_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._package_ids = itertools.count()
        self._mission_count = 0
        self._pending: collections.deque = collections.deque(maxlen=_PENDING_LIMIT)

        self._armed = False
        self._custom_mode: int | None = None
        self._landed_state = mavutil.mavlink.MAV_LANDED_STATE_UNDEFINED
        self._last_heartbeat_monotonic = float("-inf")
        self._position = GeodeticPosition()
        self._velocity = Vector3()
        self._attitude = Quaternion()
        self._rc = RCChannels()
        self._gps_health = 0

    @property
    def target(self) -> tuple[int, int]:
        """tuple[int, int]: MAVLink (system, component) the commands address."""
        return self._target_system, self._target_component

    def close(self) -> None:
        """Close the underlying MAVLink connection."""
        with self._connection_lock:
            self._connection.close()

    def firmware_variant(self) -> FirmwareVariant:
        return self._variant

    def wait_for_heartbeat(self, timeout: float) -> bool:
        """Block until the autopilot sends a HEARTBEAT; return False on timeout."""
        heartbeat = self._wait_for(("HEARTBEAT",), timeout)
        if heartbeat is None:
            self._logger(f"No HEARTBEAT from {self._device} within {timeout:g}s")
            return False
        self._logger(f"Vehicle heartbeat received from {self._device}")
        return True

    def obtain_control_authority(self, timeout: float) -> Ack:
        """Switch the autopilot to GUIDED so it follows offboard commands."""
        return self._set_mode(_COPTER_GUIDED, timeout, "GUIDED")

    def get_telemetry_snapshot(self) -> TelemetrySnapshot:
        """Drain pending messages and return the cached telemetry.

        Returns:
            TelemetrySnapshot with status, fused position, RC sticks, velocity
            and attitude as of the last received messages.
        """
        self._drain()
        with self._state_lock:
            return TelemetrySnapshot(
                status=self._status_locked(),
                position=GeodeticPosition(
                    self._position.latitude,
                    self._position.longitude,
                    self._position.altitude,
                    self._position.height,
                    self._gps_health,
                ),
                rc=self._rc,
                velocity=self._velocity,
                attitude=self._attitude,
                timestamp=time.time(),
            )

    def verify_subscription(self) -> bool:
        """Return True while the autopilot heartbeat is fresh."""
        self._drain()
        with self._state_lock:
            last = self._last_heartbeat_monotonic
        if time.monotonic() - last <= _HEARTBEAT_FRESH_SEC:
            return True
        return self._wait_for(("HEARTBEAT",), _HEARTBEAT_FRESH_SEC) is not None

    def subscribe(
        self, topics: Sequence[TelemetryTopic], frequency_hz: float
    ) -> SubscriptionHandle | None:
        """Request each topic's messages at ``frequency_hz`` via SET_MESSAGE_INTERVAL."""
        interval_us = 1_000_000.0 / max(frequency_hz, 0.1)
        requested: list[int] = []
        for message_id in _message_ids(topics):
            ack = self._command(
                "SET_MESSAGE_INTERVAL",
                mavutil.mavlink.MAV_CMD_SET_MESSAGE_INTERVAL,
                (float(message_id), interval_us, 0.0, 0.0, 0.0, 0.0, 0.0),
                timeout=1.0,
            )
            if not ack.ok:
                self._restore_intervals(requested)
                return None
            requested.append(message_id)
        return SubscriptionHandle(next(self._package_ids), tuple(topics), frequency_hz)

    def unsubscribe(self, handle: SubscriptionHandle) -> Ack:
        return self._restore_intervals(_message_ids(handle.topics))

    def arm_motors(self, timeout: float) -> Ack:
        """Arm the motors with MAV_CMD_COMPONENT_ARM_DISARM.

        Args:
            timeout: Seconds to wait for COMMAND_ACK, capped per attempt.

        Returns:
            Ack that is ok when the autopilot accepted the command.
        """
        return self._command(
            "ARM",
            mavutil.mavlink.MAV_CMD_COMPONENT_ARM_DISARM,
            (1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def disarm_motors(self, timeout: float) -> Ack:
        """Disarm the motors; see arm_motors for the acknowledgement."""
        return self._command(
            "DISARM",
            mavutil.mavlink.MAV_CMD_COMPONENT_ARM_DISARM,
            (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def issue_takeoff(self, timeout: float) -> Ack:
        """Enter GUIDED, arm and climb to the configured takeoff altitude."""
        ack = self._set_mode(_COPTER_GUIDED, timeout, "GUIDED")
        if not ack.ok:
            return ack
        ack = self.arm_motors(timeout)
        if not ack.ok:
            return ack
        return self._command(
            "TAKEOFF",
            mavutil.mavlink.MAV_CMD_NAV_TAKEOFF,
            (0.0, 0.0, 0.0, math.nan, 0.0, 0.0, self._takeoff_altitude_m),
            timeout,
        )

    def issue_land(self, timeout: float) -> Ack:
        """Land at the current position with MAV_CMD_NAV_LAND."""
        return self._command(
            "LAND",
            mavutil.mavlink.MAV_CMD_NAV_LAND,
            (0.0, 0.0, 0.0, math.nan, 0.0, 0.0, 0.0),
            timeout,
        )

    def go_home(self, timeout: float) -> Ack:
        """Return to launch with MAV_CMD_NAV_RETURN_TO_LAUNCH."""
        return self._command(
            "RTL",
            mavutil.mavlink.MAV_CMD_NAV_RETURN_TO_LAUNCH,
            (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def set_position_and_yaw(self, x: float, y: float, z: float, yaw_deg: float) -> None:
        """Command a point x metres north and y metres east of the current position at altitude z."""
        with self._state_lock:
            origin = self._position
        latitude, longitude, _ = gps_from_local_offset(
            LocalOffset(x, y, 0.0), origin.latitude, origin.longitude, 0.0
        )
        type_mask = (
            mavutil.mavlink.POSITION_TARGET_TYPEMASK_VX_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_VY_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_VZ_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AX_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AY_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AZ_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_YAW_RATE_IGNORE
        )
        self._send(
            "position setpoint",
            lambda mav: mav.set_position_target_global_int_send(
                _time_boot_ms(),
                self._target_system,
                self._target_component,
                mavutil.mavlink.MAV_FRAME_GLOBAL_INT,
                type_mask,
                int(round(rad_to_deg(latitude) * _E7)),
                int(round(rad_to_deg(longitude) * _E7)),
                z,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                deg_to_rad(yaw_deg),
                0.0,
            ),
        )

    def set_attitude_and_vertical_position(
        self, roll_deg: float, pitch_deg: float, height: float, yaw_deg: float
    ) -> None:
        """Hold an attitude while steering thrust toward ``height`` above home."""
        with self._state_lock:
            current_height = self._position.height
        # Hover thrust plus a bounded proportional height correction.
        thrust = 0.5 + max(-0.2, min(0.2, (height - current_height) * 0.05))
        q = quaternion_from_euler(deg_to_rad(roll_deg), deg_to_rad(pitch_deg), deg_to_rad(yaw_deg))
        self._send(
            "attitude setpoint",
            lambda mav: mav.set_attitude_target_send(
                _time_boot_ms(),
                self._target_system,
                self._target_component,
                mavutil.mavlink.ATTITUDE_TARGET_TYPEMASK_BODY_ROLL_RATE_IGNORE
                | mavutil.mavlink.ATTITUDE_TARGET_TYPEMASK_BODY_PITCH_RATE_IGNORE
                | mavutil.mavlink.ATTITUDE_TARGET_TYPEMASK_BODY_YAW_RATE_IGNORE,
                list(q),
                0.0,
                0.0,
                0.0,
                thrust,
            ),
        )

    def emergency_brake(self) -> None:
        """Command zero velocity in the body frame."""
        type_mask = (
            mavutil.mavlink.POSITION_TARGET_TYPEMASK_X_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_Y_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_Z_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AX_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AY_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_AZ_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_YAW_IGNORE
            | mavutil.mavlink.POSITION_TARGET_TYPEMASK_YAW_RATE_IGNORE
        )
        self._send(
            "brake",
            lambda mav: mav.set_position_target_local_ned_send(
                _time_boot_ms(),
                self._target_system,
                self._target_component,
                mavutil.mavlink.MAV_FRAME_BODY_OFFSET_NED,
                type_mask,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
            ),
        )

    def init_mission(self, settings: Any, timeout: float) -> Ack:
        """Set the cruise speed and announce the waypoint count.

        The autopilot answers by requesting each waypoint by index, which
        upload_waypoint serves.
        """
        try:
            with self._connection_lock:
                self._discard_pending(lambda message: message.get_type() in _MISSION_REPLY_TYPES)
                self._connection.mav.param_set_send(
                    self._target_system,
                    self._target_component,
                    b"WPNAV_SPEED",
                    float(settings.idle_velocity) * 100.0,
                    mavutil.mavlink.MAV_PARAM_TYPE_REAL32,
                )
                self._connection.mav.mission_count_send(
                    self._target_system,
                    self._target_component,
                    int(settings.waypoint_count),
                )
        except OSError as error:
            self._logger(f"MAVLink mission init failed: {error}")
            return Ack.rejected(-1, str(error))
        self._mission_count = int(settings.waypoint_count)
        return Ack.success(f"{self._mission_count} waypoints announced")

    def upload_waypoint(self, waypoint: Any, timeout: float) -> Ack:
        """Answer the autopilot's request for this waypoint index with MISSION_ITEM_INT."""
        request = self._wait_for(
            _MISSION_REQUEST_TYPES,
            _ack_wait(timeout),
            lambda message: int(getattr(message, "seq", -1)) == waypoint.index,
        )
        if request is None:
            self._logger(f"No MISSION_REQUEST for waypoint {waypoint.index}")
            return Ack.timeout(f"waypoint {waypoint.index} not requested")

        if not self._send(
            f"waypoint {waypoint.index}",
            lambda mav: mav.mission_item_int_send(
                self._target_system,
                self._target_component,
                waypoint.index,
                mavutil.mavlink.MAV_FRAME_GLOBAL_RELATIVE_ALT_INT,
                mavutil.mavlink.MAV_CMD_NAV_WAYPOINT,
                0,
                1,
                0.0,
                0.0,
                0.0,
                float(waypoint.yaw),
                int(round(rad_to_deg(waypoint.latitude) * _E7)),
                int(round(rad_to_deg(waypoint.longitude) * _E7)),
                float(waypoint.altitude),
            ),
        ):
            return Ack.rejected(-1, f"waypoint {waypoint.index} send failed")

        if waypoint.index < self._mission_count - 1:
            return Ack.success()
        mission_ack = self._wait_for(("MISSION_ACK",), _ack_wait(timeout))
        if mission_ack is None:
            return Ack.timeout("no MISSION_ACK")
        result = int(getattr(mission_ack, "type", -1))
        if result != mavutil.mavlink.MAV_MISSION_ACCEPTED:
            return Ack.rejected(result, "mission rejected")
        return Ack.success("mission accepted")

    def start_mission(self, timeout: float) -> Ack:
        """Start the uploaded mission from its first item."""
        return self._command(
            "MISSION_START",
            mavutil.mavlink.MAV_CMD_MISSION_START,
            (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def stop_mission(self, timeout: float) -> Ack:
        """Hold position and clear the uploaded mission."""
        ack = self._set_mode(_COPTER_LOITER, timeout, "HOLD")
        if not ack.ok:
            return ack
        if not self._send(
            "mission clear",
            lambda mav: mav.mission_clear_all_send(self._target_system, self._target_component),
        ):
            return Ack.rejected(-1, "mission clear failed")
        return ack

    def pause_mission(self, timeout: float) -> Ack:
        """Hold the mission at the current position (DO_PAUSE_CONTINUE 0)."""
        return self._command(
            "PAUSE",
            mavutil.mavlink.MAV_CMD_DO_PAUSE_CONTINUE,
            (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def resume_mission(self, timeout: float) -> Ack:
        """Continue a paused mission (DO_PAUSE_CONTINUE 1)."""
        return self._command(
            "RESUME",
            mavutil.mavlink.MAV_CMD_DO_PAUSE_CONTINUE,
            (1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
            timeout,
        )

    def _set_mode(self, custom_mode: int, timeout: float, label: str) -> Ack:
        return self._command(
            label,
            mavutil.mavlink.MAV_CMD_DO_SET_MODE,
            (
                float(mavutil.mavlink.MAV_MODE_FLAG_CUSTOM_MODE_ENABLED),
                float(custom_mode),
                0.0,
                0.0,
                0.0,
                0.0,
                0.0,
            ),
            timeout,
        )

    def _restore_intervals(self, message_ids: Iterable[int]) -> Ack:
        result = Ack.success()
        for message_id in message_ids:
            # Interval 0 restores the autopilot's default rate.
            ack = self._command(
                "SET_MESSAGE_INTERVAL",
                mavutil.mavlink.MAV_CMD_SET_MESSAGE_INTERVAL,
                (float(message_id), 0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
                timeout=1.0,
            )
            if not ack.ok and result.ok:
                result = ack
        return result

    def _command(
        self,
        label: str,
        command_id: int,
        params: tuple[float, float, float, float, float, float, float],
        timeout: float,
    ) -> Ack:
        """Send COMMAND_LONG and map the COMMAND_ACK onto an Ack.

        Retries once with an incremented confirmation when no ACK or a
        rejection arrives.
        """
        accepted_results = {
            mavutil.mavlink.MAV_RESULT_ACCEPTED,
            mavutil.mavlink.MAV_RESULT_IN_PROGRESS,
        }
        ack_timeout = _ack_wait(timeout)
        outcome = Ack.timeout(f"no COMMAND_ACK for {label}")

        def answers(message) -> bool:
            return (
                message.get_type() == "COMMAND_ACK"
                and int(getattr(message, "command", -1)) == command_id
            )

        for attempt in range(1, _COMMAND_ACK_RETRIES + 2):
            confirmation = attempt - 1
            try:
                with self._connection_lock:
                    # A late ACK from an earlier exchange must not answer this one.
                    self._discard_pending(answers)
                    self._connection.mav.command_long_send(
                        self._target_system,
                        self._target_component,
                        command_id,
                        confirmation,
                        *params,
                    )
            except OSError as error:
                self._logger(f"MAVLink {label} command send failed: {error}")
                return Ack.rejected(-1, str(error))

            ack = self._wait_for(("COMMAND_ACK",), ack_timeout, answers)
            if ack is None:
                self._logger(
                    f"No COMMAND_ACK received for {label} command "
                    f"({attempt}/{_COMMAND_ACK_RETRIES + 1})"
                )
                outcome = Ack.timeout(f"no COMMAND_ACK for {label}")
                continue

            result = int(getattr(ack, "result", -1))
            if result in accepted_results:
                return Ack.success(label)
            self._logger(f"{label} command rejected with COMMAND_ACK result={result}")
            outcome = Ack.rejected(result, label)
        return outcome

    def _send(self, label: str, send: Callable[[Any], None]) -> bool:
        try:
            with self._connection_lock:
                send(self._connection.mav)
        except OSError as error:
            self._logger(f"MAVLink {label} send failed: {error}")
            return False
        return True

    def _wait_for(
        self,
        types: Iterable[str],
        timeout: float,
        predicate: Callable[[Any], bool] = lambda _message: True,
    ):
        """Receive until a message of one of ``types`` satisfies ``predicate``.

        Every message read on the way updates the telemetry cache. Command
        and mission replies are claimed from the reply queue, so one read
        by a concurrent telemetry drain is still found here. Reads are cut
        into short slices to let snapshots through while waiting.
        """
        wanted = frozenset(types)

        def claims(message) -> bool:
            return message.get_type() in wanted and predicate(message)

        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            try:
                with self._connection_lock:
                    queued = self._take_pending(claims)
                    if queued is not None:
                        return queued
                    remaining = deadline - time.monotonic()
                    if remaining <= 0.0:
                        return None
                    message = self._connection.recv_match(
                        blocking=True, timeout=min(remaining, _RECV_SLICE_SEC)
                    )
            except OSError as error:
                self._logger(f"MAVLink receive failed: {error}")
                return None
            if message is None:
                continue
            self._handle_message(message)
            if (
                message.get_type() not in _QUEUED_TYPES
                and self._message_matches_target(message)
                and claims(message)
            ):
                return message

    def _take_pending(self, claims: Callable[[Any], bool]):
        with self._state_lock:
            for message in self._pending:
                if claims(message):
                    self._pending.remove(message)
                    return message
        return None

    def _discard_pending(self, matches: Callable[[Any], bool]) -> None:
        with self._state_lock:
            kept = [message for message in self._pending if not matches(message)]
            self._pending.clear()
            self._pending.extend(kept)

    def _drain(self) -> None:
        for _ in range(_DRAIN_LIMIT):
            try:
                with self._connection_lock:
                    message = self._connection.recv_match(blocking=False)
            except OSError as error:
                self._logger(f"MAVLink receive failed: {error}")
                return
            if message is None:
                return
            self._handle_message(message)

    def _message_matches_target(self, message) -> bool:
        get_system = getattr(message, "get_srcSystem", None)
        if callable(get_system) and self._target_system > 0:
            if int(get_system()) != self._target_system:
                return False
        return True

    def _handle_message(self, message) -> None:
        """Fold one received message into the telemetry cache or the reply queue."""
        if not self._message_matches_target(message):
            return
        kind = message.get_type()
        with self._state_lock:
            if kind in _QUEUED_TYPES:
                self._pending.append(message)
            elif kind == "HEARTBEAT":
                if int(getattr(message, "type", 0)) == mavutil.mavlink.MAV_TYPE_GCS:
                    return
                self._armed = bool(
                    int(message.base_mode) & mavutil.mavlink.MAV_MODE_FLAG_SAFETY_ARMED
                )
                self._custom_mode = int(message.custom_mode)
                self._last_heartbeat_monotonic = time.monotonic()
            elif kind == "EXTENDED_SYS_STATE":
                self._landed_state = int(message.landed_state)
            elif kind == "GLOBAL_POSITION_INT":
                self._position = GeodeticPosition(
                    latitude=deg_to_rad(message.lat / _E7),
                    longitude=deg_to_rad(message.lon / _E7),
                    altitude=message.alt / 1000.0,
                    height=message.relative_alt / 1000.0,
                    health=self._gps_health,
                )
                # NED centimetres per second to north/east/up metres per second.
                self._velocity = Vector3(message.vx / 100.0, message.vy / 100.0, -message.vz / 100.0)
            elif kind == "ATTITUDE_QUATERNION":
                self._attitude = Quaternion(message.q1, message.q2, message.q3, message.q4)
            elif kind == "RC_CHANNELS":
                self._rc = RCChannels(
                    roll=_rc_stick(message.chan1_raw),
                    pitch=_rc_stick(message.chan2_raw),
                    yaw=_rc_stick(message.chan4_raw),
                    throttle=_rc_stick(message.chan3_raw),
                )
            elif kind == "GPS_RAW_INT":
                self._gps_health = _GPS_HEALTH_BY_FIX.get(int(message.fix_type), 0)

    def _status_locked(self) -> VehicleStatus:
        landed = self._landed_state
        if not self._armed:
            flight = FlightStatus.STOPPED
        elif landed == mavutil.mavlink.MAV_LANDED_STATE_ON_GROUND:
            flight = FlightStatus.ON_GROUND
        elif landed == mavutil.mavlink.MAV_LANDED_STATE_UNDEFINED:
            flight = FlightStatus.IN_AIR if self._position.height > 0.5 else FlightStatus.ON_GROUND
        else:
            flight = FlightStatus.IN_AIR

        if landed == mavutil.mavlink.MAV_LANDED_STATE_TAKEOFF:
            mode = DisplayMode.AUTO_TAKEOFF
        elif landed == mavutil.mavlink.MAV_LANDED_STATE_LANDING:
            mode = DisplayMode.AUTO_LANDING
        elif self._custom_mode == _COPTER_LAND and flight is not FlightStatus.IN_AIR:
            # LAND persists after touchdown; the vehicle is holding on the ground.
            mode = DisplayMode.P_GPS
        elif self._custom_mode is None:
            mode = None
        else:
            mode = _DISPLAY_MODE_BY_CUSTOM_MODE.get(self._custom_mode, DisplayMode.MANUAL_CTRL)
        return VehicleStatus(flight, mode)


def _message_ids(topics: Iterable[TelemetryTopic]) -> list[int]:
    ids: list[int] = []
    for topic in topics:
        for message_id in _TOPIC_MESSAGES[topic]:
            if message_id not in ids:
                ids.append(message_id)
    return ids


def _rc_stick(raw: int) -> int:
    # PWM 1000..2000 to the -10000..10000 stick range.
    if raw in (0, 65535):
        return 0
    return max(-10000, min(10000, (int(raw) - 1500) * 20))


def _ack_wait(timeout: float) -> float:
    return min(max(float(timeout), 0.1), _MAX_ACK_WAIT_SEC)


def _time_boot_ms() -> int:
    return int(time.monotonic() * 1000.0) & 0xFFFFFFFF
