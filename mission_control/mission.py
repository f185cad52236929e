"""Waypoint mission construction, upload and lifecycle control.

A mission is the vehicle's current position followed by the operator's
waypoints. Waypoints are uploaded one index at a time; the upload is not
atomic and a failure partway leaves a partial mission on the autopilot,
which is reported with the failing index rather than rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Sequence

from .geo_math import deg_to_rad
from .telemetry_source import TelemetrySource
from .vehicle import Ack, GeodeticPosition, TelemetryTopic

ACTION_SLOTS = 16

_GPS_TOPICS = (TelemetryTopic.GPS_FUSED,)
_GPS_FREQUENCY_HZ = 10.0


@dataclass(frozen=True)
class Waypoint:
    """One mission waypoint; latitude and longitude in radians."""

    index: int
    latitude: float
    longitude: float
    altitude: float
    yaw: int = 0
    gimbal_pitch: int = 0
    turn_mode: int = 0
    damping: float = 0.0
    action_time_limit: int = 100
    action_repeat: int = 0
    commands: tuple[int, ...] = field(default=(0,) * ACTION_SLOTS)
    command_parameters: tuple[int, ...] = field(default=(0,) * ACTION_SLOTS)

    @property
    def has_action(self) -> bool:
        return any(self.commands)


@dataclass(frozen=True)
class MissionInitSettings:
    max_velocity: float = 10.0
    idle_velocity: float = 5.0
    finish_action: int = 0
    executive_times: int = 1
    yaw_mode: int = 0
    trace_mode: int = 0
    rc_lost_action: int = 1
    waypoint_count: int = 0

    def with_cruise_speed(self, speed: float | None) -> "MissionInitSettings":
        """Return settings honouring ``speed`` only when 0 < speed <= max_velocity."""
        if speed is None or not 0.0 < speed <= self.max_velocity:
            return self
        return replace(self, idle_velocity=float(speed))


@dataclass(frozen=True)
class MissionUploadReport:
    """Result of an upload-and-start sequence.

    ``failed_index`` is None unless a waypoint upload was rejected; it is -1
    when mission initialisation itself failed.
    """

    ack: Ack
    uploaded: int
    failed_index: int | None = None
    started: bool = False

    @property
    def succeeded(self) -> bool:
        return self.started and self.ack.ok


def build_waypoints(
    origin: GeodeticPosition,
    raw_waypoints: Iterable[Sequence[float]],
    start_altitude: float,
) -> list[Waypoint]:
    """Build a mission from the current position and operator waypoints.

    Args:
        origin: Vehicle position at mission start; becomes waypoint 0.
        raw_waypoints: Entries of [longitude_deg, latitude_deg, altitude_m].
        start_altitude: Altitude of waypoint 0 in metres.

    Returns:
        Waypoints indexed 0..N in order.

    Raises:
        ValueError: An entry has fewer than three numeric values.
    """
    waypoints = [Waypoint(0, origin.latitude, origin.longitude, float(start_altitude))]
    for offset, entry in enumerate(raw_waypoints):
        values = list(entry)
        if len(values) < 3:
            raise ValueError(f"waypoint {offset + 1} needs [lon, lat, alt], got {values!r}")
        longitude, latitude, altitude = (float(value) for value in values[:3])
        waypoints.append(
            Waypoint(
                index=offset + 1,
                latitude=deg_to_rad(latitude),
                longitude=deg_to_rad(longitude),
                altitude=altitude,
            )
        )
    return waypoints


class MissionOrchestrator:
    """Uploads waypoint missions and passes lifecycle commands through."""

    def __init__(
        self,
        source: TelemetrySource,
        *,
        defaults: MissionInitSettings | None = None,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._vehicle = source.vehicle
        self._defaults = defaults or MissionInitSettings()
        self._logger = logger or (lambda _: None)

    def start_mission_from_request(
        self,
        raw_waypoints: Sequence[Sequence[float]],
        cruise_speed: float | None,
        start_altitude: float,
        timeout: float,
    ) -> MissionUploadReport | None:
        """Build, upload and start a mission from operator waypoints.

        Returns None when the GPS telemetry needed for waypoint 0 could not
        be acquired.
        """
        lease = self._source.acquire(_GPS_TOPICS, _GPS_FREQUENCY_HZ)
        if lease is None:
            self._logger("Failed to set up subscription for waypoint mission")
            return None
        try:
            waypoints = build_waypoints(
                self._source.current_position(), raw_waypoints, start_altitude
            )
            settings = replace(
                self._defaults.with_cruise_speed(cruise_speed),
                waypoint_count=len(waypoints),
            )
            self._logger(f"Cruise speed: {settings.idle_velocity:g}")
            return self.upload_and_start(waypoints, settings, timeout)
        finally:
            ack = self._source.release(lease)
            if not ack.ok:
                self._logger(f"Error unsubscribing GPS telemetry ({ack.result.value})")

    def upload_and_start(
        self,
        waypoints: Sequence[Waypoint],
        settings: MissionInitSettings,
        timeout: float,
    ) -> MissionUploadReport:
        """Initialise the mission, upload waypoints in index order, then start it.

        Stops at the first rejected step without starting the mission.
        """
        init_ack = self._vehicle.init_mission(settings, timeout)
        if not init_ack.ok:
            self._logger(f"Waypoint mission init failed: {init_ack.result.value} {init_ack.detail}".rstrip())
            return MissionUploadReport(init_ack, uploaded=0, failed_index=-1)
        self._logger("Initializing waypoint mission")

        uploaded = 0
        for waypoint in sorted(waypoints, key=lambda wp: wp.index):
            ack = self._vehicle.upload_waypoint(waypoint, timeout)
            if not ack.ok:
                self._logger(
                    f"Waypoint {waypoint.index} upload failed: {ack.result.value} "
                    f"(code {ack.code})"
                )
                return MissionUploadReport(ack, uploaded=uploaded, failed_index=waypoint.index)
            uploaded += 1

        start_ack = self._vehicle.start_mission(timeout)
        if not start_ack.ok:
            self._logger(f"Waypoint mission start failed: {start_ack.result.value}")
            return MissionUploadReport(start_ack, uploaded=uploaded)
        self._logger(f"Starting waypoint mission with {uploaded} waypoints")
        return MissionUploadReport(start_ack, uploaded=uploaded, started=True)

    def stop(self, timeout: float) -> Ack:
        return self._pass_through("Stopping", self._vehicle.stop_mission(timeout))

    def pause(self, timeout: float) -> Ack:
        return self._pass_through("Pausing", self._vehicle.pause_mission(timeout))

    def resume(self, timeout: float) -> Ack:
        return self._pass_through("Resuming", self._vehicle.resume_mission(timeout))

    def _pass_through(self, action: str, ack: Ack) -> Ack:
        if ack.ok:
            self._logger(f"{action} waypoint mission")
        else:
            self._logger(f"{action} waypoint mission failed: {ack.result.value} (code {ack.code})")
        return ack
