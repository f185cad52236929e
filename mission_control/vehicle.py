"""Vehicle-facing data types and the capability protocol maneuvers rely on.

The supervisory code never talks to the autopilot wire protocol directly.
It consumes the VehicleFacade capability set defined here: telemetry
snapshots, topic subscriptions, acknowledged commands, setpoint streaming
and waypoint-mission primitives. MavlinkVehicle is the production
implementation; tests substitute in-memory fakes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Protocol, Sequence

from .geo_math import EulerAngles, to_euler_angle


class FlightStatus(IntEnum):
    STOPPED = 0
    ON_GROUND = 1
    IN_AIR = 2


class DisplayMode(IntEnum):
    MANUAL_CTRL = 0
    ATTITUDE = 1
    P_GPS = 6
    ASSISTED_TAKEOFF = 10
    AUTO_TAKEOFF = 11
    AUTO_LANDING = 12
    NAVI_GO_HOME = 15
    NAVI_SDK_CTRL = 17
    FORCE_AUTO_LANDING = 33
    ENGINE_START = 41


class TelemetryTopic(Enum):
    STATUS_FLIGHT = "status_flight"
    STATUS_DISPLAYMODE = "status_displaymode"
    QUATERNION = "quaternion"
    GPS_FUSED = "gps_fused"


class FirmwareVariant(Enum):
    """Telemetry delivery model supported by the connected autopilot."""

    SUBSCRIPTION = "subscription"
    BROADCAST = "broadcast"


class AckResult(Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Ack:
    """Acknowledgement of a single vehicle command."""

    result: AckResult
    code: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.result is AckResult.SUCCESS

    @classmethod
    def success(cls, detail: str = "") -> "Ack":
        return cls(AckResult.SUCCESS, 0, detail)

    @classmethod
    def rejected(cls, code: int, detail: str = "") -> "Ack":
        return cls(AckResult.REJECTED, code, detail)

    @classmethod
    def timeout(cls, detail: str = "") -> "Ack":
        return cls(AckResult.TIMEOUT, -1, detail)


@dataclass(frozen=True)
class GeodeticPosition:
    """Fused position; latitude and longitude in radians, altitude AMSL."""

    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0
    height: float = 0.0
    health: int = 0


@dataclass(frozen=True)
class Quaternion:
    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def to_euler(self) -> EulerAngles:
        return to_euler_angle(self.w, self.x, self.y, self.z)


@dataclass(frozen=True)
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class RCChannels:
    roll: int = 0
    pitch: int = 0
    yaw: int = 0
    throttle: int = 0


@dataclass(frozen=True)
class VehicleStatus:
    flight: FlightStatus = FlightStatus.STOPPED
    display_mode: DisplayMode | None = None


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Read-only view of vehicle state taken at a single instant."""

    status: VehicleStatus = field(default_factory=VehicleStatus)
    position: GeodeticPosition = field(default_factory=GeodeticPosition)
    rc: RCChannels = field(default_factory=RCChannels)
    velocity: Vector3 = field(default_factory=Vector3)
    attitude: Quaternion = field(default_factory=Quaternion)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SubscriptionHandle:
    package_id: int
    topics: tuple[TelemetryTopic, ...]
    frequency_hz: float


class ManeuverOutcome(Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ABORTED_UNEXPECTED_MODE = "aborted_unexpected_mode"
    SUBSCRIPTION_FAILURE = "subscription_failure"
    ACTUATION_FAILURE = "actuation_failure"


@dataclass(frozen=True)
class ManeuverReport:
    """Terminal result of a maneuver and the phase in which it ended."""

    outcome: ManeuverOutcome
    phase: str
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome is ManeuverOutcome.SUCCESS


class VehicleFacade(Protocol):
    """Capability set the supervisor needs from a vehicle driver.

    Implementations must make each call individually thread-safe: the
    telemetry publisher samples snapshots while maneuvers run on the
    command bridge thread.
    """

    def get_telemetry_snapshot(self) -> TelemetrySnapshot: ...

    def subscribe(
        self, topics: Sequence[TelemetryTopic], frequency_hz: float
    ) -> SubscriptionHandle | None: ...

    def unsubscribe(self, handle: SubscriptionHandle) -> Ack: ...

    def verify_subscription(self) -> bool: ...

    def issue_takeoff(self, timeout: float) -> Ack: ...

    def issue_land(self, timeout: float) -> Ack: ...

    def arm_motors(self, timeout: float) -> Ack: ...

    def disarm_motors(self, timeout: float) -> Ack: ...

    def go_home(self, timeout: float) -> Ack: ...

    def set_position_and_yaw(self, x: float, y: float, z: float, yaw_deg: float) -> None: ...

    def set_attitude_and_vertical_position(
        self, roll_deg: float, pitch_deg: float, height: float, yaw_deg: float
    ) -> None: ...

    def emergency_brake(self) -> None: ...

    def init_mission(self, settings, timeout: float) -> Ack: ...

    def upload_waypoint(self, waypoint, timeout: float) -> Ack: ...

    def start_mission(self, timeout: float) -> Ack: ...

    def stop_mission(self, timeout: float) -> Ack: ...

    def pause_mission(self, timeout: float) -> Ack: ...

    def resume_mission(self, timeout: float) -> Ack: ...

    def firmware_variant(self) -> FirmwareVariant: ...
