"""Firmware-variant telemetry access behind one interface.

Autopilots either deliver telemetry through explicitly started topic
subscriptions or broadcast a fixed set of messages unconditionally. The
variant is detected once at start-up and every maneuver talks to the
resulting TelemetrySource, so no call site branches on firmware.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .vehicle import (
    Ack,
    DisplayMode,
    FirmwareVariant,
    FlightStatus,
    GeodeticPosition,
    Quaternion,
    SubscriptionHandle,
    TelemetrySnapshot,
    TelemetryTopic,
    VehicleFacade,
    VehicleStatus,
)

TAKEOFF_MODES = frozenset({DisplayMode.ASSISTED_TAKEOFF, DisplayMode.AUTO_TAKEOFF})
LANDING_MODES = frozenset({DisplayMode.AUTO_LANDING, DisplayMode.FORCE_AUTO_LANDING})
STABILIZED_MODES = frozenset({DisplayMode.P_GPS, DisplayMode.ATTITUDE})

_HOVER_ALTITUDE_DELTA_M = 0.009


@dataclass(frozen=True)
class TelemetryLease:
    """Telemetry access held for one maneuver; handle is None when nothing was subscribed."""

    handle: SubscriptionHandle | None = None


class TelemetrySource:
    """Common accessors shared by both firmware variants."""

    variant: FirmwareVariant
    vertical_deadband_m: float
    settle_poll_period_s: float
    landing_poll_period_s: float

    def __init__(
        self, vehicle: VehicleFacade, *, logger: Callable[[str], None] | None = None
    ) -> None:
        self._vehicle = vehicle
        self._logger = logger or (lambda _: None)

    @property
    def vehicle(self) -> VehicleFacade:
        return self._vehicle

    def snapshot(self) -> TelemetrySnapshot:
        return self._vehicle.get_telemetry_snapshot()

    def current_position(self) -> GeodeticPosition:
        return self.snapshot().position

    def current_attitude(self) -> Quaternion:
        return self.snapshot().attitude

    def current_status(self) -> VehicleStatus:
        return self.snapshot().status

    def acquire(
        self, topics: Sequence[TelemetryTopic], frequency_hz: float
    ) -> TelemetryLease | None:
        raise NotImplementedError

    def release(self, lease: TelemetryLease) -> Ack:
        raise NotImplementedError

    def motors_started(self, status: VehicleStatus) -> bool:
        return (
            status.flight in (FlightStatus.ON_GROUND, FlightStatus.IN_AIR)
            or status.display_mode == DisplayMode.ENGINE_START
        )

    def airborne(self, status: VehicleStatus) -> bool:
        return status.flight == FlightStatus.IN_AIR or status.display_mode in TAKEOFF_MODES

    def landing_started(self, status: VehicleStatus) -> bool:
        return status.display_mode in LANDING_MODES

    def takeoff_settled(
        self, previous: TelemetrySnapshot | None, current: TelemetrySnapshot
    ) -> bool:
        raise NotImplementedError

    def touched_down(self, snapshot: TelemetrySnapshot) -> bool:
        raise NotImplementedError

    def final_mode_expected(self, status: VehicleStatus) -> bool:
        raise NotImplementedError


class SubscriptionTelemetrySource(TelemetrySource):
    """Telemetry from topic packages that must be verified and started per maneuver."""

    variant = FirmwareVariant.SUBSCRIPTION
    vertical_deadband_m = 0.12
    settle_poll_period_s = 1.0
    landing_poll_period_s = 1.0

    def acquire(
        self, topics: Sequence[TelemetryTopic], frequency_hz: float
    ) -> TelemetryLease | None:
        if not self._vehicle.verify_subscription():
            self._logger("Telemetry subscription could not be verified")
            return None
        handle = self._vehicle.subscribe(topics, frequency_hz)
        if handle is None:
            self._logger(
                "Telemetry subscription to "
                f"{', '.join(topic.value for topic in topics)} at {frequency_hz:g}Hz failed"
            )
            return None
        return TelemetryLease(handle)

    def release(self, lease: TelemetryLease) -> Ack:
        if lease.handle is None:
            return Ack.success()
        return self._vehicle.unsubscribe(lease.handle)

    def takeoff_settled(
        self, previous: TelemetrySnapshot | None, current: TelemetrySnapshot
    ) -> bool:
        del previous
        return current.status.display_mode not in TAKEOFF_MODES

    def touched_down(self, snapshot: TelemetrySnapshot) -> bool:
        status = snapshot.status
        return not (
            status.display_mode in LANDING_MODES and status.flight == FlightStatus.IN_AIR
        )

    def final_mode_expected(self, status: VehicleStatus) -> bool:
        return status.display_mode in STABILIZED_MODES


class BroadcastTelemetrySource(TelemetrySource):
    """Telemetry from a fixed broadcast stream; there is nothing to subscribe to."""

    variant = FirmwareVariant.BROADCAST
    vertical_deadband_m = 1.2
    settle_poll_period_s = 3.0
    landing_poll_period_s = 2.0

    def __init__(
        self,
        vehicle: VehicleFacade,
        *,
        landed_height_tolerance_m: float = 0.0,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(vehicle, logger=logger)
        self._landed_height_tolerance_m = max(landed_height_tolerance_m, 0.0)

    def acquire(
        self, topics: Sequence[TelemetryTopic], frequency_hz: float
    ) -> TelemetryLease | None:
        del topics, frequency_hz
        return TelemetryLease()

    def release(self, lease: TelemetryLease) -> Ack:
        del lease
        return Ack.success()

    def takeoff_settled(
        self, previous: TelemetrySnapshot | None, current: TelemetrySnapshot
    ) -> bool:
        # Hovering once altitude stops changing between coarse samples.
        if previous is None:
            return False
        delta = abs(current.position.altitude - previous.position.altitude)
        return delta < _HOVER_ALTITUDE_DELTA_M

    def touched_down(self, snapshot: TelemetrySnapshot) -> bool:
        return abs(snapshot.position.height) <= self._landed_height_tolerance_m

    def final_mode_expected(self, status: VehicleStatus) -> bool:
        del status
        return True


def telemetry_source_for(
    vehicle: VehicleFacade,
    *,
    landed_height_tolerance_m: float = 0.0,
    logger: Callable[[str], None] | None = None,
) -> TelemetrySource:
    """Select the telemetry source matching the vehicle's firmware variant."""
    if vehicle.firmware_variant() is FirmwareVariant.BROADCAST:
        return BroadcastTelemetrySource(
            vehicle, landed_height_tolerance_m=landed_height_tolerance_m, logger=logger
        )
    return SubscriptionTelemetrySource(vehicle, logger=logger)
