"""Receding-setpoint position control for point-to-point repositioning.

The controller never sends the vehicle straight to the goal. Every cycle it
recomputes the remaining error from fresh telemetry and commands a setpoint
at most ``speed_factor_m`` ahead on each horizontal axis, which bounds the
velocity the low-level controller will demand. Once an axis is within that
distance the exact remaining error is commanded. Convergence requires the
vehicle to stay inside the position and yaw thresholds for a dwell window.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from .geo_math import (
    LocalOffset,
    deg_to_rad,
    local_offset_from_gps_offset,
    rad_to_deg,
    wrap_angle,
)
from .telemetry_source import TelemetrySource
from .vehicle import (
    GeodeticPosition,
    ManeuverOutcome,
    ManeuverReport,
    TelemetryTopic,
)

_POSITION_TOPICS = (TelemetryTopic.QUATERNION, TelemetryTopic.GPS_FUSED)


@dataclass(frozen=True)
class Setpoint:
    """Setpoint for one control cycle: x/y metre offsets, z absolute altitude, yaw in radians."""

    x: float
    y: float
    z: float
    yaw: float


@dataclass(frozen=True)
class PositionControlConfig:
    control_frequency_hz: float = 50.0
    timeout_s: float = 10.0
    speed_factor_m: float = 2.0
    out_of_bounds_limit_cycles: int = 10
    dwell_cycles: int = 50
    subscription_frequency_hz: float = 50.0
    settle_delay_s: float = 1.0

    @property
    def cycle_s(self) -> float:
        return 1.0 / self.control_frequency_hz

    @property
    def timeout_cycles(self) -> int:
        return max(int(round(self.timeout_s * self.control_frequency_hz)), 1)


def receding_setpoint(remaining_m: float, speed_factor_m: float) -> float:
    """Clamp one axis of the remaining error to the speed factor.

    Zero error commands zero. Errors smaller than the speed factor are
    commanded exactly, so the receding setpoint becomes the final setpoint.
    """
    if remaining_m == 0.0:
        return 0.0
    return max(-speed_factor_m, min(speed_factor_m, remaining_m))


class PositionController:
    """Closed-loop mover built on a TelemetrySource and its vehicle."""

    def __init__(
        self,
        source: TelemetrySource,
        *,
        config: PositionControlConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._vehicle = source.vehicle
        self._config = config or PositionControlConfig()
        self._sleep = sleep
        self._logger = logger or (lambda _: None)

    @property
    def config(self) -> PositionControlConfig:
        return self._config

    def move_by_offset(
        self,
        x_offset_m: float,
        y_offset_m: float,
        z_offset_m: float,
        yaw_desired_deg: float,
        pos_threshold_m: float = 0.2,
        yaw_threshold_deg: float = 1.0,
    ) -> ManeuverReport:
        """Move by a north/east/up offset and hold a yaw heading.

        Args:
            x_offset_m: Desired northward displacement in metres.
            y_offset_m: Desired eastward displacement in metres.
            z_offset_m: Desired climb in metres, relative to the start altitude.
            yaw_desired_deg: Desired heading in degrees.
            pos_threshold_m: Horizontal convergence threshold per axis.
            yaw_threshold_deg: Yaw convergence threshold.

        Returns:
            ManeuverReport with SUCCESS once the vehicle dwelt inside the
            thresholds, TIMEOUT when the control loop ran out of time, or
            SUBSCRIPTION_FAILURE when telemetry could not be acquired.
        """
        lease = self._source.acquire(_POSITION_TOPICS, self._config.subscription_frequency_hz)
        if lease is None:
            return ManeuverReport(
                ManeuverOutcome.SUBSCRIPTION_FAILURE,
                "SUBSCRIPTION_VERIFY",
                "position telemetry unavailable",
            )

        try:
            if self._config.settle_delay_s > 0.0:
                # Let the freshly started topics deliver a first sample.
                self._sleep(self._config.settle_delay_s)
            converged = self._run_control_loop(
                LocalOffset(x_offset_m, y_offset_m, z_offset_m),
                deg_to_rad(yaw_desired_deg),
                pos_threshold_m,
                deg_to_rad(yaw_threshold_deg),
            )
            self._brake()
        finally:
            ack = self._source.release(lease)
            if not ack.ok:
                self._logger(
                    "Error unsubscribing position telemetry; restart the flight "
                    f"controller to get back to a clean state ({ack.result.value})"
                )

        if not converged:
            self._logger(
                f"Move by offset ({x_offset_m}, {y_offset_m}, {z_offset_m}) timed out "
                f"after {self._config.timeout_s:g}s"
            )
            return ManeuverReport(ManeuverOutcome.TIMEOUT, "CONVERGE", "position not reached")
        self._logger(f"Move by offset ({x_offset_m}, {y_offset_m}, {z_offset_m}) complete")
        return ManeuverReport(ManeuverOutcome.SUCCESS, "DONE")

    def _run_control_loop(
        self,
        desired: LocalOffset,
        yaw_desired_rad: float,
        pos_threshold_m: float,
        yaw_threshold_rad: float,
    ) -> bool:
        config = self._config
        origin = self._source.current_position()
        # The vertical channel takes absolute altitude, x/y take relative offsets.
        target_altitude = origin.altitude + desired.z
        setpoint = Setpoint(
            receding_setpoint(desired.x, config.speed_factor_m),
            receding_setpoint(desired.y, config.speed_factor_m),
            target_altitude,
            yaw_desired_rad,
        )

        within_bounds_cycles = 0
        out_of_bounds_cycles = 0
        for _ in range(config.timeout_cycles):
            self._vehicle.set_position_and_yaw(
                setpoint.x, setpoint.y, setpoint.z, rad_to_deg(setpoint.yaw)
            )
            self._sleep(config.cycle_s)

            remaining, yaw_error = self._remaining_error(origin, desired, yaw_desired_rad)
            setpoint = Setpoint(
                receding_setpoint(remaining.x, config.speed_factor_m),
                receding_setpoint(remaining.y, config.speed_factor_m),
                target_altitude,
                yaw_desired_rad,
            )

            horizontal_ok = abs(remaining.x) < pos_threshold_m and abs(remaining.y) < pos_threshold_m
            vertical_ok = (
                abs(remaining.z) < self._source.vertical_deadband_m or within_bounds_cycles > 0
            )
            if horizontal_ok and vertical_ok and abs(yaw_error) < yaw_threshold_rad:
                within_bounds_cycles += 1
            elif within_bounds_cycles != 0:
                out_of_bounds_cycles += 1

            if out_of_bounds_cycles > config.out_of_bounds_limit_cycles:
                within_bounds_cycles = 0
                out_of_bounds_cycles = 0

            if within_bounds_cycles >= config.dwell_cycles:
                return True
        return False

    def _remaining_error(
        self, origin: GeodeticPosition, desired: LocalOffset, yaw_desired_rad: float
    ) -> tuple[LocalOffset, float]:
        snapshot = self._source.snapshot()
        current = snapshot.position
        travelled = local_offset_from_gps_offset(
            current.latitude,
            current.longitude,
            current.altitude,
            origin.latitude,
            origin.longitude,
            origin.altitude,
        )
        remaining = LocalOffset(
            desired.x - travelled.x,
            desired.y - travelled.y,
            desired.z - travelled.z,
        )
        yaw_error = wrap_angle(snapshot.attitude.to_euler().yaw - yaw_desired_rad)
        return remaining, yaw_error

    def _brake(self) -> None:
        # Zero residual velocity left over from the last position setpoint.
        for _ in range(self._config.dwell_cycles):
            self._vehicle.emergency_brake()
            self._sleep(self._config.cycle_s)
