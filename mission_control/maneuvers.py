"""Monitored takeoff and landing.

Each maneuver is a strict sequence of polled phases. Every phase has a
bounded cycle budget at a fixed poll period, and a phase that runs out of
budget ends the maneuver with a report naming that phase, so an operator can
tell "motors never spun" apart from "never left the ground". The telemetry
lease acquired at the start is released on every exit path.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from .telemetry_source import TelemetryLease, TelemetrySource
from .vehicle import (
    ManeuverOutcome,
    ManeuverReport,
    TelemetrySnapshot,
    TelemetryTopic,
    VehicleStatus,
)

_STATUS_TOPICS = (TelemetryTopic.STATUS_FLIGHT, TelemetryTopic.STATUS_DISPLAYMODE)


@dataclass(frozen=True)
class ManeuverConfig:
    status_frequency_hz: float = 10.0
    poll_period_s: float = 0.1
    motors_spinning_cycles: int = 20
    airborne_cycles: int = 110
    landing_started_cycles: int = 20
    settle_timeout_cycles: int = 30
    landing_complete_cycles: int = 120


class ManeuverSupervisor:
    """Runs takeoff and landing against one TelemetrySource."""

    def __init__(
        self,
        source: TelemetrySource,
        *,
        config: ManeuverConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._vehicle = source.vehicle
        self._config = config or ManeuverConfig()
        self._sleep = sleep
        self._logger = logger or (lambda _: None)

    def takeoff(self, timeout: float) -> ManeuverReport:
        """Take off and wait until the vehicle hovers in a stabilized mode."""
        lease = self._source.acquire(_STATUS_TOPICS, self._config.status_frequency_hz)
        if lease is None:
            return self._report(
                "Takeoff", ManeuverOutcome.SUBSCRIPTION_FAILURE, "SUBSCRIPTION_VERIFY"
            )
        try:
            return self._run_takeoff(timeout)
        finally:
            self._release(lease)

    def land(self, timeout: float) -> ManeuverReport:
        """Land and wait until the vehicle reports touchdown in a stabilized mode."""
        lease = self._source.acquire(_STATUS_TOPICS, self._config.status_frequency_hz)
        if lease is None:
            return self._report(
                "Landing", ManeuverOutcome.SUBSCRIPTION_FAILURE, "SUBSCRIPTION_VERIFY"
            )
        try:
            return self._run_landing(timeout)
        finally:
            self._release(lease)

    def _run_takeoff(self, timeout: float) -> ManeuverReport:
        source = self._source
        config = self._config

        ack = self._vehicle.issue_takeoff(timeout)
        if not ack.ok:
            return self._report(
                "Takeoff",
                ManeuverOutcome.ACTUATION_FAILURE,
                "ISSUE_TAKEOFF",
                f"takeoff rejected ({ack.result.value}, code {ack.code})",
            )

        if not self._poll_status(source.motors_started, config.motors_spinning_cycles):
            return self._report(
                "Takeoff", ManeuverOutcome.TIMEOUT, "AWAIT_MOTORS_SPINNING", "motors did not start"
            )
        self._logger("Motors spinning...")

        if not self._poll_status(source.airborne, config.airborne_cycles):
            return self._report(
                "Takeoff", ManeuverOutcome.TIMEOUT, "AWAIT_AIRBORNE", "vehicle did not leave the ground"
            )
        self._logger("Ascending...")

        if not self._poll_snapshots(
            source.takeoff_settled, config.settle_timeout_cycles, source.settle_poll_period_s
        ):
            return self._report(
                "Takeoff", ManeuverOutcome.TIMEOUT, "AWAIT_MODE_SETTLED", "vehicle did not settle"
            )

        status = source.current_status()
        if not source.final_mode_expected(status):
            return self._report(
                "Takeoff",
                ManeuverOutcome.ABORTED_UNEXPECTED_MODE,
                "AWAIT_MODE_SETTLED",
                f"unexpected mode {_mode_name(status)}; manual intervention required",
            )
        return self._report("Takeoff", ManeuverOutcome.SUCCESS, "DONE")

    def _run_landing(self, timeout: float) -> ManeuverReport:
        source = self._source
        config = self._config

        ack = self._vehicle.issue_land(timeout)
        if not ack.ok:
            return self._report(
                "Landing",
                ManeuverOutcome.ACTUATION_FAILURE,
                "ISSUE_LAND",
                f"landing rejected ({ack.result.value}, code {ack.code})",
            )

        if not self._poll_status(source.landing_started, config.landing_started_cycles):
            return self._report(
                "Landing", ManeuverOutcome.TIMEOUT, "AWAIT_LANDING_STARTED", "landing did not start"
            )
        self._logger("Landing...")

        if not self._poll_snapshots(
            lambda _previous, current: source.touched_down(current),
            config.landing_complete_cycles,
            source.landing_poll_period_s,
        ):
            return self._report(
                "Landing", ManeuverOutcome.TIMEOUT, "AWAIT_LANDING_COMPLETE", "touchdown not detected"
            )

        status = source.current_status()
        if not source.final_mode_expected(status):
            return self._report(
                "Landing",
                ManeuverOutcome.ABORTED_UNEXPECTED_MODE,
                "AWAIT_MODE_SETTLED",
                f"unexpected mode {_mode_name(status)}; manual intervention required",
            )
        return self._report("Landing", ManeuverOutcome.SUCCESS, "DONE")

    def _poll_status(
        self, predicate: Callable[[VehicleStatus], bool], max_cycles: int
    ) -> bool:
        cycles = 0
        while not predicate(self._source.current_status()):
            if cycles >= max_cycles:
                return False
            self._sleep(self._config.poll_period_s)
            cycles += 1
        return True

    def _poll_snapshots(
        self,
        predicate: Callable[[TelemetrySnapshot | None, TelemetrySnapshot], bool],
        max_cycles: int,
        period_s: float,
    ) -> bool:
        previous: TelemetrySnapshot | None = None
        for _ in range(max_cycles):
            current = self._source.snapshot()
            if predicate(previous, current):
                return True
            previous = current
            self._sleep(period_s)
        return False

    def _release(self, lease: TelemetryLease) -> None:
        ack = self._source.release(lease)
        if not ack.ok:
            self._logger(
                "Error unsubscribing status telemetry; restart the flight "
                f"controller to get back to a clean state ({ack.result.value})"
            )

    def _report(
        self, name: str, outcome: ManeuverOutcome, phase: str, detail: str = ""
    ) -> ManeuverReport:
        if outcome is ManeuverOutcome.SUCCESS:
            self._logger(f"{name} successful")
        else:
            self._logger(f"{name} failed in {phase}: {outcome.value} {detail}".rstrip())
        return ManeuverReport(outcome, phase, detail)


def _mode_name(status: VehicleStatus) -> str:
    return status.display_mode.name if status.display_mode is not None else "UNKNOWN"
