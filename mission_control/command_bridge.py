"""Inbound operator command loop.

Consumes the vehicle's downlink topic one message at a time, decodes each
message into a Command, acknowledges it and dispatches it synchronously on
the bridge thread. A slow handler (monitored takeoff, mission upload)
delays later commands; two maneuvers never run concurrently on one vehicle.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from . import commands as cmd
from .bus import BusSettings, FixedBackoff, InboundMessage, MonitoringSwitch, MqttChannel, ReconnectLoop
from .errors import CommandDecodeError
from .maneuvers import ManeuverSupervisor
from .mission import MissionOrchestrator
from .position_controller import PositionController
from .vehicle import Ack, VehicleFacade

LOGGER = logging.getLogger(__name__)


class CommandDispatcher:
    """Maps decoded commands onto the vehicle, maneuvers and mission orchestrator."""

    def __init__(
        self,
        vehicle: VehicleFacade,
        controller: PositionController,
        maneuvers: ManeuverSupervisor,
        mission: MissionOrchestrator,
        switch: MonitoringSwitch,
    ) -> None:
        self._vehicle = vehicle
        self._controller = controller
        self._maneuvers = maneuvers
        self._mission = mission
        self._switch = switch
        self._handlers: dict[type, Callable[[Any], None]] = {
            cmd.EngineStart: self._engine_start,
            cmd.EngineStop: self._engine_stop,
            cmd.GoHome: self._go_home,
            cmd.TakeOff: self._takeoff,
            cmd.Landing: self._landing,
            cmd.AttitudeMove: self._attitude_move,
            cmd.WaypointStart: self._waypoint_start,
            cmd.WaypointStop: self._waypoint_stop,
            cmd.WaypointPause: self._waypoint_pause,
            cmd.WaypointResume: self._waypoint_resume,
            cmd.MoveOffset: self._move_offset,
            cmd.TelemetryRequest: self._telemetry_request,
            cmd.MonitoringToggle: self._monitoring,
        }

    def dispatch(self, command: cmd.Command) -> None:
        """Run the handler for ``command`` on the calling thread.

        Commands without a handler are logged and ignored. Handler
        exceptions propagate to the caller.
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            LOGGER.warning("No handler for command %r", command)
            return
        handler(command)

    def _engine_start(self, command: cmd.EngineStart) -> None:
        LOGGER.info("Engine start request")
        _log_ack("Engine start", self._vehicle.arm_motors(command.timeout))

    def _engine_stop(self, command: cmd.EngineStop) -> None:
        LOGGER.info("Engine stop request")
        _log_ack("Engine stop", self._vehicle.disarm_motors(command.timeout))

    def _go_home(self, command: cmd.GoHome) -> None:
        LOGGER.info("Going home")
        _log_ack("Go home", self._vehicle.go_home(command.timeout))

    def _takeoff(self, command: cmd.TakeOff) -> None:
        LOGGER.info("Monitored takeoff")
        report = self._maneuvers.takeoff(command.timeout)
        LOGGER.info("Takeoff finished: %s (%s)", report.outcome.value, report.phase)

    def _landing(self, command: cmd.Landing) -> None:
        LOGGER.info("Monitored landing")
        report = self._maneuvers.land(command.timeout)
        LOGGER.info("Landing finished: %s (%s)", report.outcome.value, report.phase)

    def _attitude_move(self, command: cmd.AttitudeMove) -> None:
        LOGGER.info(
            "Attitude move (roll, pitch, height, yaw): %s, %s, %s, %s",
            command.roll,
            command.pitch,
            command.height,
            command.yaw,
        )
        self._vehicle.set_attitude_and_vertical_position(
            command.roll, command.pitch, command.height, command.yaw
        )

    def _waypoint_start(self, command: cmd.WaypointStart) -> None:
        LOGGER.info("Start waypoint mission with %d waypoints", len(command.waypoints))
        report = self._mission.start_mission_from_request(
            command.waypoints, command.cruise_speed, command.start_altitude, command.timeout
        )
        if report is None:
            LOGGER.error("Waypoint mission not started: telemetry unavailable")
        elif not report.succeeded:
            LOGGER.error(
                "Waypoint mission not started: %s after %d uploads (failed index %s)",
                report.ack.result.value,
                report.uploaded,
                report.failed_index,
            )

    def _waypoint_stop(self, command: cmd.WaypointStop) -> None:
        self._mission.stop(command.timeout)

    def _waypoint_pause(self, command: cmd.WaypointPause) -> None:
        self._mission.pause(command.timeout)

    def _waypoint_resume(self, command: cmd.WaypointResume) -> None:
        self._mission.resume(command.timeout)

    def _move_offset(self, command: cmd.MoveOffset) -> None:
        LOGGER.info(
            "Move offset (%s, %s, %s) yaw %s",
            command.x_offset,
            command.y_offset,
            command.z_offset,
            command.yaw_desired,
        )
        report = self._controller.move_by_offset(
            command.x_offset,
            command.y_offset,
            command.z_offset,
            command.yaw_desired,
            command.pos_threshold_m,
            command.yaw_threshold_deg,
        )
        if report.succeeded:
            LOGGER.info("Move offset successful")
        else:
            LOGGER.error("Move offset failed: %s (%s)", report.outcome.value, report.phase)

    def _telemetry_request(self, command: cmd.TelemetryRequest) -> None:
        del command
        LOGGER.info("Telemetry request")

    def _monitoring(self, command: cmd.MonitoringToggle) -> None:
        self._switch.set_enabled(command.enabled)
        LOGGER.info("Monitoring: %s", command.enabled)


class CommandBridge:
    """Consumes operator commands from the bus until the stop event is set."""

    def __init__(
        self,
        settings: BusSettings,
        dispatcher: CommandDispatcher,
        *,
        stop_event: threading.Event,
        backoff: FixedBackoff | None = None,
        wait: Callable[[float], Any] | None = None,
        channel_factory: Callable[[], Any] | None = None,
        poll_timeout_s: float = 0.5,
    ) -> None:
        self._settings = settings
        self._dispatcher = dispatcher
        self._stop_event = stop_event
        self._poll_timeout_s = poll_timeout_s
        self._channel_factory = channel_factory or self._default_channel
        self.loop = ReconnectLoop(
            "Command receive",
            lambda: self._channel_factory().connect(),
            self._consume,
            stop_event=stop_event,
            backoff=backoff,
            wait=wait,
        )

    def _default_channel(self) -> MqttChannel:
        return MqttChannel(
            self._settings,
            self._settings.downlink_topic,
            consume=True,
            client_id=f"{self._settings.machine_id}-downlink",
        )

    def run(self) -> None:
        """Consume commands until stopped, reconnecting after transport failures."""
        self.loop.run()

    def handle_message(self, channel: Any, message: InboundMessage) -> None:
        """Decode or drop one message, acknowledge it, then dispatch it."""
        LOGGER.debug("Received %r", message.body)
        try:
            command = cmd.decode_command(message.body)
        except CommandDecodeError as exc:
            LOGGER.warning("Dropping message: %s", exc)
            command = None
        channel.ack(message)
        if command is None:
            return
        try:
            self._dispatcher.dispatch(command)
        except Exception:
            # A failed handler must not stop command consumption.
            LOGGER.exception("Handler for %s failed", type(command).__name__)

    def _consume(self, channel: Any) -> None:
        while not self._stop_event.is_set():
            message = channel.receive(self._poll_timeout_s)
            if message is not None:
                self.handle_message(channel, message)


def _log_ack(action: str, ack: Ack) -> None:
    if ack.ok:
        LOGGER.info("%s acknowledged", action)
    else:
        LOGGER.error("%s failed: %s (code %d) %s", action, ack.result.value, ack.code, ack.detail)
