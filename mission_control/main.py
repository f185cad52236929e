"""Process entry point: wire the vehicle, maneuvers and bus loops together."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Sequence

from .bus import BusSettings, FixedBackoff, MonitoringSwitch
from .command_bridge import CommandBridge, CommandDispatcher
from .config import SupervisorConfig, load_config, parse_args
from .errors import ConfigError
from .maneuvers import ManeuverSupervisor
from .mavlink_vehicle import MavlinkVehicle
from .mission import MissionOrchestrator
from .position_controller import PositionController
from .telemetry_publisher import TelemetryPublisher
from .telemetry_source import telemetry_source_for

LOGGER = logging.getLogger(__name__)

_HEARTBEAT_TIMEOUT_SEC = 10.0
_CONTROL_AUTHORITY_TIMEOUT_SEC = 1.0


def build_services(
    config: SupervisorConfig, vehicle, stop_event: threading.Event
) -> tuple[CommandBridge, TelemetryPublisher]:
    """Assemble the command bridge and telemetry publisher around one vehicle."""
    vehicle_log = logging.getLogger("mission_control.vehicle").info
    source = telemetry_source_for(vehicle, logger=vehicle_log)
    switch = MonitoringSwitch()
    settings = BusSettings(
        host=config.remote_host,
        user=config.user,
        password=config.password,
        machine_id=config.machine_id,
        port=config.remote_port,
    )
    backoff = FixedBackoff(config.reconnect_backoff)
    dispatcher = CommandDispatcher(
        vehicle,
        PositionController(source, logger=vehicle_log),
        ManeuverSupervisor(source, logger=vehicle_log),
        MissionOrchestrator(source, logger=vehicle_log),
        switch,
    )
    bridge = CommandBridge(settings, dispatcher, stop_event=stop_event, backoff=backoff)
    publisher = TelemetryPublisher(
        settings,
        vehicle,
        switch,
        stop_event=stop_event,
        period_s=config.publish_period,
        backoff=backoff,
    )
    return bridge, publisher


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("paho.mqtt").setLevel(logging.WARNING)

    try:
        config = load_config(args.config).with_telemetry_mode(args.telemetry_mode)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 1

    vehicle = MavlinkVehicle(
        device=config.device,
        baudrate=config.baudrate,
        takeoff_altitude_m=config.takeoff_altitude,
        variant=config.telemetry_mode,
        logger=logging.getLogger("mission_control.vehicle").info,
    )
    if not vehicle.wait_for_heartbeat(_HEARTBEAT_TIMEOUT_SEC):
        LOGGER.error("Vehicle not initialized, exiting")
        vehicle.close()
        return 1
    authority = vehicle.obtain_control_authority(_CONTROL_AUTHORITY_TIMEOUT_SEC)
    if not authority.ok:
        LOGGER.warning("Control authority not granted: %s", authority.result.value)

    stop_event = threading.Event()
    bridge, publisher = build_services(config, vehicle, stop_event)
    threads = [
        threading.Thread(target=publisher.run, name="telemetry-tx", daemon=True),
        threading.Thread(target=bridge.run, name="command-rx", daemon=True),
    ]
    LOGGER.info("Starting message tx and rx channel threads for %s", config.machine_id)
    for thread in threads:
        thread.start()
    try:
        for thread in threads:
            while thread.is_alive():
                thread.join(timeout=0.5)
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
        stop_event.set()
        for thread in threads:
            thread.join(timeout=5.0)
    finally:
        vehicle.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
