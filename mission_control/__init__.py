"""Mission control supervisor for a MAVLink vehicle.

Runs closed-loop maneuvers (takeoff, landing, point-to-point repositioning,
waypoint missions) on a remotely actuated vehicle and bridges them to an
operator over an MQTT message bus.

Modules:
    bus: MQTT channels, reconnect loop and the monitoring switch.
    command_bridge: Inbound command loop and command dispatch.
    commands: Typed operator commands and JSON decoding.
    config: Configuration file parsing and command-line arguments.
    errors: Exception types.
    geo_math: Flat-earth offsets and quaternion conversion.
    main: Process entry point.
    maneuvers: Monitored takeoff and landing state machines.
    mavlink_vehicle: pymavlink implementation of the vehicle capability set.
    mission: Waypoint mission construction and upload.
    position_controller: Receding-setpoint position control.
    telemetry_publisher: Outbound telemetry loop.
    telemetry_source: Firmware-variant telemetry access.
    vehicle: Vehicle data types and the capability protocol.
"""
