"""Typed operator commands and their JSON decoding.

An inbound message is a JSON object whose first key is the command tag and
whose value is the payload, e.g. ``{"TakeOffRequest": {"time_out": 20}}``.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from .errors import CommandDecodeError

DEFAULT_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class EngineStart:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class EngineStop:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class GoHome:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class TakeOff:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class Landing:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class AttitudeMove:
    """Attitude in degrees, height in metres above the takeoff point."""

    roll: float
    pitch: float
    height: float
    yaw: float


@dataclass(frozen=True)
class WaypointStart:
    waypoints: tuple[tuple[float, float, float], ...]
    cruise_speed: float | None = None
    start_altitude: float = 0.0
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class WaypointStop:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class WaypointPause:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class WaypointResume:
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class MoveOffset:
    x_offset: float
    y_offset: float
    z_offset: float
    yaw_desired: float
    pos_threshold_m: float = 0.2
    yaw_threshold_deg: float = 1.0


@dataclass(frozen=True)
class TelemetryRequest:
    pass


@dataclass(frozen=True)
class MonitoringToggle:
    enabled: bool


Command = Union[
    EngineStart,
    EngineStop,
    GoHome,
    TakeOff,
    Landing,
    AttitudeMove,
    WaypointStart,
    WaypointStop,
    WaypointPause,
    WaypointResume,
    MoveOffset,
    TelemetryRequest,
    MonitoringToggle,
]


def decode_command(body: bytes | str) -> Command:
    """Decode one inbound message into a Command.

    Raises:
        CommandDecodeError: The body is not a JSON object, the tag is
            unknown or the payload is missing required fields.
    """
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CommandDecodeError(f"message is not UTF-8: {exc}") from exc
    try:
        document = json.loads(body)
    except json.JSONDecodeError as exc:
        raise CommandDecodeError(f"message is not valid JSON: {exc}") from exc
    if not isinstance(document, dict) or not document:
        raise CommandDecodeError("message must be a non-empty JSON object")

    tag = next(iter(document))
    parser = _PARSERS.get(tag)
    if parser is None:
        raise CommandDecodeError(f"unknown command tag {tag!r}", tag=tag)
    try:
        return parser(document[tag])
    except CommandDecodeError as exc:
        raise CommandDecodeError(f"{tag}: {exc}", tag=tag) from exc


def _payload(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise CommandDecodeError("payload must be a JSON object")
    return value


def _number(payload: Mapping[str, Any], key: str, default: float | None = None) -> float:
    value = payload.get(key, default)
    if value is None:
        raise CommandDecodeError(f"missing field {key!r}")
    return _as_number(value, key)


def _as_number(value: Any, key: str) -> float:
    # bool is an int subclass; reject it as a number.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandDecodeError(f"field {key!r} must be a number, got {value!r}")
    return float(value)


def _timeout(payload: Mapping[str, Any]) -> float:
    return _number(payload, "time_out", DEFAULT_TIMEOUT_S)


def _timed(factory: Callable[[float], Command]) -> Callable[[Any], Command]:
    return lambda value: factory(_timeout(_payload(value)))


def _parse_attitude_move(value: Any) -> AttitudeMove:
    payload = _payload(value)
    return AttitudeMove(
        roll=_number(payload, "Roll"),
        pitch=_number(payload, "Pitch"),
        height=_number(payload, "Height"),
        yaw=_number(payload, "Yaw"),
    )


def _parse_waypoint_start(value: Any) -> WaypointStart:
    payload = _payload(value)
    raw = payload.get("WayPoints", [])
    if not isinstance(raw, list):
        raise CommandDecodeError("field 'WayPoints' must be a list")
    waypoints = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, list) or len(entry) < 3:
            raise CommandDecodeError(f"waypoint {index} must be [lon, lat, alt]")
        longitude, latitude, altitude = (
            _as_number(item, f"WayPoints[{index}]") for item in entry[:3]
        )
        if not all(math.isfinite(value) for value in (longitude, latitude, altitude)):
            raise CommandDecodeError(f"waypoint {index} has a non-finite value")
        if abs(longitude) > 180.0 or abs(latitude) > 90.0:
            raise CommandDecodeError(
                f"waypoint {index} is off the globe: lon {longitude}, lat {latitude}"
            )
        waypoints.append((longitude, latitude, altitude))
    cruise_speed = payload.get("CruiseSpeed")
    return WaypointStart(
        waypoints=tuple(waypoints),
        cruise_speed=None if cruise_speed is None else _number(payload, "CruiseSpeed"),
        start_altitude=_number(payload, "StartAlt", 0.0),
        timeout=_timeout(payload),
    )


def _parse_move_offset(value: Any) -> MoveOffset:
    payload = _payload(value)
    return MoveOffset(
        x_offset=_number(payload, "xOffset"),
        y_offset=_number(payload, "yOffset"),
        z_offset=_number(payload, "zOffset"),
        yaw_desired=_number(payload, "yawDesired"),
        pos_threshold_m=_number(payload, "posThresholdInM", 0.2),
        yaw_threshold_deg=_number(payload, "yawThresholdInDeg", 1.0),
    )


def _parse_monitoring(value: Any) -> MonitoringToggle:
    if not isinstance(value, bool):
        raise CommandDecodeError(f"Monitoring expects true or false, got {value!r}")
    return MonitoringToggle(value)


_PARSERS: dict[str, Callable[[Any], Command]] = {
    "EngineStartRequest": _timed(EngineStart),
    "EngineStopRequest": _timed(EngineStop),
    "GohomeRequest": _timed(GoHome),
    "TakeOffRequest": _timed(TakeOff),
    "LandingRequest": _timed(Landing),
    "AttitudeMoveRequest": _parse_attitude_move,
    "WayPointStartRequest": _parse_waypoint_start,
    "WayPointStopRequest": _timed(WaypointStop),
    "WayPointPauseRequest": _timed(WaypointPause),
    "WayPointResumeRequest": _timed(WaypointResume),
    "MoveOffsetRequest": _parse_move_offset,
    "TelemetryRequest": lambda _value: TelemetryRequest(),
    "Monitoring": _parse_monitoring,
}
