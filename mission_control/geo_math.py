"""Flat-earth geodesy and attitude helpers for short-range vehicle control.

Converts between geodetic offsets (radians) and local tangent-plane metres
around an origin fix, and extracts Euler angles from attitude quaternions.
The local-offset approximation is only valid for displacements of a few
hundred metres, which covers point-to-point repositioning.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_378_137.0


@dataclass(frozen=True)
class LocalOffset:
    """Displacement in metres: x north, y east, z up."""

    x: float
    y: float
    z: float


@dataclass(frozen=True)
class EulerAngles:
    """Roll, pitch and yaw in radians."""

    roll: float
    pitch: float
    yaw: float


def deg_to_rad(degrees: float) -> float:
    return degrees * math.pi / 180.0


def rad_to_deg(radians: float) -> float:
    return radians * 180.0 / math.pi


def local_offset_from_gps_offset(
    target_lat: float,
    target_lon: float,
    target_alt: float,
    origin_lat: float,
    origin_lon: float,
    origin_alt: float,
) -> LocalOffset:
    """Return the local offset of a target fix relative to an origin fix.

    Latitudes and longitudes are in radians, altitudes in metres. The east
    component is scaled by the cosine of the target latitude.

    Args:
        target_lat: Target latitude in radians.
        target_lon: Target longitude in radians.
        target_alt: Target altitude in metres.
        origin_lat: Origin latitude in radians.
        origin_lon: Origin longitude in radians.
        origin_alt: Origin altitude in metres.

    Returns:
        LocalOffset with north (x), east (y) and up (z) components.
    """
    delta_lat = target_lat - origin_lat
    delta_lon = target_lon - origin_lon
    return LocalOffset(
        x=delta_lat * EARTH_RADIUS_M,
        y=delta_lon * EARTH_RADIUS_M * math.cos(target_lat),
        z=target_alt - origin_alt,
    )


def gps_from_local_offset(
    offset: LocalOffset, origin_lat: float, origin_lon: float, origin_alt: float
) -> tuple[float, float, float]:
    """Inverse of local_offset_from_gps_offset.

    Returns:
        Tuple of (latitude_rad, longitude_rad, altitude_m) of the point that
        lies at the given offset from the origin.
    """
    target_lat = origin_lat + offset.x / EARTH_RADIUS_M
    cos_lat = math.cos(target_lat)
    if abs(cos_lat) < 1e-12:
        target_lon = origin_lon
    else:
        target_lon = origin_lon + offset.y / (EARTH_RADIUS_M * cos_lat)
    return target_lat, target_lon, origin_alt + offset.z


def to_euler_angle(q0: float, q1: float, q2: float, q3: float) -> EulerAngles:
    """Convert a unit quaternion (w, x, y, z) to Euler angles in radians."""
    q2sqr = q2 * q2
    t0 = -2.0 * (q2sqr + q3 * q3) + 1.0
    t1 = 2.0 * (q1 * q2 + q0 * q3)
    t2 = -2.0 * (q1 * q3 - q0 * q2)
    t3 = 2.0 * (q2 * q3 + q0 * q1)
    t4 = -2.0 * (q1 * q1 + q2sqr) + 1.0

    t2 = min(max(t2, -1.0), 1.0)

    # Pitch is the rotation about the body y axis.
    return EulerAngles(
        roll=math.atan2(t3, t4),
        pitch=math.asin(t2),
        yaw=math.atan2(t1, t0),
    )


def quaternion_from_euler(roll: float, pitch: float, yaw: float) -> tuple[float, float, float, float]:
    """Return the (w, x, y, z) quaternion for Euler angles in radians."""
    cr, sr = math.cos(roll / 2.0), math.sin(roll / 2.0)
    cp, sp = math.cos(pitch / 2.0), math.sin(pitch / 2.0)
    cy, sy = math.cos(yaw / 2.0), math.sin(yaw / 2.0)
    return (
        cr * cp * cy + sr * sp * sy,
        sr * cp * cy - cr * sp * sy,
        cr * sp * cy + sr * cp * sy,
        cr * cp * sy - sr * sp * cy,
    )


def wrap_angle(radians: float) -> float:
    """Wrap an angle to the interval [-pi, pi)."""
    return (radians + math.pi) % (2.0 * math.pi) - math.pi
