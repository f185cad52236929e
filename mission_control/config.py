"""Service configuration loaded from a ``key : value`` text file.

Example::

    device : /dev/ttyACM0
    baudrate : 57600
    remote_host : broker.local
    user : drone
    password : secret
    telemetry_mode : subscription
"""

from __future__ import annotations

import argparse
import socket
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Sequence

from .errors import ConfigError
from .vehicle import FirmwareVariant

REQUIRED_KEYS = ("remote_host", "user", "password")


@dataclass(frozen=True)
class SupervisorConfig:
    remote_host: str
    user: str
    password: str
    device: str = "/dev/ttyACM0"
    baudrate: int = 57600
    remote_port: int = 1883
    telemetry_mode: FirmwareVariant = FirmwareVariant.SUBSCRIPTION
    takeoff_altitude: float = 1.2
    publish_period: float = 1.0
    reconnect_backoff: float = 3.0
    machine_id: str = ""

    def with_telemetry_mode(self, mode: str | None) -> "SupervisorConfig":
        if mode is None:
            return self
        return replace(self, telemetry_mode=_variant(mode, "telemetry_mode"))


def parse_config_text(text: str, *, hostname: Callable[[], str] = socket.gethostname) -> SupervisorConfig:
    """Parse configuration text.

    Blank lines, ``#`` comments and unknown keys are ignored.

    Raises:
        ConfigError: A required key is missing or a value has the wrong type.
    """
    values: dict[str, str] = {}
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, separator, value = line.partition(":")
        if not separator:
            raise ConfigError(f"line {line_number}: expected 'key : value', got {raw_line!r}")
        values[key.strip()] = value.strip()

    for key in REQUIRED_KEYS:
        if not values.get(key):
            raise ConfigError(f"message server config not found: missing {key!r}")

    defaults = SupervisorConfig("", "", "")
    return SupervisorConfig(
        remote_host=values["remote_host"],
        user=values["user"],
        password=values["password"],
        device=values.get("device") or defaults.device,
        baudrate=_typed(values, "baudrate", int, defaults.baudrate),
        remote_port=_typed(values, "remote_port", int, defaults.remote_port),
        telemetry_mode=_variant(values["telemetry_mode"], "telemetry_mode")
        if values.get("telemetry_mode")
        else defaults.telemetry_mode,
        takeoff_altitude=_typed(values, "takeoff_altitude", float, defaults.takeoff_altitude),
        publish_period=_typed(values, "publish_period", float, defaults.publish_period),
        reconnect_backoff=_typed(values, "reconnect_backoff", float, defaults.reconnect_backoff),
        machine_id=values.get("machine_id") or hostname(),
    )


def load_config(path: str | Path) -> SupervisorConfig:
    """Load a configuration file; raises ConfigError when it cannot be read."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"config file {path} could not be opened: {exc}") from exc
    return parse_config_text(text)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mission_control",
        description="Bridge operator commands on a message bus to a MAVLink vehicle.",
    )
    parser.add_argument("config", help="Path to the key : value configuration file.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    parser.add_argument(
        "--telemetry-mode",
        choices=[variant.value for variant in FirmwareVariant],
        default=None,
        help="Override the telemetry_mode set in the configuration file.",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


def _typed(values: dict[str, str], key: str, cast, default):
    raw = values.get(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be {cast.__name__}, got {raw!r}") from exc


def _variant(raw: str, key: str) -> FirmwareVariant:
    try:
        return FirmwareVariant(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(variant.value for variant in FirmwareVariant)
        raise ConfigError(f"{key} must be one of {choices}, got {raw!r}") from exc
