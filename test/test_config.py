import pytest

from mission_control.config import load_config, parse_args, parse_config_text
from mission_control.errors import ConfigError
from mission_control.vehicle import FirmwareVariant

CONFIG_TEXT = """
# vehicle link
device : /dev/ttyUSB0
baudrate : 921600

remote_host : broker.local
remote_port : 8883
user : drone
password : secret
"""


def _hostname() -> str:
    return "edge-07"


def test_parses_values_and_defaults() -> None:
    config = parse_config_text(CONFIG_TEXT, hostname=_hostname)

    assert config.device == "/dev/ttyUSB0"
    assert config.baudrate == 921600
    assert config.remote_host == "broker.local"
    assert config.remote_port == 8883
    assert config.user == "drone"
    assert config.password == "secret"
    assert config.telemetry_mode is FirmwareVariant.SUBSCRIPTION
    assert config.takeoff_altitude == 1.2
    assert config.publish_period == 1.0
    assert config.reconnect_backoff == 3.0
    assert config.machine_id == "edge-07"


def test_explicit_machine_id_wins_over_hostname() -> None:
    config = parse_config_text(CONFIG_TEXT + "machine_id : m100\n", hostname=_hostname)

    assert config.machine_id == "m100"


def test_broadcast_telemetry_mode() -> None:
    config = parse_config_text(CONFIG_TEXT + "telemetry_mode : Broadcast\n", hostname=_hostname)

    assert config.telemetry_mode is FirmwareVariant.BROADCAST


def test_value_may_contain_colons() -> None:
    config = parse_config_text(
        CONFIG_TEXT + "device : udpin:0.0.0.0:14550\n", hostname=_hostname
    )

    assert config.device == "udpin:0.0.0.0:14550"


@pytest.mark.parametrize("key", ["remote_host", "user", "password"])
def test_missing_required_key(key) -> None:
    text = "\n".join(line for line in CONFIG_TEXT.splitlines() if not line.startswith(key))

    with pytest.raises(ConfigError, match=key):
        parse_config_text(text, hostname=_hostname)


@pytest.mark.parametrize(
    "line",
    ["baudrate : fast", "takeoff_altitude : high", "telemetry_mode : polling", "no separator here"],
)
def test_invalid_lines_are_rejected(line) -> None:
    with pytest.raises(ConfigError):
        parse_config_text(CONFIG_TEXT + line + "\n", hostname=_hostname)


def test_load_config_reads_file(tmp_path) -> None:
    path = tmp_path / "UserConfig.txt"
    path.write_text(CONFIG_TEXT + "machine_id : m200\n", encoding="utf-8")

    assert load_config(path).machine_id == "m200"


def test_missing_file_is_config_error(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.txt")


def test_telemetry_mode_override() -> None:
    config = parse_config_text(CONFIG_TEXT, hostname=_hostname)

    assert config.with_telemetry_mode(None) is config
    assert config.with_telemetry_mode("broadcast").telemetry_mode is FirmwareVariant.BROADCAST


def test_parse_args() -> None:
    args = parse_args(["UserConfig.txt", "--log-level", "DEBUG", "--telemetry-mode", "broadcast"])

    assert args.config == "UserConfig.txt"
    assert args.log_level == "DEBUG"
    assert args.telemetry_mode == "broadcast"

    defaults = parse_args(["UserConfig.txt"])
    assert defaults.log_level == "INFO"
    assert defaults.telemetry_mode is None
