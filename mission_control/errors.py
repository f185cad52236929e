"""Exception types raised across the mission control service."""


class MissionControlError(Exception):
    """Base class for mission control errors."""


class TransportError(MissionControlError, ConnectionError):
    """The message bus is unreachable or dropped the connection."""


class CommandDecodeError(MissionControlError, ValueError):
    """An inbound message is malformed or carries an unknown command tag."""

    def __init__(self, message: str, *, tag: str = "") -> None:
        super().__init__(message)
        self.tag = tag


class ConfigError(MissionControlError):
    """The service configuration is missing or invalid."""
