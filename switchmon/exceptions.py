"""Exception hierarchy for switch telemetry collection."""


class TelemetryError(Exception):
    """Base exception for all telemetry errors."""


class ConfigError(TelemetryError):
    """Configuration file missing, unreadable or not valid JSON."""


class SFlowDecodeError(TelemetryError):
    """sFlow datagram is truncated or structurally invalid."""


class SFlowVersionError(SFlowDecodeError):
    """sFlow datagram carries a version other than 5."""

    def __init__(self, message: str, version: int | None = None):
        self.version = version
        super().__init__(message)
