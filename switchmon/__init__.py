"""Switch interface telemetry collector.

Collects per-interface traffic rates from network switches via SNMP polling
and sFlow v5 counter samples, and keeps a per-day JSONL history.
"""

__version__ = "0.1.0"

import os
import sys
from typing import Any, Callable, Dict

from loguru import logger as glogger

glogger.disable(__name__)


def _loguru_skiplog_filter(record: dict) -> bool:  # type: ignore[type-arg]
    """Filter function to hide records with ``extra['skiplog']`` set."""
    return not record.get("extra", {}).get("skiplog", False)


def configure_logging(
    loguru_filter: Callable[[Dict[str, Any]], bool] = _loguru_skiplog_filter,
) -> None:
    """Configure a default ``loguru`` sink with a convenient format and filter."""
    os.environ["LOGURU_LEVEL"] = os.getenv("LOGURU_LEVEL", "INFO")
    glogger.remove()
    logger_fmt: str = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>::<cyan>{extra[classname]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    glogger.add(sys.stderr, level=os.getenv("LOGURU_LEVEL"), format=logger_fmt, filter=loguru_filter)  # type: ignore[arg-type]
    glogger.configure(extra={"classname": "None", "skiplog": False})
    glogger.enable(__name__)


from switchmon.config import MonitorConfig, SFlowSettings, SnmpV3User, SwitchTarget, load_config  # noqa: E402
from switchmon.exceptions import ConfigError, SFlowDecodeError, SFlowVersionError, TelemetryError  # noqa: E402
from switchmon.models import HistoryRecord, RateSnapshot, RawCounterSample, Status  # noqa: E402

__all__ = [
    "glogger",
    "configure_logging",
    "load_config",
    "MonitorConfig",
    "SFlowSettings",
    "SnmpV3User",
    "SwitchTarget",
    "HistoryRecord",
    "RateSnapshot",
    "RawCounterSample",
    "Status",
    "TelemetryError",
    "ConfigError",
    "SFlowDecodeError",
    "SFlowVersionError",
]
