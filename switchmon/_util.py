"""Private helper functions shared across switchmon modules."""

from __future__ import annotations

import re
import sys
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError, ValidatorFunctionWrapHandler


def fallback_to_default(
    model: type[BaseModel],
    field_name: str,
    value: Any,
    handler: ValidatorFunctionWrapHandler,
) -> Any:
    """Validate ``value`` and fall back to the field default when it does not parse.

    Used from ``mode="wrap"`` field validators so an ill-typed field in a
    config file or history line degrades to its default instead of
    rejecting the whole document.
    """
    try:
        return handler(value)
    except ValidationError:
        default = model.model_fields[field_name].get_default(call_default_factory=True)
        logger.warning(f"{model.__name__}.{field_name}: invalid value {value!r}, using default {default!r}")
        return default


def sanitize_path_segment(value: str) -> str:
    """Make an IP address (v4 or v6) safe to use as a directory name."""
    return re.sub(r"[:/\\]", "_", value.strip())


def format_bits(bps: float) -> str:
    """Format a bits-per-second value, e.g. ``12.50Mbps``."""
    if bps >= 1_000_000_000:
        return f"{bps / 1_000_000_000:.2f}Gbps"
    if bps >= 1_000_000:
        return f"{bps / 1_000_000:.2f}Mbps"
    if bps >= 1_000:
        return f"{bps / 1_000:.2f}Kbps"
    return f"{bps:.0f}bps"


def format_speed(label: str) -> str:
    """Format a raw ifSpeed label (bits per second) as ``1G``, ``100M`` ..."""
    try:
        speed = float(label)
    except (TypeError, ValueError):
        return "-"
    for divisor, suffix in ((1_000_000_000, "G"), (1_000_000, "M"), (1_000, "K")):
        if speed >= divisor:
            return f"{speed / divisor:.1f}".rstrip("0").rstrip(".") + suffix
    return f"{speed:.0f}"


def truncate(text: str, length: int) -> str:
    """Shorten ``text`` to ``length`` characters, marking the cut with an ellipsis."""
    if len(text) <= length:
        return text
    if length <= 1:
        return "…"
    return text[: length - 1] + "…"


def configure_cli_logging(verbose: bool) -> None:
    """Plain stderr logging for a sub-CLI: DEBUG with ``--verbose``, else INFO."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    logger.enable("switchmon")
