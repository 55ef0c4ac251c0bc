"""
Common utilities and helper functions for the liquidity agent.

This module provides centralized helpers for timestamps, identifiers,
display formatting and structured logging.
"""

import logging
import random
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union


# Timestamp utilities
def get_current_millis() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Identifier utilities
def generate_receipt_id(prefix: str, rng: Optional[random.Random] = None) -> str:
    """
    Build a receipt identifier of the form ``<prefix>_<millis>_<suffix>``.

    Args:
        prefix: Short flow prefix, e.g. ``pos`` or ``wd``
        rng: Optional random source for reproducible identifiers

    Returns:
        Identifier string
    """
    rng = rng or random
    suffix = "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"{prefix}_{get_current_millis()}_{suffix}"


# Formatting utilities
def short_address(address: Optional[str]) -> str:
    """Shorten a hex address for log output (0x1234...abcd)."""
    if not address:
        return "-"
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_units(units: int, decimals: int, places: int = 6) -> str:
    """Render integer base units as a human-readable decimal string."""
    value = Decimal(units) / (Decimal(10) ** decimals)
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    return text or "0"


def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
) -> Union[logging.Logger, logging.LoggerAdapter]:
    """
    Get a structured logger with consistent formatting and extra context.

    A handler is only attached when the root logger is unconfigured, so
    applications that call ``logging_config.setup()`` do not get duplicate
    lines.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages

    Returns:
        Configured logger with structured output
    """
    logger = logging.getLogger(name)

    # Set level if not already set
    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        format_str = (
            "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
        )
        if extra:
            extra_fields = " | ".join([f"{k}=%(extra_{k})s" for k in extra.keys()])
            format_str = format_str.replace(
                " | %(message)s", f" | {extra_fields} | %(message)s"
            )
        handler.setFormatter(logging.Formatter(format_str, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
        logger.propagate = False

    if extra:
        return logging.LoggerAdapter(logger, {"extra_" + k: v for k, v in extra.items()})

    return logger
