"""
Small helpers shared by the chain-data layer and the scanner.

Reserve ratios, basis points, addresses, timestamps and a logger factory
that defers to logging_config when it has been set up.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_current_timestamp() -> float:
    return time.time()


def timestamp_to_iso(timestamp: float) -> str:
    """Unix seconds -> UTC ISO 8601."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Render an interval as seconds, minutes or hours, whichever reads best."""
    if seconds >= 3600:
        return f"{seconds / 3600:.1f}h"
    if seconds >= 60:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.2f}s"


def basis_points_to_decimal(bps: float) -> float:
    """30 bps -> 0.003"""
    return bps / 10000.0


def safe_ratio(numerator: Any, denominator: Any) -> float:
    """
    numerator / denominator for reserve math.

    Anything that is not a positive finite number on either side, or a
    quotient that overflows, gives 0.0 rather than an exception or inf/nan.
    """
    try:
        num = float(numerator)
        den = float(denominator)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not (math.isfinite(num) and math.isfinite(den)) or num <= 0 or den <= 0:
        return 0.0
    result = num / den
    return result if math.isfinite(result) else 0.0


def normalize_address(address: str) -> str:
    """Lower-cased, stripped address used as a dictionary key."""
    return str(address).strip().lower()


def short_address(address: str) -> str:
    """0x1234…abcd for log lines."""
    text = str(address)
    if len(text) <= 12:
        return text
    return f"{text[:6]}…{text[-4:]}"


def format_profit(fraction: float) -> str:
    """Signed percentage with two decimals, e.g. 0.0123 -> '+1.23%'."""
    pct = fraction * 100
    sign = "+" if pct >= 0 else ""
    return f"{sign}{pct:.2f}%"


def get_logger(name: str, level: Union[str, int] = logging.INFO) -> logging.Logger:
    """
    Module logger for the scanner packages.

    Gets its own stream handler only while neither it nor the root logger
    has one; logging_config.setup() removes it again.
    """
    logger = logging.getLogger(name)
    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    return logger
