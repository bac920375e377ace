"""Friendly duration parsing.

Accepts plain numbers (seconds) or strings such as ``"250ms"``,
``"60 sec"``, ``"5m"``, ``"2w"`` or ``"1.5 days"``.
"""

import re
from typing import Optional, Union

from .exceptions import ConfigError


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-z]*)\s*$", re.IGNORECASE)

_UNITS = {
    "": 1.0,
    "us": 0.000001, "usec": 0.000001, "usecs": 0.000001,
    "ms": 0.001, "msec": 0.001, "msecs": 0.001,
    "s": 1.0, "sec": 1.0, "secs": 1.0, "second": 1.0, "seconds": 1.0,
    "m": 60.0, "min": 60.0, "mins": 60.0, "minute": 60.0, "minutes": 60.0,
    "h": 3600.0, "hour": 3600.0, "hours": 3600.0,
    "d": 86400.0, "day": 86400.0, "days": 86400.0,
    "w": 604800.0, "week": 604800.0, "weeks": 604800.0,
}


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Convert a duration to seconds.

    Args:
        value: Number of seconds, a friendly duration string, or None

    Returns:
        Duration in seconds as a float, or None if value is None

    Raises:
        ConfigError: If the value cannot be parsed or is negative
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Duration must not be negative: {value!r}")
        return float(value)

    match = _DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"Invalid duration: {value!r}")

    amount, unit = match.groups()
    multiplier = _UNITS.get(unit.lower())
    if multiplier is None:
        raise ConfigError(f"Unknown duration unit {unit!r} in {value!r}")
    return float(amount) * multiplier
