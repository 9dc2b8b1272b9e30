"""
core/durations.py -- Parse short duration strings such as "15m", "1h", "30d".

Used for token lifetimes and cache TTLs configured through the environment.

Units:
  s  seconds
  m  minutes
  h  hours
  d  days
  M  months (fixed 30 days)
"""

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdM])\s*$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 60 * 60 * 24,
    "M": 60 * 60 * 24 * 30,
}


def parse_duration(value: str) -> timedelta:
    """Return the timedelta for a "<int><unit>" string.

    Raises ValueError for a missing number, an unknown unit, or a zero length.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid duration {value!r}. Expected e.g. '30s', '15m', '1h', '7d', '1M'.")
    amount, unit = int(match.group(1)), match.group(2)
    if amount <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}.")
    return timedelta(seconds=amount * _UNIT_SECONDS[unit])
