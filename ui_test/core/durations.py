"""Parsing of human-friendly durations such as ``500ms``, ``30s`` or ``2m``."""

import re
from typing import Union

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Convert a duration to seconds.

    Numbers are taken as seconds. Strings may carry an ``ms``, ``s``, ``m`` or
    ``h`` suffix; a bare number string is seconds.

    Raises:
        ValueError: If the value is negative, boolean or not understood.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration cannot be negative: {value}")
        return float(value)

    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    match = _DURATION_RE.match(value.lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")

    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit or "s"]


def format_duration(seconds: float) -> str:
    """Format seconds for display, e.g. ``0.42s``."""
    return f"{seconds:.2f}s"
