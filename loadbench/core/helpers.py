"""
Static helper functions shared by the engine.
"""

import asyncio
import math
import re
from typing import Any

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNIT_MS = {"ms": 1.0, "s": 1000.0, "m": 60_000.0, "h": 3_600_000.0}


def parse_duration_ms(value: Any) -> int:
    """
    Parse a duration into integer milliseconds.

    Accepts plain numbers (already milliseconds), numeric strings, and k6-style
    strings built from ``h``/``m``/``s``/``ms`` parts such as ``"1m30s"``.

    Raises:
        ValueError: For negative, non-finite, or unparseable values.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"duration must be a non-negative number, got {value!r}")
        return int(round(value))
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip().lower()
    if not text:
        raise ValueError("duration must not be empty")
    try:
        return parse_duration_ms(float(text))
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNIT_MS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r} (expected e.g. '30s', '2m', '1h30m')")
    return int(round(total))


def classify_fault(exc: BaseException) -> str:
    """
    Return a stable, low-cardinality category for a scenario failure.

    Faults are expected under load, so they are aggregated by category rather
    than logged individually with full detail.
    """
    category = getattr(exc, "category", None)
    if isinstance(category, str) and category:
        return category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, ConnectionError):
        return "connection_error"
    return type(exc).__name__


def truncate_str_for_log(value: Any, *, max_chars: int = 800) -> str:
    """Truncate a string value for logging."""
    text = str(value if value is not None else "")
    if len(text) > max_chars:
        return text[:max_chars] + "…[truncated]"
    return text
