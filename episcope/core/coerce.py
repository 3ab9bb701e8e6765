"""Numeric coercion for values read from metadata and data files.

Parquet encoders hand back the same logical field as a Python int, a
float, a numpy scalar, or a string depending on how the dataset was
written. Everything crossing into Episcope's models goes through these
helpers so downstream code only ever sees canonical numbers.
"""

from __future__ import annotations

import math
import re
from typing import Any

import numpy as np

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def coerce_int(value: Any, default: int = 0) -> int:
    """Coerce an index-like value to int.

    Strings are parsed by their leading integer ("12abc" -> 12), matching
    how loosely-typed metadata writers tend to emit index columns.

    Args:
        value: Raw value from a metadata row.
        default: Returned when the value cannot be coerced.

    Returns:
        Integer value or default.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        if not math.isfinite(value):
            return default
        return int(value)
    if isinstance(value, (str, bytes)):
        text = value.decode() if isinstance(value, bytes) else value
        match = _LEADING_INT.match(text)
        return int(match.group(1)) if match else default
    return default


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Coerce a timestamp-like value to float.

    Args:
        value: Raw value from a metadata row.
        default: Returned when the value cannot be coerced.

    Returns:
        Float value or default.
    """
    if isinstance(value, (bool, int, float, np.integer, np.floating)):
        result = float(value)
        return result if math.isfinite(result) else default
    if isinstance(value, (str, bytes)):
        text = value.decode() if isinstance(value, bytes) else value
        match = _LEADING_FLOAT.match(text)
        return float(match.group(1)) if match else default
    return default


def to_finite_number(value: Any) -> float | None:
    """Return value as a finite float, or None if it is not numeric.

    Unlike coerce_float this does not fall back to a default, so callers
    can tell a missing value apart from a zero.
    """
    if isinstance(value, (bool, np.bool_)):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, np.integer, np.floating)):
        result = float(value)
        return result if math.isfinite(result) else None
    if isinstance(value, str) and value.strip():
        try:
            result = float(value)
        except ValueError:
            return None
        return result if math.isfinite(result) else None
    return None
