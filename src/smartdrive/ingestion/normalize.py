"""Normalization helpers.

Centralizes lenient parsing of device values.  The device and the
bridge send numbers as JSON numbers, numeric strings, or not at all.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def is_valid_coordinate(latitude: float | None, longitude: float | None) -> bool:
    """Return True for a finite, non-null-island, in-range lat/lon pair.

    ``0.0`` in either axis is what the device reports before it has a fix,
    so it is treated as missing.
    """
    if latitude is None or longitude is None:
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    if latitude == 0 or longitude == 0:
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0
