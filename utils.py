"""
Numeric utilities shared by the normalizers and the score composer

Contains the band lookup used by every metric, half-up rounding matching the
historical dashboard numbers, and small defensive statistics helpers.
"""

import math
from typing import Optional, Protocol, Sequence, Any


class PenaltyRow(Protocol):
    """Any band row exposing an upper threshold and a penalty"""

    threshold: float
    penalty: float


def lookup_band_penalty(value: float, bands: Sequence[PenaltyRow]) -> float:
    """
    Resolve a measurement to the penalty of its band.

    Bands are ordered ascending by threshold. The first row whose threshold is
    >= value wins; a value above every threshold resolves to the last row; an
    empty table resolves to 0. Never raises.

    Args:
        value: Measurement (minutes, percent, km/h, index)
        bands: Ordered band rows

    Returns:
        float: Penalty of the matching row
    """
    if not bands:
        return 0.0
    for row in bands:
        if value <= row.threshold:
            return float(row.penalty)
    return float(bands[-1].penalty)


def find_band_row(value: float, bands: Sequence[PenaltyRow]) -> Optional[PenaltyRow]:
    """Same rule as lookup_band_penalty, returning the row itself (None for an empty table)"""
    if not bands:
        return None
    for row in bands:
        if value <= row.threshold:
            return row
    return bands[-1]


def round_to(value: float, places: int = 2) -> float:
    """
    Round half away from the floor, like Math.round on a scaled value.

    Python's round() uses banker's rounding, which would make 0.125 -> 0.12
    while the published series has always reported 0.13.
    """
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def coerce_number(value: Any) -> Optional[float]:
    """
    Convert an upstream scalar to a finite float.

    Accepts ints, floats and numeric strings; returns None for anything else
    (null, booleans, non-numeric text, NaN, infinities).
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def median(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def average_penalty(values: Sequence[float], fallback: float) -> float:
    """Mean of per-item penalties rounded to 2 dp; an empty list yields the fallback"""
    if not values:
        return fallback
    return round_to(sum(values) / len(values), 2)
