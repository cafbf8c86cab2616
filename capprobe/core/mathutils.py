"""Small statistics helpers over numeric sequences.

Every function drops non-finite values (NaN, +/-inf) before computing.
Location and dispersion helpers return ``EMPTY`` (-1.0) when nothing finite
is left, which keeps callers free of NaN checks.
"""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np

EMPTY = -1.0


def _finite(values: Iterable[float]) -> np.ndarray:
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def total(values: Iterable[float]) -> float:
    return float(np.sum(_finite(values)))


def mean(values: Iterable[float]) -> float:
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    return float(np.mean(arr))


def min_(values: Iterable[float]) -> float:
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    return float(np.min(arr))


def max_(values: Iterable[float]) -> float:
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    return float(np.max(arr))


def median(values: Iterable[float]) -> float:
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    return float(np.median(arr))


def mad(values: Iterable[float]) -> float:
    """Median absolute deviation around the median."""
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    med = np.median(arr)
    return float(np.median(np.abs(arr - med)))


def std_dev(values: Iterable[float]) -> float:
    """Population standard deviation."""
    arr = _finite(values)
    if arr.size == 0:
        return EMPTY
    return float(np.std(arr))


def sigmoid(x: float, maximum: float) -> float:
    """Odd sigmoid scaled to the open interval (-maximum, maximum)."""
    if maximum <= 0:
        raise ValueError(f"sigmoid maximum must be positive, got {maximum}")
    if math.isnan(x):
        return 0.0
    z = max(-700.0, min(700.0, -x / maximum))
    return (1.0 / (1.0 + math.exp(z)) - 0.5) * maximum * 2.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


__all__ = [
    "EMPTY",
    "total",
    "mean",
    "min_",
    "max_",
    "median",
    "mad",
    "std_dev",
    "sigmoid",
    "round_half_up",
]
