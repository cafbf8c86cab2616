"""Fixed-capacity sample windows keyed by unit id.

Each id owns ``length + 1`` slots. The extra slot lets aggregates skip the
newest sample of every id: a measurement that has just arrived may still be
settling and would otherwise widen the deviation used for convergence checks.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import numpy as np

from . import mathutils

UNSET = 0.0


class SampleWindow:
    """Ring buffer of positive samples per registered id.

    A slot is valid when it holds a value greater than ``UNSET``; writes of
    zero or negative values therefore read back as gaps.
    """

    def __init__(self, length: int) -> None:
        if length < 1:
            raise ValueError(f"window length must be >= 1, got {length}")
        self.length = length
        self.slots_per_id = length + 1
        self._slots: Dict[int, np.ndarray] = {}
        self._cursor: Dict[int, int] = {}
        self._median: Optional[float] = None

    # -- membership -----------------------------------------------------
    def init(self, unit_id: int) -> None:
        if unit_id in self._slots:
            return
        self._slots[unit_id] = np.full(self.slots_per_id, UNSET)
        self._cursor[unit_id] = -1
        self._median = None

    def delete(self, unit_id: int) -> None:
        if unit_id not in self._slots:
            return
        del self._slots[unit_id]
        del self._cursor[unit_id]
        self._median = None

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._slots

    @property
    def ids(self) -> List[int]:
        return sorted(self._slots)

    # -- writes ---------------------------------------------------------
    def add(self, unit_id: int, value: float) -> None:
        slots = self._slots.get(unit_id)
        if slots is None:
            return
        idx = (self._cursor[unit_id] + 1) % self.slots_per_id
        slots[idx] = value if np.isfinite(value) else UNSET
        self._cursor[unit_id] = idx
        self._median = None

    def reset(self) -> None:
        for unit_id, slots in self._slots.items():
            slots.fill(UNSET)
            self._cursor[unit_id] = -1
        self._median = None

    # -- reads ----------------------------------------------------------
    def get(self, unit_id: int) -> List[float]:
        """Most recent ``length`` valid samples, oldest first."""
        slots = self._slots.get(unit_id)
        if slots is None:
            return []
        cursor = self._cursor[unit_id]
        if cursor < 0:
            return []
        order = [(cursor - offset) % self.slots_per_id for offset in range(self.length - 1, -1, -1)]
        return [float(slots[i]) for i in order if slots[i] > UNSET]

    def has(self, unit_id: int) -> bool:
        return bool(self.get(unit_id))

    def newest(self, unit_id: int) -> Optional[float]:
        slots = self._slots.get(unit_id)
        if slots is None or self._cursor[unit_id] < 0:
            return None
        value = float(slots[self._cursor[unit_id]])
        return value if value > UNSET else None

    @property
    def is_complete(self) -> bool:
        """Every registered id has filled its last slot at least once."""
        if not self._slots:
            return False
        return all(slots[-1] > UNSET for slots in self._slots.values())

    @property
    def all(self) -> List[float]:
        """Valid samples of every id except each id's newest one."""
        collected: List[float] = []
        for unit_id in sorted(self._slots):
            slots = self._slots[unit_id]
            cursor = self._cursor[unit_id]
            collected.extend(float(v) for i, v in enumerate(slots) if i != cursor and v > UNSET)
        return collected

    @property
    def median(self) -> float:
        if self._median is None:
            self._median = mathutils.median(self.all)
        return self._median

    @property
    def mad(self) -> float:
        return mathutils.mad(self.all)

    @property
    def mean(self) -> float:
        return mathutils.mean(self.all)

    def extend(self, unit_id: int, values: Iterable[float]) -> None:
        for value in values:
            self.add(unit_id, value)


__all__ = ["SampleWindow", "UNSET"]
