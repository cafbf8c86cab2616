"""Named stopwatch marks used for campaign, profile and attempt durations."""

from __future__ import annotations

import time
from typing import Callable, Dict


class Timing:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._marks: Dict[str, float] = {}

    def init(self, key: str) -> None:
        self._marks[key] = self._clock()

    def elapsed(self, key: str) -> float:
        """Seconds since ``init(key)``; 0.0 for unknown keys."""
        start = self._marks.get(key)
        if start is None:
            return 0.0
        return max(0.0, self._clock() - start)

    def elapsed_string(self, key: str) -> str:
        return format_duration(self.elapsed(key))


def format_duration(seconds: float) -> str:
    total = int(round(max(0.0, seconds)))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


__all__ = ["Timing", "format_duration"]
