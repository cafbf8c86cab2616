"""Enumerations and handler bundles used by the probing engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Optional


class Stage(enum.IntEnum):
    """Attempt lifecycle. Ordered: stages only move forward."""

    NOT_STARTED = -1
    MEASURING_BASELINE = 0
    PROBING = 1
    DONE = 2


class Decision(enum.Enum):
    """Branch taken by one evaluation of the decision cycle."""

    HOLD = "hold"                  # keep collecting
    OVERLOAD = "overload"          # CPU over threshold during growth -> seek(False)
    SEEK = "seek"                  # calm after growth phase -> seek(full_fps)
    GROW = "grow"                  # CPU extrapolation above current count
    PLATEAU = "plateau"            # extrapolation not above current count -> seek(True)
    OVERSHOOT = "overshoot"        # calm but degraded FPS -> seek(False)
    CALM_TIMEOUT = "calm_timeout"  # never settled -> seek(False)


class StepAction(enum.Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(slots=True, frozen=True)
class StepTask:
    action: StepAction
    unit_id: int


def _noop_unit(unit_id: int) -> None:
    return None


def _noop_teardown(reason: Optional[str] = None) -> None:
    return None


@dataclass
class AttemptHandlers:
    """Callbacks an Attempt uses to act on the outside world.

    ``teardown(None)`` reports a completed attempt; ``teardown(reason)``
    reports a failure that invalidates it.
    """

    add: Callable[[int], None] = _noop_unit
    remove: Callable[[int], None] = _noop_unit
    reinit: Callable[[int], None] = _noop_unit
    teardown: Callable[[Optional[str]], None] = field(default=_noop_teardown)


__all__ = [
    "Stage",
    "Decision",
    "StepAction",
    "StepTask",
    "AttemptHandlers",
]
