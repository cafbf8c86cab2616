"""Explicit add/remove sequencer.

A sequence is a list of ``StepTask`` items plus a cursor. In fire-and-continue
mode every task runs as soon as the sequence is loaded; in confirm-driven mode
one task runs per ``advance()`` (normally called when the control plane
confirms the previous task). Loading or cancelling bumps a generation token so
confirmations meant for an older sequence are ignored.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from .state import StepTask

logger = logging.getLogger(__name__)


class StepSequencer:
    def __init__(
        self,
        execute: Callable[[StepTask], None],
        on_settled: Callable[[], None],
        *,
        confirm_driven: bool = False,
    ) -> None:
        self._execute = execute
        self._on_settled = on_settled
        self.confirm_driven = confirm_driven
        self.generation = 0
        self._tasks: List[StepTask] = []
        self._cursor = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def last_executed(self) -> Optional[StepTask]:
        if not self._active or self._cursor == 0:
            return None
        return self._tasks[self._cursor - 1]

    @property
    def remaining(self) -> List[StepTask]:
        return list(self._tasks[self._cursor:]) if self._active else []

    def load(self, tasks: Sequence[StepTask]) -> int:
        """Replace any in-flight sequence and start ``tasks``; returns the new generation."""
        self.cancel()
        self._tasks = list(tasks)
        self._cursor = 0
        self._active = True
        generation = self.generation
        if self.confirm_driven:
            self.advance(generation)
        else:
            while self._active and generation == self.generation:
                self.advance(generation)
        return generation

    def advance(self, generation: Optional[int] = None) -> bool:
        """Run the next task, or settle when none is left.

        Returns False when the call was stale or nothing was in flight.
        """
        if generation is not None and generation != self.generation:
            logger.debug("Ignoring stale sequencer advance gen=%s current=%s", generation, self.generation)
            return False
        if not self._active:
            return False
        if self._cursor >= len(self._tasks):
            self._finish()
            return True
        task = self._tasks[self._cursor]
        self._cursor += 1
        self._execute(task)
        return True

    def stop(self) -> None:
        """Drop the remaining tasks but settle on what already ran."""
        if not self._active:
            return
        self._tasks = self._tasks[: self._cursor]
        self._finish()

    def cancel(self) -> None:
        """Drop the sequence without settling."""
        self.generation += 1
        self._tasks = []
        self._cursor = 0
        self._active = False

    def _finish(self) -> None:
        self._active = False
        self.generation += 1
        self._tasks = []
        self._cursor = 0
        self._on_settled()


__all__ = ["StepSequencer"]
