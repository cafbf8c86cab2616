"""Repeated attempts against one stream profile and their aggregates."""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..core import mathutils
from ..core.config import ProbeOptions
from ..core.logging_utils import METRICS
from ..common.streams import NOT_AVAILABLE, StreamProfile
from .attempt import Attempt
from .state import AttemptHandlers

logger = logging.getLogger(__name__)

DEGENERATE_DATA = "Data is invalid!"


class AttemptOutcome(enum.Enum):
    RETRY = "retry"          # attempt invalidated, run another one
    NEXT = "next"            # attempt accepted, more are needed
    COMPLETE = "complete"    # enough valid attempts, profile finished
    SKIPPED = "skipped"      # too many invalid attempts, profile abandoned


@dataclass(slots=True)
class ExperimentRow:
    vendor: str
    codec: str
    profile: str
    pattern: str
    width: Optional[int]
    height: Optional[int]
    framerate: Optional[float]
    bitrate: str
    fps_in: float
    max_units: int
    dispersion: float
    cpu: float
    score: float
    start: str
    elapsed: str
    failed: bool = False


class Experiment:
    """Runs ``validate_count`` valid attempts for one stream profile.

    The start count of each attempt is derived from the previous attempt's
    result (``drop_count``) so later attempts approach the ceiling from below
    without re-growing from one unit.
    """

    def __init__(
        self,
        options: ProbeOptions,
        profile: Optional[StreamProfile] = None,
        *,
        start_count: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.options = options
        self.profile = profile
        self.start_count = max(1, int(start_count))
        self.clock = clock
        self.attempts: List[Attempt] = []
        self.retries = 0
        self.failed = False
        self.last_error: Optional[str] = None
        self.start = ""
        self.elapsed = ""

    @property
    def attempt(self) -> Optional[Attempt]:
        return self.attempts[-1] if self.attempts else None

    def new_attempt(self, handlers: Optional[AttemptHandlers] = None) -> Attempt:
        previous = self.attempt
        last_count = previous.count if previous is not None else 0
        attempt = Attempt(self.options, handlers, last_count=last_count, clock=self.clock)
        self.attempts.append(attempt)
        return attempt

    def invalidate(self) -> None:
        if self.attempts:
            self.attempts.pop()

    def drop_count(self) -> int:
        count = self.attempt.count if self.attempt is not None else 0
        self.start_count = max(1, math.floor((count or 1) * self.options.drop_ratio))
        return self.start_count

    def conclude(self, error: Optional[str] = None) -> AttemptOutcome:
        """Close the current attempt and decide what the campaign does next."""
        attempt = self.attempt
        if attempt is None:
            raise RuntimeError("conclude() called without an attempt")
        self.drop_count()

        if error is None and attempt.count == 1 and attempt.fps_out <= 0:
            error = DEGENERATE_DATA

        if error:
            self.last_error = error
            self.invalidate()
            self.retries += 1
            METRICS.counter("attempt_invalid").inc()
            if self.retries > self.options.max_retries:
                self.failed = True
                METRICS.counter("profile_failed").inc()
                logger.error("Profile abandoned after %d invalid attempts (%s)", self.retries, error)
                return AttemptOutcome.SKIPPED
            logger.warning("Attempt invalid: %s (retry %d/%d)", error, self.retries, self.options.max_retries)
            return AttemptOutcome.RETRY

        logger.info("Max: %d units, next start %d", attempt.count, self.start_count)
        if self.is_pending:
            return AttemptOutcome.NEXT
        return AttemptOutcome.COMPLETE

    @property
    def is_pending(self) -> bool:
        return not self.failed and len(self.attempts) < self.options.validate_count

    # -- aggregates -------------------------------------------------------
    @property
    def counts(self) -> List[int]:
        return [a.count for a in self.attempts]

    @property
    def cams(self) -> int:
        if not self.attempts:
            return 0
        return mathutils.round_half_up(mathutils.mean(self.counts))

    @property
    def cams_dispersion(self) -> float:
        if not self.attempts:
            return 0.0
        return mathutils.std_dev(self.counts)

    @property
    def cpu(self) -> float:
        return mathutils.mean([c for c in (a.cpu.mean for a in self.attempts) if c >= 0])

    @property
    def fps(self) -> float:
        return mathutils.mean([a.fps_in for a in self.attempts])

    @property
    def score(self) -> float:
        """Pixel throughput per CPU percent, in megapixels."""
        cpu = self.cpu
        pixels = self.profile.pixels if self.profile is not None else 0
        if cpu <= 0 or pixels <= 0:
            return 0.0
        return (pixels * self.cams * self.fps) / (2 ** 20 * cpu)

    def to_row(self) -> ExperimentRow:
        profile = self.profile or StreamProfile(uri="", vendor=NOT_AVAILABLE)
        return ExperimentRow(
            vendor=profile.vendor,
            codec=profile.codec,
            profile=profile.profile,
            pattern=profile.pattern,
            width=profile.width,
            height=profile.height,
            framerate=profile.framerate,
            bitrate=profile.bitrate,
            fps_in=self.fps,
            max_units=self.cams,
            dispersion=self.cams_dispersion,
            cpu=self.cpu,
            score=self.score,
            start=self.start,
            elapsed=self.elapsed,
            failed=self.failed,
        )


__all__ = ["Experiment", "ExperimentRow", "AttemptOutcome", "DEGENERATE_DATA"]
