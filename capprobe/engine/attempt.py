"""One capacity probing run.

An Attempt measures the input frame rate of the stream with a single probe
unit, then adds and removes units until it finds the largest count at which
every unit still renders the full input rate without pushing the host CPU
over its ceiling.

The attempt never talks to the control plane directly: structural changes go
through ``AttemptHandlers`` and measurements are pushed in by the caller
(``add_fps_in``, ``add_out_fps``, ``add_cpu``). ``evaluate()`` runs the
decision cycle and ``tick()`` services the stall, calm and step timers.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Tuple

from ..core import mathutils
from ..core.config import ProbeOptions
from ..core.logging_utils import METRICS
from ..core.samples import SampleWindow
from .sequencer import StepSequencer
from .state import AttemptHandlers, Decision, Stage, StepAction, StepTask

logger = logging.getLogger(__name__)

STREAM_FAILURE = "Stream failure"


@dataclass(slots=True)
class CpuStats:
    min: float
    mean: float
    max: float


@dataclass(slots=True)
class AttemptSummary:
    count: int
    fps_in: float
    fps_out: float
    cpu: CpuStats
    reinit_requests: int
    history: List[int]


class Attempt:
    """Closed-loop search for the maximum sustainable unit count.

    State
      cam_id          highest live unit id (== live unit count)
      target          count the step executor is heading to
      stage           NOT_STARTED -> MEASURING_BASELINE -> PROBING -> DONE
      fps             accepted input rate (0 until the baseline converges)
      samples         output FPS window keyed by unit id
      cpu_samples     last ``cpu_len`` CPU readings
      cam_history     counts reached at each settle point (append only)
      ff_history      (count, full_fps) per seek, newest first
      last_deviation  most recent MAD; ``inf`` right after a structural change
      ignore_cpu      set by the first seek; CPU extrapolation is off afterwards
    """

    PROBE_UNIT = 1

    def __init__(
        self,
        options: ProbeOptions,
        handlers: Optional[AttemptHandlers] = None,
        *,
        last_count: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.options = options
        self.handle = handlers or AttemptHandlers()
        self.clock = clock
        self.last_count = max(0, int(last_count))
        self._sequencer = StepSequencer(
            self._run_step,
            self._settle,
            confirm_driven=options.confirm_driven,
        )
        self._reset_state()

    def _reset_state(self) -> None:
        self.samples = SampleWindow(self.options.fps_len)
        self.stream_fps = SampleWindow(self.options.fps_len)
        self.stream_fps.init(0)
        self.fps = 0.0
        self.cpu_samples: Deque[float] = deque(maxlen=self.options.cpu_len)
        self.cam_id = 0
        self.target = -1
        self.stage = Stage.NOT_STARTED
        self.cam_history: List[int] = [self.last_count]
        self.ff_history: List[Tuple[int, bool]] = [(0, True)]
        self.last_deviation = math.inf
        self.ignore_cpu = self.last_count != 0
        self.reinit_requests = 0
        self.failure: Optional[str] = None
        self._last_seen: Dict[int, float] = {}
        self._settled_at: Optional[float] = None
        self._step_started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # stage handling
    # ------------------------------------------------------------------
    def next_stage(self, stage: Optional[Stage] = None) -> Stage:
        """Move to ``stage`` (or the following one). Backward moves are ignored."""
        wanted = Stage(self.stage + 1) if stage is None else Stage(stage)
        if wanted < self.stage:
            logger.warning("Ignoring backward stage change %s -> %s", self.stage.name, wanted.name)
            return self.stage
        self.stage = wanted
        return self.stage

    def restart(self) -> None:
        """Forget everything measured so far and return to NOT_STARTED."""
        self._sequencer.cancel()
        self._reset_state()

    @property
    def is_running(self) -> bool:
        return self.stage == Stage.PROBING

    @property
    def is_sequencing(self) -> bool:
        return self._sequencer.active

    @property
    def settled_at(self) -> Optional[float]:
        return self._settled_at

    # ------------------------------------------------------------------
    # baseline
    # ------------------------------------------------------------------
    def begin_baseline(self) -> None:
        self.next_stage(Stage.MEASURING_BASELINE)
        self.stream_fps.reset()
        self.last_deviation = math.inf
        logger.info("Determining input FPS")
        self.handle.add(self.PROBE_UNIT)

    def add_fps_in(self, fps: float) -> bool:
        """Feed one reference rate sample; True once the input rate is accepted."""
        if self.fps:
            return True
        if not math.isfinite(fps) or fps <= self.options.fps_threshold:
            return False
        self.stream_fps.add(0, fps)
        window = self.stream_fps.get(0)
        if len(window) < self.options.fps_len:
            return False

        dev = mathutils.mad(window)
        med = mathutils.median(window)
        logger.debug("Baseline median=%.2f dev=%.3f n=%d", med, dev, len(window))
        if dev <= self.last_deviation * self.options.deviation_growth and dev < self.options.fps_threshold:
            self.fps = med
            self.stream_fps.reset()
            self.last_deviation = math.inf
            logger.info("Input FPS %.2f", self.fps)
            return True
        if dev > 0:
            self.last_deviation = dev
        return False

    def finish_baseline(self) -> None:
        self.handle.remove(self.PROBE_UNIT)

    def start_probing(self, count: int) -> None:
        self.next_stage(Stage.PROBING)
        self.clear_cpu()
        logger.info("Probing from %d units", count)
        self.target_cams(count)

    # ------------------------------------------------------------------
    # measurements
    # ------------------------------------------------------------------
    def add_out_fps(self, unit_id: int, fps: float) -> None:
        if unit_id not in self.samples or not math.isfinite(fps):
            return
        self.samples.add(unit_id, fps)
        if fps <= 0:
            return
        self._last_seen[unit_id] = self.clock()
        task = self._sequencer.last_executed
        if task is None:
            return
        if task.action is StepAction.ADD and task.unit_id == unit_id:
            self.confirm(unit_id)
        elif task.action is StepAction.REMOVE and unit_id == self.cam_id:
            self.confirm(task.unit_id)

    def has_out_fps(self, unit_id: int) -> bool:
        return self.samples.has(unit_id)

    @property
    def last_samples(self) -> List[float]:
        return self.samples.get(self.cam_id)

    def add_cpu(self, cpu: float) -> None:
        if math.isfinite(cpu):
            self.cpu_samples.append(float(cpu))

    def clear_cpu(self) -> None:
        self.cpu_samples.clear()

    @property
    def cpu(self) -> CpuStats:
        values = list(self.cpu_samples)
        return CpuStats(
            min=mathutils.min_(values),
            mean=mathutils.mean(values),
            max=mathutils.max_(values),
        )

    @property
    def fps_in(self) -> float:
        return self.fps

    @property
    def fps_out(self) -> float:
        return self.samples.median

    @property
    def count(self) -> int:
        return self.cam_id

    # ------------------------------------------------------------------
    # convergence checks
    # ------------------------------------------------------------------
    @property
    def has_enough_cpu(self) -> bool:
        return len(self.cpu_samples) == self.options.cpu_len

    @property
    def has_enough_samples(self) -> bool:
        return self.samples.is_complete

    def check_calm(self) -> bool:
        """Calm once the output MAD stops shrinking and is within tolerance.

        Updates ``last_deviation``; call once per evaluation.
        """
        if not self.samples.is_complete:
            return False
        dev = self.samples.mad
        minimising = dev < self.last_deviation
        self.last_deviation = dev
        return not minimising and dev <= self.options.fps_threshold

    @property
    def has_full_fps(self) -> bool:
        return abs(self.samples.median - self.fps_in) < self.options.fps_threshold

    @property
    def has_sane_fps(self) -> bool:
        return self.has_enough_samples and self.samples.median > self.fps_in * self.options.sane_fps_ratio

    @property
    def estimate(self) -> int:
        """Unit count the CPU headroom suggests, discounted against overshoot."""
        usage = self.cpu.mean
        if self.cam_id <= 0 or usage <= 0:
            return self.cam_id
        per_unit = usage / self.cam_id
        return mathutils.round_half_up(self.options.cpu_threshold * self.options.growth_discount / per_unit)

    def _calm_expired(self, now: float) -> bool:
        return self._settled_at is not None and now - self._settled_at > self.options.calm_timeout_s

    # ------------------------------------------------------------------
    # decision cycle
    # ------------------------------------------------------------------
    def evaluate(self, now: Optional[float] = None) -> Decision:
        if self.stage != Stage.PROBING or self._sequencer.active:
            return Decision.HOLD
        now = self.clock() if now is None else now

        if self.has_enough_cpu:
            cpu = self.cpu
            if not self.ignore_cpu and cpu.mean > self.options.cpu_threshold:
                logger.info("CPU overloaded while growing (%.1f%% > %.1f%%)", cpu.mean, self.options.cpu_threshold)
                self.seek(False)
                return Decision.OVERLOAD

            if self.check_calm():
                full = self.has_full_fps
                if self.ignore_cpu:
                    self.seek(full)
                    return Decision.SEEK
                if full:
                    n = self.estimate
                    if n > self.cam_id:
                        logger.info("Estimation %d", n)
                        self.target_cams(n)
                        return Decision.GROW
                    logger.info("Estimated %d, not above current %d", n, self.cam_id)
                    self.seek(True)
                    return Decision.PLATEAU
                logger.info("Estimation overreached (fps: %.2f)", self.samples.median)
                self.seek(False)
                return Decision.OVERSHOOT

        if self._calm_expired(now):
            logger.info("Samples too random for %.0fs", now - (self._settled_at or now))
            self.seek(False)
            return Decision.CALM_TIMEOUT
        return Decision.HOLD

    def tick(self, now: Optional[float] = None) -> Optional[Decision]:
        """Service timers: confirm-step timeout, unit stalls and the calm timeout."""
        if self.stage != Stage.PROBING:
            return None
        now = self.clock() if now is None else now

        if self._sequencer.active:
            task = self._sequencer.last_executed
            if (
                task is not None
                and self._step_started_at is not None
                and now - self._step_started_at > self.options.step_timeout_s
            ):
                logger.warning("No confirmation for %s unit %d, continuing", task.action.value, task.unit_id)
                self.confirm(task.unit_id)
            return None

        for unit_id, seen in list(self._last_seen.items()):
            if unit_id > self.cam_id or unit_id not in self.samples:
                continue
            if now - seen > self.options.stall_timeout_s:
                logger.warning("Unit %d stalled for %.1fs, requesting reinit", unit_id, now - seen)
                METRICS.counter("unit_reinit").inc()
                self.reinit_requests += 1
                self._last_seen[unit_id] = now
                self.handle.reinit(unit_id)

        if self._calm_expired(now):
            logger.info("Calm timeout after %.0fs", now - (self._settled_at or now))
            self.seek(False)
            return Decision.CALM_TIMEOUT
        return None

    # ------------------------------------------------------------------
    # structural steps
    # ------------------------------------------------------------------
    def target_cams(self, target: int) -> None:
        """Add or remove units until ``target`` units are live."""
        self._sequencer.cancel()
        target = int(target)
        self.target = target

        if target <= 0:
            logger.error("Cannot sustain a single unit")
            self.failure = STREAM_FAILURE
            self._settled_at = None
            self.handle.teardown(STREAM_FAILURE)
            return

        if target == self.cam_id:
            self.next_stage(Stage.DONE)
            self._settled_at = None
            logger.info(
                "Done with %d units, fps %.2f/%.2f",
                self.cam_id,
                self.samples.median,
                self.fps_in,
                extra={"units": self.cam_id, "fps_out": self.samples.median, "fps_in": self.fps_in},
            )
            self.handle.teardown(None)
            return

        if target > self.cam_id:
            tasks = [StepTask(StepAction.ADD, uid) for uid in range(self.cam_id + 1, target + 1)]
        else:
            tasks = [StepTask(StepAction.REMOVE, uid) for uid in range(self.cam_id, max(target, 1), -1)]

        self.clear_cpu()
        self._settled_at = None
        self._sequencer.load(tasks)

    def confirm(self, unit_id: int) -> bool:
        """Structural confirmation for the last executed step."""
        task = self._sequencer.last_executed
        if task is None or task.unit_id != unit_id:
            return False
        if task.action is StepAction.ADD and self._growth_blocked():
            logger.warning(
                "Sanity alert CPU:%.1f%% FPS:%.2f, stopping at %d units",
                self.cpu.max,
                self.samples.median,
                self.cam_id,
            )
            self._sequencer.stop()
            return True
        return self._sequencer.advance()

    def _growth_blocked(self) -> bool:
        if self.target <= self.cam_id:
            return False
        overloaded = bool(self.cpu_samples) and self.cpu.mean > self.options.cpu_threshold
        return overloaded or (self.has_enough_samples and not self.has_sane_fps)

    def _run_step(self, task: StepTask) -> None:
        now = self.clock()
        if task.action is StepAction.ADD:
            self.samples.init(task.unit_id)
            self._last_seen[task.unit_id] = now
            self.cam_id = task.unit_id
            logger.debug("+%d", task.unit_id)
            self.handle.add(task.unit_id)
        else:
            self.samples.delete(task.unit_id)
            self._last_seen.pop(task.unit_id, None)
            self.cam_id = task.unit_id - 1
            logger.debug("-%d", task.unit_id)
            self.handle.remove(task.unit_id)
        self._step_started_at = now
        METRICS.gauge("units_live").set(self.cam_id)

    def _settle(self) -> None:
        now = self.clock()
        self.target = self.cam_id
        self.samples.reset()
        self.clear_cpu()
        self.last_deviation = math.inf
        self._step_started_at = None
        if self.cam_history[-1] != self.cam_id:
            self.cam_history.append(self.cam_id)
        for unit_id in self.samples.ids:
            self._last_seen[unit_id] = now
        self._settled_at = now
        logger.info("Settled at %d units", self.cam_id)

    def seek(self, success: bool) -> None:
        """Step the count up (success) or down around the ceiling."""
        count = self.cam_id
        hist = self.cam_history
        step = abs(hist[-1] - hist[-2]) if len(hist) >= 2 else 0

        recorded = [ok for _, ok in self.ff_history[:2]]
        if len(recorded) == 2 and recorded[0] != recorded[1]:
            step //= 2
        elif len(recorded) == 2 and recorded[0] == recorded[1] == success:
            max_jump = max(abs(b - a) for a, b in zip(hist, hist[1:])) if len(hist) >= 2 else 0
            step = min(max_jump, int(step * self.options.seek_growth) + 1)
        if not success:
            step = max(step, 1)

        target = count + step if success else count - step
        floor = max((c for c, ok in self.ff_history if ok), default=0)
        target = max(target, floor)

        self.ff_history.insert(0, (count, bool(success)))
        self.ignore_cpu = True
        METRICS.counter("seek").inc()
        logger.info("Seek %s from %d to %d (step %d)", "up" if success else "down", count, target, step)
        self.target_cams(target)

    # ------------------------------------------------------------------
    def summary(self) -> AttemptSummary:
        return AttemptSummary(
            count=self.cam_id,
            fps_in=self.fps_in,
            fps_out=self.fps_out,
            cpu=self.cpu,
            reinit_requests=self.reinit_requests,
            history=list(self.cam_history),
        )


__all__ = ["Attempt", "AttemptSummary", "CpuStats", "STREAM_FAILURE"]
