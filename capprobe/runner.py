"""Campaign runner: drives experiments over a list of stream profiles.

All engine state is mutated on the thread calling ``Campaign.run()``.
Telemetry arrives as ``TelemetryEvent`` objects on ``Campaign.events``; the
subscriber thread (or a test double) only ever calls ``submit()``.
"""

from __future__ import annotations

import logging
import queue
import time
from typing import Callable, Dict, List, Optional

from .common.control_client import ControlPlaneError
from .common.host_telemetry import HostTelemetryUnavailable
from .common.state import ControlPlane, HostTelemetry, TelemetryEvent, TelemetryKind
from .common.streams import StreamProfile
from .core.config import ProbeOptions
from .core.logging_utils import METRICS
from .core.timing import Timing
from .engine.attempt import Attempt
from .engine.experiment import AttemptOutcome, Experiment, ExperimentRow
from .engine.state import AttemptHandlers, Stage
from .report import ReportWriter

logger = logging.getLogger(__name__)

STAT_TIMEOUT = "Statistics timeout"
WARM_UP_TIMEOUT = "Warm-up timeout"
SETTLING_TOO_LONG = "Settling too long"
LOW_MEMORY = "Not enough memory to continue"
LOST_CONNECTION = "Lost connection during attempt"


class AttemptFailed(RuntimeError):
    """The current attempt cannot produce a valid measurement."""


class Campaign:
    def __init__(
        self,
        options: ProbeOptions,
        control: ControlPlane,
        host: HostTelemetry,
        streams: List[str],
        *,
        report: Optional[ReportWriter] = None,
        start_count: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        event_wait_s: Optional[float] = None,
    ) -> None:
        self.options = options
        self.control = control
        self.host = host
        self.streams = list(streams)
        self.report = report
        self.start_count = start_count
        self.clock = clock
        self.sleep = sleep
        self.event_wait_s = options.stat_interval_s / 4 if event_wait_s is None else event_wait_s
        self.events: "queue.Queue[TelemetryEvent]" = queue.Queue()
        self.timing = Timing(clock)
        self.rows: List[ExperimentRow] = []
        self._routes: Dict[TelemetryKind, Callable[[Attempt, TelemetryEvent], None]] = {
            TelemetryKind.INPUT_FPS: self._on_input_fps,
            TelemetryKind.OUTPUT_FPS: self._on_output_fps,
            TelemetryKind.CPU: self._on_cpu,
            TelemetryKind.MEMORY: self._on_memory,
            TelemetryKind.ATTACH: self._on_structural,
            TelemetryKind.DETACH: self._on_structural,
        }
        self._finished = False
        self._teardown_reason: Optional[str] = None
        self._stream_uri = ""
        self._last_stat = 0.0

    # ------------------------------------------------------------------
    def submit(self, event: TelemetryEvent) -> None:
        """Thread-safe hand-over of one telemetry event."""
        self.events.put(event)

    def run(self) -> List[ExperimentRow]:
        self.timing.init("global")
        for index, uri in enumerate(self.streams, start=1):
            logger.info("Profile %d/%d: %s", index, len(self.streams), uri)
            row = self.run_profile(uri)
            self.rows.append(row)
            if self.report is not None:
                self.report.write_row(row)
        logger.info("Campaign done in %s", self.timing.elapsed_string("global"))
        return self.rows

    def run_profile(self, uri: str) -> ExperimentRow:
        self._stream_uri = uri
        experiment = Experiment(
            self.options,
            StreamProfile.from_uri(uri),
            start_count=self.start_count,
            clock=self.clock,
        )
        self.timing.init("stream")
        experiment.start = self._fetch_date()
        logger.info("Commence testing")

        while True:
            attempt = experiment.new_attempt(self._handlers())
            self.timing.init("test")
            error: Optional[str] = None
            try:
                self.run_attempt(attempt, experiment.start_count)
            except AttemptFailed as exc:
                error = str(exc)
            logger.info("Attempt finished in %s", self.timing.elapsed_string("test"))
            outcome = experiment.conclude(error)
            if outcome in (AttemptOutcome.RETRY, AttemptOutcome.NEXT):
                continue
            break

        experiment.elapsed = self.timing.elapsed_string("stream")
        if experiment.failed:
            logger.error("Profile %s skipped: %s", uri, experiment.last_error)
        return experiment.to_row()

    def run_attempt(self, attempt: Attempt, start_count: int) -> None:
        self._finished = False
        self._teardown_reason = None
        self._drain()
        try:
            self.control.restart_pipeline()
            self._wait_ready()
            attempt.begin_baseline()
            self._pump(attempt, lambda: attempt.fps > 0)
            logger.info("FPS: %.2f", attempt.fps_in)
            attempt.finish_baseline()
            attempt.start_probing(start_count)
            self._pump(attempt, lambda: False)
        except (ControlPlaneError, HostTelemetryUnavailable) as exc:
            raise AttemptFailed(f"{LOST_CONNECTION}: {exc}") from exc
        if self._teardown_reason:
            raise AttemptFailed(self._teardown_reason)

    # ------------------------------------------------------------------
    def _handlers(self) -> AttemptHandlers:
        return AttemptHandlers(
            add=lambda unit_id: self.control.provision_unit(unit_id, self._stream_uri),
            remove=self.control.teardown_unit,
            reinit=lambda unit_id: self.control.reinit_unit(unit_id, self._stream_uri),
            teardown=self._on_teardown,
        )

    def _on_teardown(self, reason: Optional[str] = None) -> None:
        self._finished = True
        self._teardown_reason = reason

    def _fetch_date(self) -> str:
        try:
            return self.host.fetch_date()
        except HostTelemetryUnavailable as exc:
            logger.warning("Cannot fetch host date: %s", exc)
            return ""

    def _drain(self) -> None:
        while True:
            try:
                self.events.get_nowait()
            except queue.Empty:
                return

    def _wait_ready(self) -> None:
        """Block until the host idles below ``cpu_ready_threshold``."""
        opts = self.options
        fails = 0
        logger.info("Waiting for CPU")
        while True:
            usage = self.host.fetch_resource_usage()
            if usage.cpu_percent < opts.cpu_ready_threshold:
                logger.info("CPU OK (%.1f%%)", usage.cpu_percent)
                return
            fails += 1
            logger.debug("CPU %.1f%% not below %.1f%%", usage.cpu_percent, opts.cpu_ready_threshold)
            if fails > opts.max_fails:
                raise AttemptFailed(SETTLING_TOO_LONG)
            self.sleep(opts.cpu_interval_s)

    def _poll_resources(self) -> None:
        usage = self.host.fetch_resource_usage()
        self.submit(TelemetryEvent(TelemetryKind.CPU, usage.cpu_percent))
        self.submit(TelemetryEvent(TelemetryKind.MEMORY, usage.free_memory_mb))

    def _next_event(self) -> Optional[TelemetryEvent]:
        try:
            if self.event_wait_s <= 0:
                return self.events.get_nowait()
            return self.events.get(timeout=self.event_wait_s)
        except queue.Empty:
            return None

    def _pump(self, attempt: Attempt, done: Callable[[], bool]) -> None:
        """Poll collaborators and route events until ``done()`` or teardown.

        While the baseline is measured the attempt fails after
        ``baseline_timeout_s`` even if rejected input rates keep arriving.
        """
        opts = self.options
        now = self.clock()
        started = now
        next_stat = now
        next_cpu = now
        self._last_stat = now
        while not (self._finished or done()):
            now = self.clock()
            if attempt.stage == Stage.MEASURING_BASELINE and now - started > opts.baseline_timeout_s:
                raise AttemptFailed(f"{WARM_UP_TIMEOUT}: no stable input rate after {opts.baseline_timeout_s:.0f}s")
            if attempt.stage == Stage.PROBING and now >= next_cpu:
                self._poll_resources()
                next_cpu = now + opts.cpu_interval_s
            if now >= next_stat:
                self.control.request_telemetry()
                next_stat = now + opts.stat_interval_s
            attempt.tick(now)
            if self._finished:
                break

            event = self._next_event()
            if event is None:
                if self.clock() - self._last_stat > opts.stat_timeout_s:
                    raise AttemptFailed(STAT_TIMEOUT)
                continue
            route = self._routes.get(event.kind)
            if route is not None:
                route(attempt, event)

    # -- routing table ------------------------------------------------------
    def _on_input_fps(self, attempt: Attempt, event: TelemetryEvent) -> None:
        self._last_stat = self.clock()
        if attempt.stage == Stage.MEASURING_BASELINE:
            attempt.add_fps_in(event.value)

    def _on_output_fps(self, attempt: Attempt, event: TelemetryEvent) -> None:
        self._last_stat = self.clock()
        if attempt.stage != Stage.PROBING or event.unit_id is None:
            return
        attempt.add_out_fps(event.unit_id, event.value)
        if event.unit_id == attempt.cam_id and not attempt.is_sequencing:
            attempt.evaluate()

    def _on_cpu(self, attempt: Attempt, event: TelemetryEvent) -> None:
        if attempt.stage == Stage.PROBING:
            attempt.add_cpu(event.value)

    def _on_memory(self, attempt: Attempt, event: TelemetryEvent) -> None:
        if event.value < self.options.free_mb_threshold:
            METRICS.counter("low_memory").inc()
            raise AttemptFailed(f"{LOW_MEMORY} ({event.value:.0f} MB free)")

    def _on_structural(self, attempt: Attempt, event: TelemetryEvent) -> None:
        if event.unit_id is not None and attempt.is_sequencing:
            attempt.confirm(event.unit_id)


__all__ = ["Campaign", "AttemptFailed", "STAT_TIMEOUT", "WARM_UP_TIMEOUT", "SETTLING_TOO_LONG", "LOW_MEMORY", "LOST_CONNECTION"]
