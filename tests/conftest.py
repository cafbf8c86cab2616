"""Shared fixtures: small probe options, a deterministic clock, fake collaborators."""

from typing import List, Optional, Tuple

import pytest

from capprobe.common.state import HostInfo, ResourceUsage, TelemetryEvent, TelemetryKind
from capprobe.core.config import ProbeOptions
from capprobe.core.logging_utils import METRICS
from capprobe.engine.attempt import Attempt
from capprobe.engine.state import AttemptHandlers


class TickingClock:
    """Monotonic fake clock; every read advances it by ``step`` seconds."""

    def __init__(self, start: float = 1000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHandlers:
    """Collects every handler call as ``(name, arg)``."""

    def __init__(self):
        self.calls: List[Tuple[str, object]] = []
        self.teardowns: List[Optional[str]] = []

    def bundle(self) -> AttemptHandlers:
        return AttemptHandlers(
            add=lambda unit_id: self.calls.append(("add", unit_id)),
            remove=lambda unit_id: self.calls.append(("remove", unit_id)),
            reinit=lambda unit_id: self.calls.append(("reinit", unit_id)),
            teardown=self._teardown,
        )

    def _teardown(self, reason=None):
        self.calls.append(("teardown", reason))
        self.teardowns.append(reason)

    def named(self, name: str) -> list:
        return [arg for call, arg in self.calls if call == name]

    def clear(self) -> None:
        self.calls.clear()
        self.teardowns.clear()


class SimulatedHost:
    """In-process media host: control plane plus host telemetry.

    Every live unit costs ``cpu_per_unit`` percent. Up to ``capacity`` units
    render the full input rate; beyond it the rate is shared.
    """

    def __init__(self, sink, *, capacity=6, cpu_per_unit=10.0, fps=25.0, free_mb=4096.0):
        self.sink = sink
        self.capacity = capacity
        self.cpu_per_unit = cpu_per_unit
        self.fps = fps
        self.free_mb = free_mb
        self.units = set()
        self.restarts = 0
        self.provisioned: List[int] = []

    # ControlPlane
    def provision_unit(self, unit_id, source_ref):
        self.units.add(unit_id)
        self.provisioned.append(unit_id)

    def teardown_unit(self, unit_id):
        self.units.discard(unit_id)

    def reinit_unit(self, unit_id, source_ref):
        self.units.add(unit_id)

    def restart_pipeline(self):
        self.restarts += 1
        self.units.clear()

    def request_telemetry(self):
        if not self.units:
            return
        self.sink(TelemetryEvent(TelemetryKind.INPUT_FPS, self.fps))
        n = len(self.units)
        rate = self.fps if n <= self.capacity else self.fps * self.capacity / n
        for unit_id in sorted(self.units):
            self.sink(TelemetryEvent(TelemetryKind.OUTPUT_FPS, rate, unit_id=unit_id))

    # HostTelemetry
    def fetch_resource_usage(self):
        return ResourceUsage(cpu_percent=self.cpu_per_unit * len(self.units), free_memory_mb=self.free_mb)

    def fetch_host_info(self):
        return HostInfo(hostname="sim-host", processor="Sim CPU @ 3.0GHz", board="SimBoard", os_name="SimOS", ram_gb=8.0)

    def fetch_date(self):
        return "2024-01-01 00:00:00"


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def options():
    return ProbeOptions(fps_len=4, cpu_len=3, fps_threshold=1.0, cpu_threshold=80.0)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def handlers():
    return RecordingHandlers()


def make_probing(options, handlers, clock, count, *, fps=25.0, last_count=0) -> Attempt:
    """Attempt with an accepted input rate, probing at ``count`` units."""
    attempt = Attempt(options, handlers.bundle(), last_count=last_count, clock=clock)
    attempt.begin_baseline()
    for _ in range(options.fps_len):
        attempt.add_fps_in(fps)
    assert attempt.fps_in == fps
    attempt.finish_baseline()
    attempt.start_probing(count)
    handlers.clear()
    return attempt


def feed_round(attempt: Attempt, fps: float, cpu: Optional[float] = None) -> None:
    """One telemetry round: an output sample for every live unit, then an optional CPU reading."""
    for unit_id in range(1, attempt.cam_id + 1):
        attempt.add_out_fps(unit_id, fps)
    if cpu is not None:
        attempt.add_cpu(cpu)


@pytest.fixture
def probing():
    return make_probing
