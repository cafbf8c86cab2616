"""Shared dataclasses and collaborator protocols.

These structures describe telemetry events, host resource snapshots and the
contracts of the control plane and host telemetry adapters.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol


class TelemetryKind(enum.Enum):
    """Kinds of measurement events consumed by the probe loop."""

    INPUT_FPS = "input_fps"      # reference (grabber receive) rate of the probe unit
    OUTPUT_FPS = "output_fps"    # rendered/recorded rate of one unit
    CPU = "cpu"                  # host CPU utilisation, percent
    MEMORY = "memory"            # host free memory, MB
    ATTACH = "attach"            # unit instantiated by the control plane
    DETACH = "detach"            # unit removed by the control plane


@dataclass(slots=True)
class TelemetryEvent:
    """One typed measurement; ``unit_id`` is None for host-wide samples."""

    kind: TelemetryKind
    value: float = 0.0
    unit_id: Optional[int] = None
    timestamp_ns: int = field(default_factory=time.time_ns)


@dataclass(slots=True)
class ResourceUsage:
    cpu_percent: float
    free_memory_mb: float


@dataclass(slots=True)
class HostInfo:
    hostname: str
    processor: str = "unknown"
    board: str = "unknown"
    os_name: str = "unknown"
    ram_gb: float = 0.0


class ControlPlane(Protocol):
    """Structural commands understood by the media host."""

    def provision_unit(self, unit_id: int, source_ref: str) -> None: ...

    def teardown_unit(self, unit_id: int) -> None: ...

    def reinit_unit(self, unit_id: int, source_ref: str) -> None: ...

    def request_telemetry(self) -> None: ...

    def restart_pipeline(self) -> None: ...


class HostTelemetry(Protocol):
    """Host level resource readings."""

    def fetch_resource_usage(self) -> ResourceUsage: ...

    def fetch_host_info(self) -> HostInfo: ...

    def fetch_date(self) -> str: ...


__all__ = [
    "TelemetryKind",
    "TelemetryEvent",
    "ResourceUsage",
    "HostInfo",
    "ControlPlane",
    "HostTelemetry",
]
