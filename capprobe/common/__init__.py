"""Collaborator adapters shared by the campaign runner."""

from .control_client import ControlClient, ControlPlaneError
from .host_telemetry import HostTelemetryUnavailable, LocalHostTelemetry, SshHostTelemetry
from .state import HostInfo, ResourceUsage, TelemetryEvent, TelemetryKind
from .streams import StreamProfile, load_stream_list
from .telemetry import TelemetrySubscriber
from .telemetry_adapter import normalize_message

__all__ = [
    "ControlClient",
    "ControlPlaneError",
    "HostTelemetryUnavailable",
    "LocalHostTelemetry",
    "SshHostTelemetry",
    "HostInfo",
    "ResourceUsage",
    "TelemetryEvent",
    "TelemetryKind",
    "StreamProfile",
    "load_stream_list",
    "TelemetrySubscriber",
    "normalize_message",
]
