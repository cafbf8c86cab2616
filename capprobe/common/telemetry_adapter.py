"""Normalize raw statistics messages from the media host into TelemetryEvents.

The media host publishes one JSON object per statistic. Two shapes are
understood:

* native statistics: ``{"id": "[MONITOR][1][CAM][10][OUT]", "params": {"fps": "24.9"}}``
  where the id tells which counter the rate belongs to; structural
  notifications carry an ``action`` (``ATTACH``/``DETACH``) instead;
* already typed messages: ``{"kind": "output_fps", "unit_id": 10, "value": 24.9}``.

Anything else is dropped (``None``).
"""
from __future__ import annotations

import re
import time
from typing import Any, Dict, Optional, Pattern

from .state import TelemetryEvent, TelemetryKind

REFERENCE_RE = re.compile(r"GRABBER.*Receive")
OUTPUT_RE = re.compile(r"CAM.*OUT")
HEADLESS_OUTPUT_RE = re.compile(r"FileRecorder.*OUT")
_TRAILING_ID_RE = re.compile(r"([0-9]+)[^0-9]*$")

_ACTIONS = {
    "ATTACH": TelemetryKind.ATTACH,
    "DETACH": TelemetryKind.DETACH,
}


def _coerce_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_int(value: Any) -> Optional[int]:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def unit_id_from(message_id: str) -> Optional[int]:
    """Trailing numeric id of a statistic id (``[MONITOR][1][CAM][10][OUT]`` -> 10)."""
    match = _TRAILING_ID_RE.search(message_id or "")
    return int(match.group(1)) if match else None


def output_pattern(headless: bool) -> Pattern[str]:
    return HEADLESS_OUTPUT_RE if headless else OUTPUT_RE


def normalize_message(
    message: Dict[str, Any],
    *,
    output_re: Pattern[str] = OUTPUT_RE,
    reference_re: Pattern[str] = REFERENCE_RE,
) -> Optional[TelemetryEvent]:
    """Convert one raw message into a TelemetryEvent, or None when irrelevant."""
    if not isinstance(message, dict):
        return None
    timestamp_ns = _coerce_int(message.get("timestamp_ns")) or time.time_ns()

    kind = message.get("kind")
    if kind is not None:
        try:
            typed = TelemetryKind(str(kind).lower())
        except ValueError:
            return None
        return TelemetryEvent(
            kind=typed,
            value=_coerce_float(message.get("value")),
            unit_id=_coerce_int(message.get("unit_id")),
            timestamp_ns=timestamp_ns,
        )

    message_id = message.get("id")
    if not isinstance(message_id, str):
        return None

    action = str(message.get("action") or "").upper()
    if action in _ACTIONS:
        unit_id = unit_id_from(message_id)
        if unit_id is None:
            return None
        return TelemetryEvent(kind=_ACTIONS[action], unit_id=unit_id, timestamp_ns=timestamp_ns)

    params = message.get("params") if isinstance(message.get("params"), dict) else {}
    fps = _coerce_float(params.get("fps"), default=float("nan"))
    if reference_re.search(message_id):
        return TelemetryEvent(kind=TelemetryKind.INPUT_FPS, value=fps, timestamp_ns=timestamp_ns)
    if output_re.search(message_id):
        unit_id = unit_id_from(message_id)
        if unit_id is None:
            return None
        return TelemetryEvent(kind=TelemetryKind.OUTPUT_FPS, value=fps, unit_id=unit_id, timestamp_ns=timestamp_ns)
    return None


__all__ = [
    "normalize_message",
    "unit_id_from",
    "output_pattern",
    "REFERENCE_RE",
    "OUTPUT_RE",
    "HEADLESS_OUTPUT_RE",
]
