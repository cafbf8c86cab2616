"""Subscriber for the statistics stream published by the media host."""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern

from .state import TelemetryEvent
from .telemetry_adapter import OUTPUT_RE, REFERENCE_RE, normalize_message

logger = logging.getLogger(__name__)


@dataclass
class TelemetrySubscriber:
    """Background reader turning JSON lines into TelemetryEvents.

    Callbacks run on the subscriber thread; they are expected to do nothing
    but hand the event over (e.g. ``queue.put``).
    """

    host: str
    port: int
    output_re: Pattern[str] = OUTPUT_RE
    reference_re: Pattern[str] = REFERENCE_RE
    reconnect_backoff: float = 1.0
    max_backoff: float = 5.0
    connect_timeout: float = 3.0
    _callbacks: List[Callable[[TelemetryEvent], None]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.connected = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="TelemetrySubscriber", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.5)
        self._thread = None
        self.connected.clear()

    def register_callback(self, func: Callable[[TelemetryEvent], None]) -> None:
        self._callbacks.append(func)

    def _run(self) -> None:
        backoff = self.reconnect_backoff
        while not self._stop.is_set():
            try:
                with socket.create_connection((self.host, self.port), timeout=self.connect_timeout) as conn:
                    conn.settimeout(None)
                    writer = conn.makefile("w", encoding="utf-8", buffering=1)
                    writer.write(json.dumps({"cmd": "subscribe", "timestamp_ns": time.time_ns()}) + "\n")
                    writer.flush()
                    reader = conn.makefile("r", encoding="utf-8")
                    backoff = self.reconnect_backoff
                    self.connected.set()
                    logger.info("Telemetry connected to %s:%d", self.host, self.port)
                    for raw in reader:
                        if self._stop.is_set():
                            break
                        self.dispatch_line(raw)
            except OSError as exc:
                self.connected.clear()
                logger.warning("Telemetry connection lost (%s), retrying in %.1fs", exc, backoff)
                self._stop.wait(backoff)
                backoff = min(backoff * 1.5, self.max_backoff)
            else:
                self.connected.clear()
                if not self._stop.is_set():
                    logger.warning("Telemetry stream closed by peer")
                    self._stop.wait(backoff)

    def dispatch_line(self, raw: str) -> Optional[TelemetryEvent]:
        """Parse one line and hand the resulting event to every callback."""
        event = self.parse_line(raw)
        if event is None:
            return None
        for func in list(self._callbacks):
            try:
                func(event)
            except Exception:
                logger.exception("Telemetry callback failed")
        return event

    def parse_line(self, raw: str) -> Optional[TelemetryEvent]:
        if not raw.strip():
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Dropping malformed telemetry line %r", raw[:120])
            return None
        return normalize_message(payload, output_re=self.output_re, reference_re=self.reference_re)


__all__ = ["TelemetrySubscriber"]
