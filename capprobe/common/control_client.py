"""Thin wrapper around the media host control server."""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ControlPlaneError(RuntimeError):
    """Control server unreachable or a command was rejected."""


@dataclass(slots=True)
class ControlClient:
    host: str
    port: int
    timeout: float = 5.0
    rec_path: str = ""
    monitor_id: Optional[int] = None

    def _rpc(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = json.dumps(payload).encode("utf-8") + b"\n"
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout) as conn:
                conn.sendall(data)
                buffer = conn.makefile("r", encoding="utf-8")
                raw = buffer.readline()
        except OSError as exc:
            raise ControlPlaneError(f"control server {self.host}:{self.port} unreachable: {exc}") from exc
        if not raw:
            raise ControlPlaneError("control server closed connection")
        try:
            response = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ControlPlaneError(f"invalid control response: {raw!r}") from exc
        if not isinstance(response, dict):
            raise ControlPlaneError(f"invalid control response: {raw!r}")
        return response

    def _command(self, cmd: str, **params: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"cmd": cmd}
        payload.update(params)
        resp = self._rpc(payload)
        if not resp.get("ok", False):
            raise ControlPlaneError(f"{cmd} failed: {resp.get('error') or resp}")
        return resp

    @property
    def headless(self) -> bool:
        return self.monitor_id is None

    def ping(self) -> bool:
        resp = self._rpc({"cmd": "ping"})
        return bool(resp.get("ok"))

    def start_statistics(self, interval_s: float) -> Dict[str, Any]:
        return self._command("stats_start", interval_s=float(interval_s))

    def request_telemetry(self) -> None:
        self._command("stats_get")

    def setup_monitor(self) -> None:
        if self.headless:
            return
        self._command("monitor_setup", monitor_id=self.monitor_id)

    def provision_unit(self, unit_id: int, source_ref: str) -> None:
        params: Dict[str, Any] = {"unit_id": int(unit_id), "source": source_ref}
        if self.rec_path:
            params["rec_path"] = self.rec_path
        self._command("provision_unit", **params)
        if not self.headless:
            self._command("monitor_show", monitor_id=self.monitor_id, unit_id=int(unit_id))

    def teardown_unit(self, unit_id: int) -> None:
        if not self.headless:
            self._command("monitor_hide", monitor_id=self.monitor_id, unit_id=int(unit_id))
        self._command("teardown_unit", unit_id=int(unit_id))

    def reinit_unit(self, unit_id: int, source_ref: str) -> None:
        logger.debug("Reinitialising unit %d", unit_id)
        self._command("reinit_unit", unit_id=int(unit_id), source=source_ref)

    def restart_pipeline(self) -> None:
        self.stop_pipeline()
        self._command("pipeline_start")
        self.setup_monitor()

    def stop_pipeline(self) -> None:
        self._command("pipeline_stop")


__all__ = ["ControlClient", "ControlPlaneError"]
