"""Host resource telemetry: local (psutil) and remote over SSH (paramiko)."""

from __future__ import annotations

import logging
import platform
import socket
import time
from typing import Dict, List, Optional, Tuple

import paramiko
import psutil

from .state import HostInfo, ResourceUsage

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_SECTION = "@@capprobe@@"


class HostTelemetryUnavailable(RuntimeError):
    """Resource readings could not be obtained from the host."""


# ---------------------------------------------------------------------------
# /proc parsing
# ---------------------------------------------------------------------------
def parse_cpu_times(line: str) -> Tuple[int, int]:
    """Return ``(idle, total)`` jiffies from the aggregate ``cpu`` line of /proc/stat."""
    parts = line.split()
    if not parts or parts[0] != "cpu":
        raise ValueError(f"not an aggregate cpu line: {line!r}")
    values = [int(v) for v in parts[1:]]
    if len(values) < 4:
        raise ValueError(f"truncated cpu line: {line!r}")
    # idle + iowait
    idle = values[3] + (values[4] if len(values) > 4 else 0)
    # guest time is already accounted in user/nice
    total = sum(values[:8])
    return idle, total


def cpu_percent_between(first: str, second: str) -> float:
    idle0, total0 = parse_cpu_times(first)
    idle1, total1 = parse_cpu_times(second)
    elapsed = total1 - total0
    if elapsed <= 0:
        return 0.0
    return round(100.0 * (1.0 - (idle1 - idle0) / elapsed), 1)


def parse_meminfo(text: str) -> Dict[str, int]:
    """Map /proc/meminfo keys to kB values."""
    result: Dict[str, int] = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        fields = rest.split()
        if not fields:
            continue
        try:
            result[key.strip()] = int(fields[0])
        except ValueError:
            continue
    return result


def parse_cpu_model(text: str) -> str:
    for line in text.splitlines():
        key, _, value = line.partition(":")
        if key.strip() in ("model name", "Model", "Hardware"):
            return value.strip()
    return "unknown"


def split_sections(output: str) -> List[str]:
    """Split command output on ``_SECTION`` marker lines."""
    sections: List[str] = [""]
    for line in output.splitlines():
        if line.strip() == _SECTION:
            sections.append("")
        else:
            sections[-1] += line + "\n"
    return sections


def parse_os_release(text: str) -> str:
    for line in text.splitlines():
        if line.startswith("PRETTY_NAME="):
            return line.split("=", 1)[1].strip().strip('"')
    return "unknown"


# ---------------------------------------------------------------------------
# Local host
# ---------------------------------------------------------------------------
class LocalHostTelemetry:
    """Readings of the machine the probe runs on."""

    def __init__(self, sample_interval: float = 0.5) -> None:
        self.sample_interval = sample_interval

    def fetch_resource_usage(self) -> ResourceUsage:
        try:
            cpu = psutil.cpu_percent(interval=self.sample_interval)
            mem = psutil.virtual_memory()
        except psutil.Error as exc:
            raise HostTelemetryUnavailable(f"psutil failed: {exc}") from exc
        return ResourceUsage(cpu_percent=float(cpu), free_memory_mb=mem.available / _MB)

    def fetch_host_info(self) -> HostInfo:
        board = "unknown"
        try:
            with open("/sys/devices/virtual/dmi/id/board_name", "r", encoding="utf-8") as handle:
                board = handle.read().strip() or board
        except OSError:
            pass
        return HostInfo(
            hostname=socket.gethostname(),
            processor=platform.processor() or platform.machine() or "unknown",
            board=board,
            os_name=platform.platform(),
            ram_gb=psutil.virtual_memory().total / (1024 ** 3),
        )

    def fetch_date(self) -> str:
        return time.strftime(_DATE_FORMAT)

    def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Remote host over SSH
# ---------------------------------------------------------------------------
class SshHostTelemetry:
    """Readings of a remote Linux host through a persistent SSH session."""

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
        sample_interval: float = 0.5,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password or None
        self.timeout = timeout
        self.sample_interval = sample_interval
        self._client: Optional[paramiko.SSHClient] = None

    def _ssh(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                allow_agent=True,
                timeout=self.timeout,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise HostTelemetryUnavailable(f"ssh {self.host}:{self.port} failed: {exc}") from exc
        self._client = client
        return client

    def _run(self, command: str) -> str:
        client = self._ssh()
        try:
            _stdin, stdout, stderr = client.exec_command(command, timeout=self.timeout)
            output = stdout.read().decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            self.close()
            raise HostTelemetryUnavailable(f"ssh command failed on {self.host}: {exc}") from exc
        if status != 0:
            err = stderr.read().decode("utf-8", errors="replace").strip()
            raise HostTelemetryUnavailable(f"{command!r} exited with {status}: {err}")
        return output

    def fetch_resource_usage(self) -> ResourceUsage:
        output = self._run(
            f"head -n1 /proc/stat; sleep {self.sample_interval}; head -n1 /proc/stat; cat /proc/meminfo"
        )
        lines = output.splitlines()
        if len(lines) < 3:
            raise HostTelemetryUnavailable(f"unexpected resource output from {self.host}")
        try:
            cpu = cpu_percent_between(lines[0], lines[1])
        except ValueError as exc:
            raise HostTelemetryUnavailable(str(exc)) from exc
        meminfo = parse_meminfo("\n".join(lines[2:]))
        available_kb = meminfo.get("MemAvailable", meminfo.get("MemFree"))
        if available_kb is None:
            raise HostTelemetryUnavailable(f"no free memory figure in /proc/meminfo of {self.host}")
        return ResourceUsage(cpu_percent=cpu, free_memory_mb=available_kb / 1024.0)

    def fetch_host_info(self) -> HostInfo:
        sections = split_sections(
            self._run(
                f"hostname; echo {_SECTION}; cat /proc/cpuinfo; echo {_SECTION}; "
                "cat /sys/devices/virtual/dmi/id/board_vendor /sys/devices/virtual/dmi/id/board_name 2>/dev/null || true; "
                f"echo {_SECTION}; cat /etc/os-release; echo {_SECTION}; cat /proc/meminfo"
            )
        )
        if len(sections) < 5:
            raise HostTelemetryUnavailable(f"unexpected host info output from {self.host}")
        hostname, cpuinfo, board, os_release, meminfo = sections[:5]
        total_kb = parse_meminfo(meminfo).get("MemTotal", 0)
        return HostInfo(
            hostname=hostname.strip() or self.host,
            processor=parse_cpu_model(cpuinfo),
            board=" ".join(board.split()) or "unknown",
            os_name=parse_os_release(os_release),
            ram_gb=total_kb / (1024 ** 2),
        )

    def fetch_date(self) -> str:
        return self._run(f"date '+{_DATE_FORMAT}'").strip()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def build_host_telemetry(cfg: Dict[str, object]):
    """Host telemetry adapter selected by ``CONFIG["HOST_TELEMETRY"]``."""
    if cfg["HOST_TELEMETRY"] == "local":
        return LocalHostTelemetry()
    return SshHostTelemetry(
        str(cfg["SSH_HOST"]),
        port=int(cfg["SSH_PORT"]),
        username=str(cfg["SSH_USERNAME"]) or None,
        password=str(cfg["SSH_PASSWORD"]) or None,
    )


__all__: List[str] = [
    "HostTelemetryUnavailable",
    "LocalHostTelemetry",
    "SshHostTelemetry",
    "build_host_telemetry",
    "cpu_percent_between",
    "parse_cpu_times",
    "parse_meminfo",
    "parse_cpu_model",
    "parse_os_release",
    "split_sections",
]
