"""Tab separated campaign report."""

from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import IO, List, Optional, Union

from .common.state import HostInfo
from .core.config import ProbeOptions
from .engine.experiment import ExperimentRow

logger = logging.getLogger(__name__)

COLUMNS = [
    "Vendor",
    "Format",
    "Profile",
    "Pattern",
    "Width",
    "Height",
    "FPS",
    "Bitrate",
    "FPS(input)",
    "Max.cameras",
    "σ",
    "CPU",
    "Score",
    "Start time",
    "Elapsed time",
]

FAILED = "FAILED"

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9\-_.]")


def report_filename(hostname: str, processor: str, timestamp: str) -> str:
    return _UNSAFE_RE.sub("_", f"{hostname}_{processor}_{timestamp}.tsv")


def _fmt(value: Optional[object]) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.2f}"
    return str(value)


def format_row(row: ExperimentRow) -> List[str]:
    head = [
        row.vendor,
        row.codec,
        row.profile,
        row.pattern,
        _fmt(row.width),
        _fmt(row.height),
        _fmt(row.framerate),
        row.bitrate,
    ]
    if row.failed:
        return head + [FAILED] * 5 + [row.start, row.elapsed]
    return head + [
        f"{row.fps_in:.2f}",
        str(row.max_units),
        f"{row.dispersion:.2f}",
        f"{row.cpu:.2f}",
        f"{row.score:.2f}",
        row.start,
        row.elapsed,
    ]


class ReportWriter:
    """Writes the header block once, then one line per finished profile."""

    def __init__(self, directory: Union[str, Path], host: HostInfo, options: ProbeOptions, timestamp: str) -> None:
        self.directory = Path(directory)
        self.host = host
        self.options = options
        self.path = self.directory / report_filename(host.hostname, host.processor, timestamp)
        self._handle: Optional[IO[str]] = None
        self._writer = None

    def open(self) -> "ReportWriter":
        self.directory.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._handle, delimiter="\t", lineterminator="\n")
        opts = self.options
        for key, value in (
            ("OS", self.host.os_name),
            ("CPU", self.host.processor),
            ("Board", self.host.board),
            ("RAM", f"{self.host.ram_gb:.2f}GB"),
            ("Attempts", opts.validate_count),
            ("Stat. interval", opts.stat_interval_s),
            ("CPU usage samples", opts.cpu_len),
            ("FPS samples", opts.fps_len),
            ("FPS threshold", opts.fps_threshold),
            ("CPU threshold", opts.cpu_threshold),
        ):
            self._writer.writerow([key, value])
        self._writer.writerow(COLUMNS)
        self._handle.flush()
        logger.info("Writing report to %s", self.path)
        return self

    def write_row(self, row: ExperimentRow) -> None:
        if self._writer is None:
            raise RuntimeError("report is not open")
        self._writer.writerow(format_row(row))
        self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None

    def __enter__(self) -> "ReportWriter":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["ReportWriter", "report_filename", "format_row", "COLUMNS", "FAILED"]
