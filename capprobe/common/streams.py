"""Stream profile parsing and stream list loading."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "n/a"

_KEYVAL_RE = re.compile(r"(\w+)=(\w+)")
_ENCODER_RE = re.compile(r"(\w+?)enc\b")
_LOCATION_RE = re.compile(r"location=([^~!\s]+)")
_RESOLUTION_RE = re.compile(r"^(\d+)x(\d+)$")


@dataclass(slots=True)
class StreamProfile:
    """Attributes of one stream under test, as far as the URI reveals them."""

    uri: str
    vendor: str
    codec: str = NOT_AVAILABLE
    width: Optional[int] = None
    height: Optional[int] = None
    framerate: Optional[float] = None
    profile: str = NOT_AVAILABLE
    bitrate: str = NOT_AVAILABLE
    pattern: str = NOT_AVAILABLE

    @property
    def pixels(self) -> int:
        if not self.width or not self.height:
            return 0
        return self.width * self.height

    @classmethod
    def from_uri(cls, uri: str) -> "StreamProfile":
        """Parse a GStreamer pipeline URI or a ``location=`` file-name style URI.

        Pipeline form::

            videotestsrc pattern=ball ! video/x-raw,width=1280,height=720,framerate=25/1
              ! x264enc bitrate=2048 ! ...

        File-name form (``Vendor+Name_H264_800x600_30.ts``)::

            filesrc location=/streams/Acme+Cam_H264_800x600_30.ts ! ...
        """
        uri = uri.strip()
        location = _LOCATION_RE.search(uri)
        if location and not _ENCODER_RE.search(uri):
            return cls._from_filename(uri, location.group(1))

        props = {}
        for key, value in _KEYVAL_RE.findall(uri):
            # last occurrence wins
            props[key] = value
        if not props:
            return cls(uri=uri, vendor=uri)

        encoder = _ENCODER_RE.search(uri)
        return cls(
            uri=uri,
            vendor="GStreamer",
            codec=encoder.group(1) if encoder else NOT_AVAILABLE,
            width=_to_int(props.get("width")),
            height=_to_int(props.get("height")),
            framerate=_to_float(props.get("framerate")),
            profile=props.get("profile", NOT_AVAILABLE),
            bitrate=props.get("bitrate", NOT_AVAILABLE),
            pattern=props.get("pattern", NOT_AVAILABLE),
        )

    @classmethod
    def _from_filename(cls, uri: str, location: str) -> "StreamProfile":
        name = location.rsplit("/", 1)[-1].split(".", 1)[0]
        fields: List[str] = []
        for part in name.replace("+", " ").split("_"):
            resolution = _RESOLUTION_RE.match(part)
            if resolution:
                fields.extend(resolution.groups())
            else:
                fields.append(part)
        fields += [""] * (5 - len(fields))
        vendor, codec, width, height, fps = fields[:5]
        return cls(
            uri=uri,
            vendor=vendor or uri,
            codec=codec or NOT_AVAILABLE,
            width=_to_int(width),
            height=_to_int(height),
            framerate=_to_float(fps),
        )


def _to_int(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


def _to_float(raw: Optional[str]) -> Optional[float]:
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def load_stream_list(path: Union[str, Path, None], fallback: str = "") -> List[str]:
    """Return one URI per non-empty line of ``path``; ``[fallback]`` if unreadable."""
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            logger.info("Stream list %s not readable (%s), using single stream", path, exc)
        else:
            streams = [line.strip() for line in text.splitlines() if line.strip()]
            if streams:
                return streams
    return [fallback] if fallback else []


__all__ = ["StreamProfile", "load_stream_list", "NOT_AVAILABLE"]
