"""
Configuration for the capacity probe.

Two layers live here:

* ``CONFIG`` - connection and campaign defaults (control plane, telemetry,
  host telemetry, paths). Selected keys can be overridden from the
  environment as ``CAPPROBE_<KEY>``.
* ``ProbeOptions`` - every tuning knob the probing engine understands, with
  documented defaults and validation.
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union


class ConfigError(ValueError):
    """Raised when configuration values are missing or out of range."""


# Default configuration - all required keys with correct types
CONFIG = {
    # Control plane (newline-delimited JSON RPC)
    "CONTROL_HOST": "127.0.0.1",
    "CONTROL_PORT": 48090,
    "CONTROL_TIMEOUT": 5.0,

    # Statistics stream published by the media host
    "TELEMETRY_HOST": "127.0.0.1",
    "TELEMETRY_PORT": 48091,

    # Host resource telemetry: "local" (psutil) or "ssh" (paramiko)
    "HOST_TELEMETRY": "ssh",
    "SSH_HOST": "127.0.0.1",
    "SSH_PORT": 22,
    "SSH_USERNAME": "probe",
    "SSH_PASSWORD": "",

    # Campaign inputs / outputs
    "STREAM": "",
    "STREAM_LIST": "streams.txt",
    "REPORT_DIR": "reports",
    "REC_PATH": "",

    # Monitor used to display units; headless runs skip show/hide calls
    "MONITOR_ID": 1,
    "HEADLESS": True,

    # Stop the media pipeline when the campaign exits
    "STOP_ON_EXIT": False,
}


# Required keys with their expected types
_REQUIRED_KEYS = {
    "CONTROL_HOST": str,
    "CONTROL_PORT": int,
    "CONTROL_TIMEOUT": float,
    "TELEMETRY_HOST": str,
    "TELEMETRY_PORT": int,
    "HOST_TELEMETRY": str,
    "SSH_HOST": str,
    "SSH_PORT": int,
    "SSH_USERNAME": str,
    "SSH_PASSWORD": str,
    "STREAM": str,
    "STREAM_LIST": str,
    "REPORT_DIR": str,
    "REC_PATH": str,
    "MONITOR_ID": int,
    "HEADLESS": bool,
    "STOP_ON_EXIT": bool,
}

# Keys that can be overridden by environment variables
_ENV_OVERRIDABLE = {
    "CONTROL_HOST",
    "CONTROL_PORT",
    "TELEMETRY_HOST",
    "TELEMETRY_PORT",
    "HOST_TELEMETRY",
    "SSH_HOST",
    "SSH_PORT",
    "SSH_USERNAME",
    "SSH_PASSWORD",
    "REPORT_DIR",
    "HEADLESS",
}

_ENV_PREFIX = "CAPPROBE_"

_HOST_TELEMETRY_MODES = {"local", "ssh"}


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Ensure all required keys exist with correct types/ranges.
    Raise ConfigError("<reason>") on any violation.
    """
    missing_keys = set(_REQUIRED_KEYS.keys()) - set(cfg.keys())
    if missing_keys:
        raise ConfigError(f"CONFIG missing required keys: {', '.join(sorted(missing_keys))}")

    for key, expected_type in _REQUIRED_KEYS.items():
        value = cfg[key]
        if expected_type is float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"CONFIG[{key}] must be float, got {type(value).__name__}")
            continue
        if expected_type is int and isinstance(value, bool):
            raise ConfigError(f"CONFIG[{key}] must be int, got bool")
        if not isinstance(value, expected_type):
            raise ConfigError(f"CONFIG[{key}] must be {expected_type.__name__}, got {type(value).__name__}")

    for key in _REQUIRED_KEYS:
        if key.endswith("_PORT"):
            port = cfg[key]
            if not (1 <= port <= 65535):
                raise ConfigError(f"CONFIG[{key}] must be valid port (1-65535), got {port}")

    for host_key in ("CONTROL_HOST", "TELEMETRY_HOST"):
        if not cfg[host_key]:
            raise ConfigError(f"CONFIG[{host_key}] must be non-empty string, got {cfg[host_key]!r}")

    if cfg["HOST_TELEMETRY"] not in _HOST_TELEMETRY_MODES:
        raise ConfigError(
            f"CONFIG[HOST_TELEMETRY] must be one of {sorted(_HOST_TELEMETRY_MODES)}, got {cfg['HOST_TELEMETRY']!r}"
        )
    if cfg["HOST_TELEMETRY"] == "ssh" and not cfg["SSH_HOST"]:
        raise ConfigError("CONFIG[SSH_HOST] is required when HOST_TELEMETRY is 'ssh'")

    if cfg["CONTROL_TIMEOUT"] <= 0:
        raise ConfigError(f"CONFIG[CONTROL_TIMEOUT] must be > 0, got {cfg['CONTROL_TIMEOUT']}")


def _parse_bool(raw: str) -> bool:
    lowered = str(raw).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"invalid boolean literal: {raw}")


def _apply_env_overrides(cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Apply environment variable overrides to config."""
    env = os.environ if environ is None else environ
    result = cfg.copy()

    for key in _ENV_OVERRIDABLE:
        env_var = _ENV_PREFIX + key
        if env_var not in env:
            continue
        env_value = env[env_var]
        expected_type = _REQUIRED_KEYS[key]
        try:
            if expected_type is bool:
                result[key] = _parse_bool(env_value)
            else:
                result[key] = expected_type(env_value)
        except ValueError:
            raise ConfigError(f"Invalid {expected_type.__name__} value for {env_var}: {env_value}")

    return result


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Return a validated copy of CONFIG with file/CLI overrides, then env overrides, applied."""
    cfg = dict(CONFIG)
    for key, value in (overrides or {}).items():
        if key not in _REQUIRED_KEYS:
            raise ConfigError(f"Unknown configuration key: {key}")
        cfg[key] = value
    cfg = _apply_env_overrides(cfg, environ)
    validate_config(cfg)
    return cfg


@dataclass
class ProbeOptions:
    """Tuning knobs of the probing engine.

    Sample windows
      fps_len             samples kept per unit (the window holds one extra slot)
      cpu_len             CPU samples required before any CPU based decision

    Thresholds
      fps_threshold       |output - input| FPS tolerance; also the largest MAD
                          considered calm and the floor for reference rates
      cpu_threshold       CPU % ceiling
      cpu_ready_threshold host must idle below this CPU % before an attempt
      free_mb_threshold   attempt fails when free memory drops below (MB)

    Search
      growth_discount     discount on linear CPU extrapolation (phi ~ 0.618)
      deviation_growth    allowed baseline MAD growth factor (phi ~ 1.618)
      seek_growth         step escalation factor on a stuck plateau
      sane_fps_ratio      output median below fps * ratio aborts a growth step

    Campaign
      drop                relative decrease of the start count for the next attempt
      validate_count      valid attempts required per stream profile
      max_retries         invalid attempts tolerated before the profile is skipped
      max_fails           CPU polls tolerated while waiting for an idle host

    Timers (seconds)
      baseline_timeout_s  input rate not accepted within this long fails the attempt
      stall_timeout_s     unit without a positive sample is reinitialised
      calm_timeout_s      unsettled state after a structural change forces seek(False)
      step_timeout_s      confirm-driven sequences advance without a confirmation
      stat_interval_s     telemetry poll interval
      stat_timeout_s      attempt fails without telemetry for this long (0 -> 5 x interval)
      cpu_interval_s      host resource poll interval
    """

    fps_len: int = 10
    cpu_len: int = 5
    fps_threshold: float = 1.0
    cpu_threshold: float = 80.0
    cpu_ready_threshold: float = 30.0
    free_mb_threshold: float = 256.0
    growth_discount: float = 0.618
    deviation_growth: float = 1.618
    seek_growth: float = 1.618
    sane_fps_ratio: float = 0.618
    drop: float = 0.2
    validate_count: int = 3
    max_retries: int = 3
    max_fails: int = 10
    baseline_timeout_s: float = 60.0
    stall_timeout_s: float = 15.0
    calm_timeout_s: float = 120.0
    step_timeout_s: float = 10.0
    stat_interval_s: float = 1.0
    stat_timeout_s: float = 0.0
    cpu_interval_s: float = 2.0
    confirm_driven: bool = False

    def __post_init__(self) -> None:
        if not self.stat_timeout_s:
            self.stat_timeout_s = self.stat_interval_s * 5
        self.validate()

    @property
    def drop_ratio(self) -> float:
        return 1.0 - self.drop

    def validate(self) -> None:
        for name in ("fps_len", "cpu_len", "validate_count"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"ProbeOptions.{name} must be an int >= 1, got {value!r}")
        for name in ("max_retries", "max_fails"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"ProbeOptions.{name} must be an int >= 0, got {value!r}")
        for name in (
            "fps_threshold",
            "cpu_threshold",
            "growth_discount",
            "deviation_growth",
            "seek_growth",
            "baseline_timeout_s",
            "stall_timeout_s",
            "calm_timeout_s",
            "step_timeout_s",
            "stat_interval_s",
            "stat_timeout_s",
            "cpu_interval_s",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ConfigError(f"ProbeOptions.{name} must be a positive number, got {value!r}")
        if not 0 < self.cpu_threshold <= 100:
            raise ConfigError(f"ProbeOptions.cpu_threshold must be within (0, 100], got {self.cpu_threshold}")
        if not 0 <= self.cpu_ready_threshold <= 100:
            raise ConfigError(
                f"ProbeOptions.cpu_ready_threshold must be within [0, 100], got {self.cpu_ready_threshold}"
            )
        if not 0 <= self.drop < 1:
            raise ConfigError(f"ProbeOptions.drop must be within [0, 1), got {self.drop}")
        if not 0 < self.sane_fps_ratio <= 1:
            raise ConfigError(f"ProbeOptions.sane_fps_ratio must be within (0, 1], got {self.sane_fps_ratio}")
        if self.free_mb_threshold < 0:
            raise ConfigError(f"ProbeOptions.free_mb_threshold must be >= 0, got {self.free_mb_threshold}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProbeOptions":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown probe options: {', '.join(unknown)}")
        return cls(**dict(data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_options(path: Optional[Union[str, Path]] = None, **overrides: Any) -> ProbeOptions:
    """Build ProbeOptions from an optional JSON file (``{"probe": {...}}`` or flat) plus overrides."""
    data: Dict[str, Any] = {}
    if path is not None:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read options file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"options file {path} must contain a JSON object")
        if isinstance(raw.get("probe"), dict):
            data.update(raw["probe"])
        else:
            data.update({k: v for k, v in raw.items() if k != "connection"})
    data.update({k: v for k, v in overrides.items() if v is not None})
    return ProbeOptions.from_mapping(data)


def load_connection_overrides(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    """Return the ``connection`` section of a JSON config file (empty when absent)."""
    if path is None:
        return {}
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    section = raw.get("connection", {}) if isinstance(raw, dict) else {}
    if not isinstance(section, dict):
        raise ConfigError(f"'connection' section of {path} must be a JSON object")
    return section


# Apply environment overrides and validate
CONFIG = _apply_env_overrides(CONFIG)
validate_config(CONFIG)
