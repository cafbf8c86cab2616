"""Configuration, logging and sample statistics shared by the probe engine."""

from .config import CONFIG, ConfigError, ProbeOptions, load_options
from .samples import SampleWindow

__all__ = [
    "CONFIG",
    "ConfigError",
    "ProbeOptions",
    "load_options",
    "SampleWindow",
]
