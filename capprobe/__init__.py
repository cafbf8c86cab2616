"""Adaptive capacity probe for video-ingest hosts."""

__version__ = "0.1.0"
