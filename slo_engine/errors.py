"""
Exception hierarchy for the SLO engine.

Only configuration and Setup problems are raised to the caller. Failures of
individual requests or iterations are recorded as metrics instead.
"""

from __future__ import annotations


class SloEngineError(Exception):
    """Base class for every error raised by :mod:`slo_engine`."""


class ConfigError(SloEngineError, ValueError):
    """Invalid run configuration, unknown profile or bad threshold expression."""


class SetupError(SloEngineError):
    """The one-time Setup phase failed; the run is aborted before any worker starts."""


class DecodeError(SloEngineError):
    """A target response could not be decoded into the expected shape."""
