"""Error hierarchy for AIVory Monitor.

All aivory-monitor exceptions inherit from MonitorError so callers can
catch the base class for broad error handling.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for all aivory-monitor errors."""


class ConfigurationError(MonitorError):
    """Invalid or incomplete agent configuration."""


class CaptureError(MonitorError):
    """Assembling a capture record failed.

    Never raised into the host application; the handler logs it and
    drops the capture.
    """


class TransportError(MonitorError):
    """Backend connection or send failed.

    Non-fatal: the connection queues the message and schedules a
    reconnect instead of propagating.
    """


__all__ = [
    "CaptureError",
    "ConfigurationError",
    "MonitorError",
    "TransportError",
]
