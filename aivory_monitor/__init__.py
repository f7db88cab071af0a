"""AIVory Monitor: runtime exception capture agent.

Captures errors with their stack, surrounding variables and context, and
streams them to the AIVory backend over a self-healing websocket.

Usage::

    import aivory_monitor

    aivory_monitor.init(api_key="your-api-key", environment="production")

    try:
        risky_operation()
    except Exception as exc:
        aivory_monitor.capture_exception(
            exc,
            context={"user_id": "123"},
            local_vars={"x": x, "y": y},
        )
        raise
"""

from .capture import ValueCapturer, compute_fingerprint, extract_frames
from .config import AGENT_VERSION, AgentConfig, get_agent_config
from .exceptions import CaptureError, ConfigurationError, MonitorError, TransportError
from .handler import ExceptionHandler
from .monitor import (
    AIVoryMonitor,
    capture_exception,
    connect,
    disconnect,
    get_monitor,
    init,
    is_authenticated,
    is_initialized,
    set_context,
    set_user,
    shutdown,
)
from .schema import CaptureRecord, CapturedVariable, StackFrame
from .transport import BackendConnection, CaptureTransport, OutboundQueue

__version__ = AGENT_VERSION

__all__ = [
    "AIVoryMonitor",
    "AgentConfig",
    "BackendConnection",
    "CaptureError",
    "CaptureRecord",
    "CaptureTransport",
    "CapturedVariable",
    "ConfigurationError",
    "ExceptionHandler",
    "MonitorError",
    "OutboundQueue",
    "StackFrame",
    "TransportError",
    "ValueCapturer",
    "capture_exception",
    "compute_fingerprint",
    "connect",
    "disconnect",
    "extract_frames",
    "get_agent_config",
    "get_monitor",
    "init",
    "is_authenticated",
    "is_initialized",
    "set_context",
    "set_user",
    "shutdown",
]
