"""Transport integrations for AIVory Monitor.

Provides the ``CaptureTransport`` protocol and the websocket connection
to the AIVory backend.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..schema import CaptureRecord


@runtime_checkable
class CaptureTransport(Protocol):
    """Protocol that every capture transport must satisfy.

    The exception handler hands each assembled record to ``send_exception``;
    the transport owns delivery, buffering, and reconnection.
    """

    def send_exception(self, record: CaptureRecord) -> None:
        """Deliver (or buffer) one capture record."""
        ...

    def connect(self) -> None:
        """Open the connection to the backend."""
        ...

    def disconnect(self) -> None:
        """Close the connection and stop any reconnection."""
        ...

    def is_authenticated(self) -> bool:
        """Return True when records are delivered immediately."""
        ...


# Re-export concrete implementations
from .outbound import DEFAULT_MAX_QUEUE_SIZE, OutboundQueue  # noqa: E402
from .websocket import BackendConnection, ChannelState  # noqa: E402

__all__ = [
    "BackendConnection",
    "CaptureTransport",
    "ChannelState",
    "DEFAULT_MAX_QUEUE_SIZE",
    "OutboundQueue",
]
