"""Shared fixtures for the aivory-monitor test suite."""

from __future__ import annotations

import json
import queue
import threading
import time
from typing import Any, Callable, Optional

import pytest

from aivory_monitor.config import AgentConfig


class FakeWebSocket:
    """In-memory stand-in for a sync websocket connection."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.fail_sends = False
        self.gate: Optional[threading.Event] = None
        self.write_started = threading.Event()
        self._incoming: queue.Queue = queue.Queue()

    def send(self, message: str) -> None:
        self.write_started.set()
        if self.gate is not None:
            # Simulates a peer that stopped reading: the write blocks.
            self.gate.wait()
        if self.fail_sends or self.closed:
            raise ConnectionError("socket unavailable")
        self.sent.append(message)

    def push(self, message: Any) -> None:
        """Deliver a server message to the receive loop."""
        self._incoming.put(message if isinstance(message, str) else json.dumps(message))

    def close(self) -> None:
        self.closed = True
        self._incoming.put(None)

    def __iter__(self):
        while True:
            item = self._incoming.get()
            if item is None:
                return
            yield item


class FakeConnector:
    """Connector that hands out FakeWebSockets or raises ``error``."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, dict[str, str], float]] = []
        self.sockets: list[FakeWebSocket] = []

    def __call__(self, uri: str, *, additional_headers: Any, open_timeout: float) -> FakeWebSocket:
        self.calls.append((uri, dict(additional_headers), open_timeout))
        if self.error is not None:
            raise self.error
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class RecordingTimers:
    """Timer factory that records reconnect schedules without running them."""

    def __init__(self) -> None:
        self.created: list[FakeTimer] = []

    @property
    def delays(self) -> list[float]:
        return [timer.delay for timer in self.created]

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.created.append(timer)
        return timer


class FakeTransport:
    """Transport that records capture records instead of sending them."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.records: list[Any] = []
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0

    def send_exception(self, record: Any) -> None:
        self.records.append(record)

    def connect(self) -> None:
        self.connected = True
        self.connect_calls += 1

    def disconnect(self) -> None:
        self.connected = False
        self.disconnect_calls += 1

    def is_authenticated(self) -> bool:
        return self.connected


class TransportFactory:
    """Drop-in for the BackendConnection class that builds FakeTransports."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    def __call__(self, *args: Any, **kwargs: Any) -> FakeTransport:
        transport = FakeTransport(*args, **kwargs)
        self.created.append(transport)
        return transport


def _wait_for(predicate: Callable[[], Any], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(api_key="test-key", backend_url="ws://collector.test/ws/agent")


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def timers() -> RecordingTimers:
    return RecordingTimers()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    return _wait_for
