"""WebSocket connection to the AIVory backend.

One background thread per session opens the socket, registers the agent
and runs the receive loop. Callers on any thread may ``send``; messages
are written immediately once the backend has acknowledged registration
and buffered in an :class:`OutboundQueue` otherwise. Lost connections
are retried with exponential backoff until ``MAX_RECONNECT_ATTEMPTS``
schedules have been used.

All connection state (socket, state flag, queue, attempt counter) is read
and mutated under a single lock. Socket writes never happen under that
lock: they are serialized by a separate write lock, and a writer that
cannot get it within ``send_timeout`` treats the socket as stalled,
buffers its message and drops the connection. The reconnect delay runs
on a timer thread and never holds either lock.

Messages sent immediately and messages flushed from the queue are not
ordered relative to each other: captures taken during a connectivity gap
may reach the backend after a later capture that was sent directly.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from typing import Any, Callable, Literal, Mapping, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from ..config import AGENT_VERSION, RUNTIME_NAME, AgentConfig, runtime_info
from ..exceptions import TransportError
from ..schema import CaptureRecord
from .outbound import DEFAULT_MAX_QUEUE_SIZE, OutboundQueue

logger = logging.getLogger(__name__)

ChannelState = Literal["disconnected", "connecting", "connected", "authenticated", "reconnecting"]

MAX_RECONNECT_ATTEMPTS = 10
MAX_RECONNECT_DELAY = 30.0
DEFAULT_OPEN_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 2.0
DEFAULT_CONNECT_WAIT = 0.5
DEFAULT_SEND_TIMEOUT = 5.0

Connector = Callable[..., Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def reconnect_delay(attempts: int) -> float:
    """Return the backoff delay in seconds for the given attempt count."""
    return float(min(2 ** max(0, attempts), MAX_RECONNECT_DELAY))


def _default_connector(uri: str, *, additional_headers: Mapping[str, str], open_timeout: float) -> Any:
    return ws_connect(
        uri,
        additional_headers=dict(additional_headers),
        open_timeout=open_timeout,
        close_timeout=DEFAULT_CLOSE_TIMEOUT,
    )


def _default_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


def _close_quietly(ws: Any) -> None:
    try:
        ws.close()
    except Exception as exc:
        logger.debug("Error while closing websocket: %s", exc)


def _abort_quietly(ws: Any) -> None:
    """Drop the connection without waiting on a write that may be stuck."""
    sock = getattr(ws, "socket", None)
    try:
        if sock is not None:
            sock.shutdown(socket.SHUT_RDWR)
        else:
            ws.close()
    except Exception as exc:
        logger.debug("Error while aborting websocket: %s", exc)


class BackendConnection:
    """Persistent, self-healing connection to the AIVory backend.

    Args:
        config: Agent configuration (URL, API key, identity).
        connector: Callable opening a websocket; receives the URL plus
            ``additional_headers`` and ``open_timeout`` keywords and returns
            an object with ``send``, ``close`` and message iteration.
            Defaults to the ``websockets`` sync client.
        timer_factory: Callable building a startable, cancellable timer
            for reconnect scheduling. Defaults to a daemon ``threading.Timer``.
        max_queue_size: Capacity of the outbound queue.
        max_reconnect_attempts: Reconnect schedules allowed before giving up.
        open_timeout: Seconds allowed for the opening handshake.
        connect_wait: Seconds ``connect()`` waits for the session to settle.
        send_timeout: Seconds a writer waits for another thread's write to
            finish before treating the socket as stalled.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        connector: Optional[Connector] = None,
        timer_factory: Optional[TimerFactory] = None,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        connect_wait: float = DEFAULT_CONNECT_WAIT,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        self._config = config
        self._connector = connector or _default_connector
        self._timer_factory = timer_factory or _default_timer
        self._max_reconnect_attempts = max(0, int(max_reconnect_attempts))
        self._open_timeout = float(open_timeout)
        self._connect_wait = max(0.0, float(connect_wait))
        self._send_timeout = max(0.0, float(send_timeout))

        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._state: ChannelState = "disconnected"
        self._ws: Any = None
        self._queue = OutboundQueue(max_queue_size)
        self._reconnect_attempts = 0
        self._reconnect_timer: Any = None
        self._worker: Optional[threading.Thread] = None
        self._closed = threading.Event()

    @property
    def state(self) -> ChannelState:
        with self._lock:
            return self._state

    @property
    def reconnect_attempts(self) -> int:
        with self._lock:
            return self._reconnect_attempts

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def queued_messages(self) -> list[str]:
        """Return a snapshot of the buffered messages, oldest first."""
        with self._lock:
            return list(self._queue)

    def is_connected(self) -> bool:
        with self._lock:
            return self._state in ("connected", "authenticated")

    def is_authenticated(self) -> bool:
        with self._lock:
            return self._state == "authenticated"

    def connect(self, wait: Optional[float] = None) -> None:
        """Open the connection in the background.

        No-op while a session is already connecting or connected. Waits up
        to ``wait`` seconds (default ``connect_wait``) for the opening
        handshake and registration to be sent.
        """
        with self._lock:
            if self._state in ("connecting", "connected", "authenticated"):
                return
            self._cancel_reconnect_timer()
            self._closed.clear()
            self._state = "connecting"
            ready = threading.Event()
            worker = threading.Thread(
                target=self._run_session,
                args=(ready,),
                name="aivory-monitor-connection",
                daemon=True,
            )
            self._worker = worker
            worker.start()

        timeout = self._connect_wait if wait is None else max(0.0, wait)
        if timeout > 0:
            ready.wait(timeout)

    def disconnect(self) -> None:
        """Close the connection and cancel the receive loop and reconnects.

        Idempotent. Later ``send`` calls buffer until ``connect`` is called
        again.
        """
        with self._lock:
            self._closed.set()
            self._cancel_reconnect_timer()
            ws = self._ws
            self._ws = None
            self._worker = None
            self._state = "disconnected"

        if ws is not None:
            _close_quietly(ws)
        logger.debug("Disconnected from %s", self._config.backend_url)

    def send(self, message: str) -> bool:
        """Send a serialized message, or buffer it until authenticated.

        Returns True when the message was written to the socket. A failed
        or stalled write buffers the message and drops the connection.
        """
        with self._lock:
            ws = self._ws if self._state == "authenticated" else None
            if ws is None:
                self._queue.append(message)
                return False

        if self._write(ws, message):
            logger.debug("Sent message")
            return True

        with self._lock:
            self._queue.append(message)
        # Ends the receive loop, which handles the reconnect.
        _abort_quietly(ws)
        return False

    def send_exception(self, record: CaptureRecord) -> bool:
        """Wrap a capture record in an ``exception`` envelope and send it."""
        payload = record.to_wire()
        payload["agent_id"] = self._config.agent_id
        payload["environment"] = self._config.environment
        payload["runtime"] = RUNTIME_NAME
        payload["runtime_info"] = runtime_info()

        logger.debug("Sending exception payload %s (%s)", record.id, record.exception_type)
        return self.send(self._envelope("exception", payload))

    def authenticate(self) -> bool:
        """Send the ``register`` message on the current socket."""
        message = self._envelope(
            "register",
            {
                "api_key": self._config.api_key,
                "agent_id": self._config.agent_id,
                "hostname": self._config.hostname,
                "runtime": RUNTIME_NAME,
                "runtime_version": runtime_info()["runtimeVersion"],
                "agent_version": AGENT_VERSION,
                "environment": self._config.environment,
            },
        )
        with self._lock:
            ws = self._ws
            if ws is None or self._state not in ("connected", "authenticated"):
                return False

        if self._write(ws, message):
            return True
        logger.warning("Failed to send registration to %s", self._config.backend_url)
        _abort_quietly(ws)
        return False

    def handle_message(self, raw: str | bytes) -> None:
        """Process one inbound message. Malformed input is logged and ignored."""
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            message = json.loads(text)
        except (UnicodeDecodeError, ValueError) as exc:
            logger.debug("Failed to parse backend message: %s", exc)
            return
        if not isinstance(message, Mapping):
            logger.debug("Ignoring non-object backend message")
            return

        msg_type = message.get("type")
        logger.debug("Received: %s", msg_type or "unknown")

        if msg_type == "registered":
            with self._lock:
                if self._ws is None:
                    return
                self._state = "authenticated"
            logger.debug("Agent registered")
            self.flush_queue()
        elif msg_type == "error":
            payload = message.get("payload")
            detail = payload.get("message", "unknown") if isinstance(payload, Mapping) else "unknown"
            logger.error("Backend error: %s", detail)

    def flush_queue(self) -> int:
        """Send buffered messages oldest first; returns how many were sent.

        Stops at the first failure, putting that message back at the front
        and dropping the connection.
        """
        sent = 0
        while True:
            with self._lock:
                ws = self._ws
                if ws is None or self._state not in ("connected", "authenticated"):
                    break
                message = self._queue.popleft()
                if message is None:
                    break

            if not self._write(ws, message):
                with self._lock:
                    self._queue.push_front(message)
                logger.debug("Queue flush interrupted after %d message(s)", sent)
                _abort_quietly(ws)
                break
            sent += 1
        if sent:
            logger.debug("Flushed %d queued message(s)", sent)
        return sent

    def schedule_reconnect(self) -> Optional[float]:
        """Schedule the next reconnect; returns the delay, or None if abandoned.

        The attempt counter increments here, at scheduling time, and resets
        only when a connection opens.
        """
        with self._lock:
            if self._closed.is_set():
                return None
            if self._reconnect_attempts >= self._max_reconnect_attempts:
                logger.warning(
                    "Max reconnect attempts (%d) reached; giving up",
                    self._max_reconnect_attempts,
                )
                self._state = "disconnected"
                return None

            delay = reconnect_delay(self._reconnect_attempts)
            self._reconnect_attempts += 1
            self._state = "reconnecting"
            logger.debug(
                "Reconnecting in %.0fs (attempt %d)", delay, self._reconnect_attempts
            )
            timer = self._timer_factory(delay, self._reconnect)
            self._reconnect_timer = timer
            timer.start()
            return delay

    def _write(self, ws: Any, message: str) -> bool:
        """Write one message outside the state lock; False on failure or stall."""
        if not self._send_lock.acquire(timeout=self._send_timeout):
            logger.warning(
                "Socket write stalled for over %.1fs; dropping connection", self._send_timeout
            )
            return False
        try:
            ws.send(message)
        except Exception as exc:
            logger.debug("Socket write failed: %s", exc)
            return False
        finally:
            self._send_lock.release()
        return True

    def _reconnect(self) -> None:
        if self._closed.is_set():
            return
        self.connect(wait=0)

    def _cancel_reconnect_timer(self) -> None:
        timer = self._reconnect_timer
        self._reconnect_timer = None
        if timer is not None and timer is not threading.current_thread():
            try:
                timer.cancel()
            except Exception as exc:
                logger.debug("Failed to cancel reconnect timer: %s", exc)

    def _open(self) -> Any:
        """Open the socket, presenting the API key as a bearer credential.

        Raises:
            TransportError: If the connection cannot be established.
        """
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        try:
            return self._connector(
                self._config.backend_url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
            )
        except Exception as exc:
            raise TransportError(f"Connection to {self._config.backend_url} failed: {exc}") from exc

    def _run_session(self, ready: threading.Event) -> None:
        try:
            ws = self._open()
        except TransportError as exc:
            logger.debug("%s", exc)
            ready.set()
            self._on_connection_lost(None)
            return

        with self._lock:
            current = self._worker is threading.current_thread() and not self._closed.is_set()
            if current:
                self._ws = ws
                self._state = "connected"
                self._reconnect_attempts = 0
        if not current:
            _close_quietly(ws)
            ready.set()
            return

        logger.debug("WebSocket connected to %s", self._config.backend_url)
        self.authenticate()
        ready.set()

        try:
            for raw in ws:
                self.handle_message(raw)
        except ConnectionClosed as exc:
            logger.debug("Connection closed: %s", exc)
        except Exception as exc:
            logger.debug("Receive error: %s", exc)
        finally:
            _close_quietly(ws)
            self._on_connection_lost(ws)

    def _on_connection_lost(self, ws: Any) -> None:
        with self._lock:
            if self._worker is not threading.current_thread():
                return
            self._worker = None
            if self._ws is ws:
                self._ws = None
            self._state = "disconnected"
            if self._closed.is_set():
                return
            self.schedule_reconnect()

    @staticmethod
    def _envelope(message_type: str, payload: Mapping[str, Any]) -> str:
        return json.dumps(
            {
                "type": message_type,
                "payload": payload,
                "timestamp": int(time.time() * 1000),
            },
            default=str,
        )


__all__ = [
    "BackendConnection",
    "ChannelState",
    "MAX_RECONNECT_ATTEMPTS",
    "MAX_RECONNECT_DELAY",
    "reconnect_delay",
]
