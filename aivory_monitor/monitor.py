"""AIVoryMonitor: primary public API for exception monitoring.

This module provides the monitor object that owns the configuration, the
backend connection and the exception handler, plus module-level
functions that manage one process-wide monitor.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping, Optional

from .config import AGENT_VERSION, AgentConfig, get_agent_config
from .exceptions import ConfigurationError
from .handler import ExceptionHandler
from .schema import CaptureRecord
from .transport import BackendConnection, CaptureTransport

logger = logging.getLogger(__name__)

_PACKAGE_LOGGER = "aivory_monitor"


class AIVoryMonitor:
    """Agent instance that captures exceptions and ships them to the backend.

    Usage::

        monitor = AIVoryMonitor(AgentConfig(api_key="..."))
        monitor.start()
        try:
            risky_operation()
        except Exception as exc:
            monitor.capture_exception(exc, local_vars={"x": x})
        monitor.shutdown()
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        *,
        transport: Optional[CaptureTransport] = None,
        install_hooks: bool = True,
    ) -> None:
        self._config = config or get_agent_config()
        if not self._config.api_key:
            raise ConfigurationError(
                "API key is required. Set AIVORY_API_KEY or pass api_key option."
            )
        if self._config.debug:
            logging.getLogger(_PACKAGE_LOGGER).setLevel(logging.DEBUG)
            logger.debug("Backend URL: %s", self._config.backend_url)

        self._transport: CaptureTransport = transport or BackendConnection(self._config)
        self._handler = ExceptionHandler(self._config, self._transport)
        self._install_hooks = install_hooks
        self._started = False

    @classmethod
    def from_yaml(
        cls,
        yaml_path: str | Path,
        *,
        transport: Optional[CaptureTransport] = None,
        install_hooks: bool = True,
    ) -> "AIVoryMonitor":
        """Create an AIVoryMonitor instance from a YAML config file."""
        config = AgentConfig.from_yaml(Path(yaml_path))
        return cls(config, transport=transport, install_hooks=install_hooks)

    @property
    def config(self) -> AgentConfig:
        """Return the active configuration."""
        return self._config

    @property
    def handler(self) -> ExceptionHandler:
        return self._handler

    @property
    def transport(self) -> CaptureTransport:
        return self._transport

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Connect to the backend and install the exception hooks."""
        if self._started:
            return
        self.connect()
        if self._install_hooks:
            self._handler.install()
        self._started = True
        logger.info("AIVory Monitor agent v%s initialized", AGENT_VERSION)
        logger.info("Environment: %s", self._config.environment)

    def shutdown(self) -> None:
        """Uninstall the hooks and close the connection."""
        logger.info("Shutting down AIVory Monitor agent")
        self._handler.uninstall()
        self.disconnect()
        self._started = False

    def capture_exception(
        self,
        error: BaseException,
        context: Optional[Mapping[Any, Any]] = None,
        local_vars: Optional[Mapping[Any, Any]] = None,
    ) -> Optional[CaptureRecord]:
        """Capture an exception with optional context and local variables."""
        return self._handler.capture(error, context, local_vars)

    def set_context(self, context: Mapping[Any, Any]) -> None:
        """Replace the custom context sent with every capture."""
        self._config.set_custom_context(context)

    def set_user(
        self,
        id: Optional[str] = None,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        """Replace the current user sent with every capture."""
        self._config.set_user(id, email, username)

    def connect(self) -> None:
        try:
            self._transport.connect()
        except Exception as exc:
            logger.warning("Transport connect failed: %s", exc)

    def disconnect(self) -> None:
        try:
            self._transport.disconnect()
        except Exception as exc:
            logger.warning("Transport disconnect failed: %s", exc)

    def is_authenticated(self) -> bool:
        return self._transport.is_authenticated()

    def __enter__(self) -> "AIVoryMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


_monitor: Optional[AIVoryMonitor] = None
_monitor_lock = threading.Lock()


def init(**kwargs: Any) -> Optional[AIVoryMonitor]:
    """Initialize the process-wide agent.

    Keyword arguments override the environment-derived configuration
    (``api_key``, ``backend_url``, ``environment``, ``sampling_rate``,
    ``max_capture_depth``, ``max_string_length``, ``max_collection_size``,
    ``debug``). Returns the active monitor, or None when the configuration
    is unusable.
    """
    global _monitor
    with _monitor_lock:
        if _monitor is not None:
            logger.info("AIVory Monitor agent already initialized")
            return _monitor

        config = get_agent_config()
        if kwargs:
            settings = {
                name: getattr(config, name)
                for name in (
                    "api_key",
                    "backend_url",
                    "environment",
                    "sampling_rate",
                    "max_capture_depth",
                    "max_string_length",
                    "max_collection_size",
                    "debug",
                )
            }
            settings.update(kwargs)
            config = AgentConfig.from_dict(settings)

        try:
            monitor = AIVoryMonitor(config)
        except ConfigurationError as exc:
            logger.warning("%s", exc)
            return None

        monitor.start()
        _monitor = monitor
        return monitor


def get_monitor() -> Optional[AIVoryMonitor]:
    """Return the process-wide monitor, if initialized."""
    return _monitor


def is_initialized() -> bool:
    return _monitor is not None


def capture_exception(
    error: BaseException,
    context: Optional[Mapping[Any, Any]] = None,
    local_vars: Optional[Mapping[Any, Any]] = None,
) -> Optional[CaptureRecord]:
    """Manually capture an exception on the process-wide monitor."""
    monitor = _monitor
    if monitor is None:
        logger.warning("AIVory Monitor agent not initialized")
        return None
    return monitor.capture_exception(error, context, local_vars)


def set_context(context: Mapping[Any, Any]) -> None:
    """Set custom context that will be sent with all captures."""
    monitor = _monitor
    if monitor is None:
        logger.warning("AIVory Monitor agent not initialized")
        return
    monitor.set_context(context)


def set_user(
    id: Optional[str] = None,
    email: Optional[str] = None,
    username: Optional[str] = None,
) -> None:
    """Set the current user for context."""
    monitor = _monitor
    if monitor is None:
        logger.warning("AIVory Monitor agent not initialized")
        return
    monitor.set_user(id, email, username)


def connect() -> None:
    monitor = _monitor
    if monitor is None:
        logger.warning("AIVory Monitor agent not initialized")
        return
    monitor.connect()


def disconnect() -> None:
    monitor = _monitor
    if monitor is not None:
        monitor.disconnect()


def is_authenticated() -> bool:
    monitor = _monitor
    return monitor is not None and monitor.is_authenticated()


def shutdown() -> None:
    """Shut down the process-wide agent."""
    global _monitor
    with _monitor_lock:
        monitor = _monitor
        _monitor = None
    if monitor is not None:
        monitor.shutdown()


__all__ = [
    "AIVoryMonitor",
    "capture_exception",
    "connect",
    "disconnect",
    "get_monitor",
    "init",
    "is_authenticated",
    "is_initialized",
    "set_context",
    "set_user",
    "shutdown",
]
