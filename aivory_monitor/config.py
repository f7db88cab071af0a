"""Configuration helpers for the AIVory Monitor agent.

This module centralizes the agent settings consumed by capture and
transport. Configuration can come from:
1. Constructor kwargs (highest priority)
2. YAML file (file-based)
3. Environment variables (deployment)
4. Built-in defaults (lowest priority)

Everything is read-only after construction except ``custom_context`` and
``user``, which are replaced wholesale through the setters below.
"""

from __future__ import annotations

import logging
import math
import os
import platform
import random
import socket
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

AGENT_VERSION = "1.0.0"
RUNTIME_NAME = "python"

AIVORY_API_KEY_ENV = "AIVORY_API_KEY"
AIVORY_BACKEND_URL_ENV = "AIVORY_BACKEND_URL"
AIVORY_ENVIRONMENT_ENV = "AIVORY_ENVIRONMENT"
AIVORY_SAMPLING_RATE_ENV = "AIVORY_SAMPLING_RATE"
AIVORY_MAX_DEPTH_ENV = "AIVORY_MAX_DEPTH"
AIVORY_MAX_STRING_LENGTH_ENV = "AIVORY_MAX_STRING_LENGTH"
AIVORY_MAX_COLLECTION_SIZE_ENV = "AIVORY_MAX_COLLECTION_SIZE"
AIVORY_DEBUG_ENV = "AIVORY_DEBUG"

DEFAULT_BACKEND_URL = "wss://api.aivory.net/ws/agent"
DEFAULT_ENVIRONMENT = "production"
DEFAULT_SAMPLING_RATE = 1.0
DEFAULT_MAX_CAPTURE_DEPTH = 10
DEFAULT_MAX_STRING_LENGTH = 1000
DEFAULT_MAX_COLLECTION_SIZE = 100

_ENV_FIELDS = (
    ("api_key", AIVORY_API_KEY_ENV),
    ("backend_url", AIVORY_BACKEND_URL_ENV),
    ("environment", AIVORY_ENVIRONMENT_ENV),
    ("sampling_rate", AIVORY_SAMPLING_RATE_ENV),
    ("max_capture_depth", AIVORY_MAX_DEPTH_ENV),
    ("max_string_length", AIVORY_MAX_STRING_LENGTH_ENV),
    ("max_collection_size", AIVORY_MAX_COLLECTION_SIZE_ENV),
    ("debug", AIVORY_DEBUG_ENV),
)


# Smallest accepted value for each capture limit.
_LIMIT_MINIMUMS = {
    "max_capture_depth": 0,
    "max_string_length": 1,
    "max_collection_size": 0,
}


def _generate_agent_id() -> str:
    return f"agent-{format(time.time_ns(), 'x')[:12]}-{str(uuid.uuid4())[:8]}"


class _ContextState:
    """Lock-guarded holder for the fields replaced while the agent runs."""

    __slots__ = ("lock", "custom_context", "user")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.custom_context: dict[str, Any] = {}
        self.user: dict[str, Any] = {}


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """Agent settings and identity, fixed at construction.

    Only the custom context and the current user change afterwards, and
    only through their setters.
    """

    api_key: str = ""
    backend_url: str = DEFAULT_BACKEND_URL
    environment: str = DEFAULT_ENVIRONMENT
    sampling_rate: float = DEFAULT_SAMPLING_RATE
    max_capture_depth: int = DEFAULT_MAX_CAPTURE_DEPTH
    max_string_length: int = DEFAULT_MAX_STRING_LENGTH
    max_collection_size: int = DEFAULT_MAX_COLLECTION_SIZE
    debug: bool = False

    hostname: str = field(default_factory=socket.gethostname)
    agent_id: str = field(default_factory=_generate_agent_id)

    _context: _ContextState = field(
        default_factory=_ContextState, init=False, repr=False, compare=False
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentConfig":
        """Build an AgentConfig from a plain dictionary.

        Unknown keys are silently ignored. Type coercion is applied
        where possible; values that cannot be coerced fall back to the
        defaults.

        Args:
            data: Dictionary of configuration values.

        Returns:
            AgentConfig with values from the dictionary merged over defaults.
        """

        kwargs: dict[str, Any] = {}

        for key in ("api_key", "backend_url", "environment"):
            if key in data and data[key] is not None:
                text = str(data[key]).strip()
                if text or key == "api_key":
                    kwargs[key] = text

        if "sampling_rate" in data:
            try:
                value = float(data["sampling_rate"])
                if math.isfinite(value):
                    kwargs["sampling_rate"] = value
            except (TypeError, ValueError):
                pass

        for key, minimum in _LIMIT_MINIMUMS.items():
            if key in data:
                try:
                    kwargs[key] = max(minimum, int(data[key]))
                except (TypeError, ValueError):
                    pass

        if "debug" in data:
            kwargs["debug"] = _to_bool(data["debug"])

        return cls(**kwargs)

    @classmethod
    def from_yaml(
        cls,
        yaml_path: Path,
        *,
        allow_env_override: bool = True,
    ) -> "AgentConfig":
        """Build an AgentConfig from a YAML file.

        Loads values from the YAML file, then applies any
        environment-variable overrides on top (unless disabled).

        Args:
            yaml_path: Path to the agent YAML file.
            allow_env_override: When True, environment variables that are
                set take precedence over YAML values.

        Returns:
            AgentConfig with merged YAML + env configuration.
        """

        path = Path(yaml_path)
        data: dict[str, Any] = {}
        if path.exists():
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
            if isinstance(raw, Mapping):
                data = dict(raw)
            else:
                logger.warning("Agent config YAML at %s is not a mapping; using defaults", path)
        else:
            logger.warning("Agent config YAML not found at %s; using defaults", path)

        if allow_env_override:
            env_instance = cls.from_env()
            for field_name, env_var in _ENV_FIELDS:
                if _env(env_var) is not None:
                    data[field_name] = getattr(env_instance, field_name)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Build an AgentConfig instance from environment variables."""

        limits = {
            key: _env_int(env_name, default=default, minimum=_LIMIT_MINIMUMS[key])
            for key, env_name, default in (
                ("max_capture_depth", AIVORY_MAX_DEPTH_ENV, DEFAULT_MAX_CAPTURE_DEPTH),
                ("max_string_length", AIVORY_MAX_STRING_LENGTH_ENV, DEFAULT_MAX_STRING_LENGTH),
                ("max_collection_size", AIVORY_MAX_COLLECTION_SIZE_ENV, DEFAULT_MAX_COLLECTION_SIZE),
            )
        }
        return cls(
            api_key=_env(AIVORY_API_KEY_ENV) or "",
            backend_url=_env(AIVORY_BACKEND_URL_ENV) or DEFAULT_BACKEND_URL,
            environment=_env(AIVORY_ENVIRONMENT_ENV) or DEFAULT_ENVIRONMENT,
            sampling_rate=_env_rate(AIVORY_SAMPLING_RATE_ENV, default=DEFAULT_SAMPLING_RATE),
            debug=_env_bool(AIVORY_DEBUG_ENV, default=False),
            **limits,
        )

    @property
    def custom_context(self) -> dict[str, Any]:
        return self.get_custom_context()

    @property
    def user(self) -> dict[str, Any]:
        return self.get_user()

    def set_custom_context(self, context: Mapping[Any, Any]) -> None:
        """Replace the process-wide custom context (keys stringified)."""
        replacement = {str(key): value for key, value in context.items()}
        with self._context.lock:
            self._context.custom_context = replacement

    def get_custom_context(self) -> dict[str, Any]:
        with self._context.lock:
            return dict(self._context.custom_context)

    def set_user(
        self,
        id: Optional[str] = None,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        """Replace the current user; only the supplied fields are kept."""
        replacement: dict[str, Any] = {}
        if id is not None:
            replacement["id"] = id
        if email is not None:
            replacement["email"] = email
        if username is not None:
            replacement["username"] = username
        with self._context.lock:
            self._context.user = replacement

    def get_user(self) -> dict[str, Any]:
        with self._context.lock:
            return dict(self._context.user)


def get_agent_config() -> AgentConfig:
    """Return an AgentConfig instance built from the current environment."""

    return AgentConfig.from_env()


def should_sample(
    config: AgentConfig,
    rng: Callable[[], float] = random.random,
) -> bool:
    """Return True when this capture passes the sampling check.

    Rates at or beyond the 0/1 boundaries never draw randomness.
    """
    if config.sampling_rate >= 1.0:
        return True
    if config.sampling_rate <= 0.0:
        return False
    return rng() < config.sampling_rate


def runtime_info() -> dict[str, str]:
    """Return the runtime block sent with every exception."""
    return {
        "runtime": RUNTIME_NAME,
        "runtimeVersion": platform.python_version(),
        "platform": sys.platform,
        "arch": platform.machine(),
    }


_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _env(name: str) -> Optional[str]:
    """Stripped value of ``name``; unset and blank both read as None."""
    raw = os.environ.get(name)
    if raw is None:
        return None
    return raw.strip() or None


def _warn_invalid(name: str, raw: str, default: Any) -> None:
    logger.warning("Invalid %s=%r; using default=%s", name, raw, default)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def _env_bool(name: str, *, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    flag = raw.lower()
    if flag in _TRUE or flag in _FALSE:
        return flag in _TRUE
    _warn_invalid(name, raw, default)
    return default


def _env_int(name: str, *, default: int, minimum: int) -> int:
    """Integer from ``name``; values below ``minimum`` are raised to it."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        _warn_invalid(name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%r is below %s; clamping", name, raw, minimum)
        return minimum
    return value


def _env_rate(name: str, *, default: float) -> float:
    """Fraction in [0, 1] from ``name``; anything else keeps ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        _warn_invalid(name, raw, default)
        return default
    # NaN fails both comparisons.
    if not 0.0 <= value <= 1.0:
        _warn_invalid(name, raw, default)
        return default
    return value


__all__ = [
    "AGENT_VERSION",
    "AgentConfig",
    "DEFAULT_BACKEND_URL",
    "RUNTIME_NAME",
    "get_agent_config",
    "runtime_info",
    "should_sample",
]
