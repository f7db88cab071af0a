"""Exception capture and hand-off to the transport.

The handler assembles a :class:`CaptureRecord` for each sampled error:
stack frames, fingerprint, merged context, and any local variables the
caller passes in. It can also chain ``sys.excepthook`` and
``threading.excepthook`` so unhandled errors are captured automatically.
"""

from __future__ import annotations

import logging
import random
import sys
import threading
from types import TracebackType
from typing import Any, Callable, Mapping, Optional

from .capture import ValueCapturer, compute_fingerprint, extract_frames
from .config import AgentConfig, should_sample
from .exceptions import CaptureError
from .schema import CaptureRecord
from .transport import CaptureTransport

logger = logging.getLogger(__name__)


def exception_type_name(error: BaseException) -> str:
    """Return the error's type name, module-qualified outside builtins."""
    cls = type(error)
    module = getattr(cls, "__module__", None)
    if module in (None, "builtins", "__builtin__"):
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def _render_message(error: BaseException) -> str:
    try:
        return str(error)
    except Exception:
        return f"<unprintable {type(error).__name__}>"


class ExceptionHandler:
    """Build capture records and pass them to a transport.

    Usage::

        handler = ExceptionHandler(config, connection)
        try:
            risky()
        except Exception as exc:
            handler.capture(exc, local_vars={"x": x})
    """

    def __init__(
        self,
        config: AgentConfig,
        transport: Optional[CaptureTransport] = None,
        *,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config
        self._transport = transport
        self._rng = rng
        self._capturer = ValueCapturer.from_config(config)
        self._installed = False
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._previous_threading_excepthook: Optional[Callable[..., Any]] = None

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def capturer(self) -> ValueCapturer:
        return self._capturer

    def install(self) -> None:
        """Chain the process and thread exception hooks. Idempotent."""
        if self._installed:
            return
        self._previous_excepthook = sys.excepthook
        self._previous_threading_excepthook = threading.excepthook
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_excepthook
        self._installed = True
        logger.debug("Exception hooks installed")

    def uninstall(self) -> None:
        """Restore the hooks that were active before ``install``."""
        if not self._installed:
            return
        if sys.excepthook == self._excepthook and self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
        if (
            threading.excepthook == self._threading_excepthook
            and self._previous_threading_excepthook is not None
        ):
            threading.excepthook = self._previous_threading_excepthook
        self._previous_excepthook = None
        self._previous_threading_excepthook = None
        self._installed = False
        logger.debug("Exception hooks uninstalled")

    def capture(
        self,
        error: BaseException,
        context: Optional[Mapping[Any, Any]] = None,
        local_vars: Optional[Mapping[Any, Any]] = None,
    ) -> Optional[CaptureRecord]:
        """Capture ``error`` and send it; returns None when not sampled.

        Never raises: assembly and transport failures are logged.
        """
        if not should_sample(self._config, self._rng):
            return None

        try:
            record = self.create_capture(error, context, local_vars)
        except CaptureError as exc:
            logger.warning("%s", exc)
            return None

        if self._transport is not None:
            try:
                self._transport.send_exception(record)
            except Exception as exc:
                logger.warning("Transport %s failed to send capture: %s", type(self._transport).__name__, exc)

        logger.debug("Captured exception: %s", record.exception_type)
        return record

    def create_capture(
        self,
        error: BaseException,
        context: Optional[Mapping[Any, Any]] = None,
        local_vars: Optional[Mapping[Any, Any]] = None,
    ) -> CaptureRecord:
        """Assemble the capture record for ``error`` without sending it.

        Raises:
            CaptureError: If the record cannot be assembled.
        """
        try:
            exception_type = exception_type_name(error)
            frames = extract_frames(error)
            return CaptureRecord(
                exception_type=exception_type,
                message=_render_message(error),
                fingerprint=compute_fingerprint(exception_type, frames),
                stack_trace=frames,
                local_variables=self._capturer.capture_variables(local_vars) if local_vars else {},
                context=self.merge_context(context),
            )
        except Exception as exc:
            raise CaptureError(f"Failed to capture {type(error).__name__}: {exc}") from exc

    def merge_context(self, context: Optional[Mapping[Any, Any]] = None) -> dict[str, Any]:
        """Merge custom context, per-call context, then the current user."""
        merged = self._config.get_custom_context()
        if context:
            merged.update({str(key): value for key, value in context.items()})
        merged["user"] = self._config.get_user()
        return merged

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: Optional[TracebackType],
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self.capture(exc_value)
        previous = self._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc_value, exc_tb)

    def _threading_excepthook(self, args: Any) -> None:
        if args.exc_value is not None and not issubclass(args.exc_type, SystemExit):
            self.capture(args.exc_value)
        previous = self._previous_threading_excepthook or threading.__excepthook__
        previous(args)


__all__ = ["ExceptionHandler", "exception_type_name"]
