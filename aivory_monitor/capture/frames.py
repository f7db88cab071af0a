"""Stack frame extraction for captured exceptions.

Frames are returned most recent first: the failure point at index 0,
followed by its callers. Frames that live inside the interpreter's own
standard library or its frozen bootstrap modules are flagged native.
"""

from __future__ import annotations

import itertools
import logging
import os
import sys
import sysconfig
import traceback
from pathlib import Path
from types import TracebackType
from typing import Optional

from ..schema import StackFrame

logger = logging.getLogger(__name__)

MAX_FRAMES = 50

_PACKAGE_DIR = str(Path(__file__).resolve().parent.parent)
_THIRD_PARTY_MARKERS = ("site-packages", "dist-packages")


def _stdlib_roots() -> tuple[str, ...]:
    roots: set[str] = set()
    for key in ("stdlib", "platstdlib"):
        path = sysconfig.get_paths().get(key)
        if path:
            roots.add(os.path.normcase(os.path.realpath(path)))
    return tuple(sorted(roots))


_STDLIB_ROOTS = _stdlib_roots()


def is_native_path(path: Optional[str]) -> bool:
    """Return True for frames that belong to the runtime itself.

    Matches frozen bootstrap/loader modules (``<frozen importlib._bootstrap>``)
    and any file under the standard-library root. Installed third-party
    packages are user code even though they sit below that root.
    """
    if not path:
        return False
    if path.startswith("<frozen"):
        return True
    if path.startswith("<"):
        return False
    normalized = os.path.normcase(os.path.realpath(path))
    if any(marker in normalized for marker in _THIRD_PARTY_MARKERS):
        return False
    return any(
        normalized == root or normalized.startswith(root + os.sep) for root in _STDLIB_ROOTS
    )


def extract_frames(error: BaseException, *, limit: int = MAX_FRAMES) -> list[StackFrame]:
    """Return the frames for ``error``, most recent first, capped at ``limit``.

    Never raises. When the stack cannot be walked a single synthetic frame
    named after the error type is returned instead.
    """
    try:
        frames = [_to_frame(summary) for summary in _walk(error, limit)]
        if frames:
            return frames
    except Exception as exc:
        logger.debug("Stack walk failed for %s: %s", type(error).__name__, exc)
    return [StackFrame(method_name=type(error).__name__, is_native=False)]


def _walk(error: BaseException, limit: int) -> list[traceback.FrameSummary]:
    """Return at most ``limit`` frame summaries, most recent first.

    Source lines are not read; only names, files and line numbers are kept.
    """
    tb: Optional[TracebackType] = error.__traceback__
    if tb is None:
        # Never raised: report where it was captured, minus this package.
        stack = (
            (frame, lineno)
            for frame, lineno in traceback.walk_stack(sys._getframe())
            if not _is_own_frame(frame.f_code.co_filename)
        )
        pairs = list(itertools.islice(stack, max(0, limit)))
    else:
        pairs = list(traceback.walk_tb(tb))
        pairs.reverse()
        del pairs[max(0, limit):]
        caller = tb.tb_frame.f_back
        if caller is not None and len(pairs) < limit:
            pairs.extend(itertools.islice(traceback.walk_stack(caller), limit - len(pairs)))
    return list(traceback.StackSummary.extract(iter(pairs), lookup_lines=False))


def _is_own_frame(filename: str) -> bool:
    try:
        return str(Path(filename).resolve()).startswith(_PACKAGE_DIR + os.sep)
    except (OSError, ValueError):
        return False


def _to_frame(summary: traceback.FrameSummary) -> StackFrame:
    path = summary.filename or None
    return StackFrame(
        method_name=summary.name,
        file_name=os.path.basename(path) if path else None,
        file_path=path,
        line_number=summary.lineno,
        is_native=is_native_path(path),
    )


__all__ = [
    "MAX_FRAMES",
    "extract_frames",
    "is_native_path",
]
