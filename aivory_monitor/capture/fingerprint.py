"""Grouping fingerprints for captured exceptions.

A fingerprint depends only on the error type and the shallow call path
(method and line of the first few non-native frames), so the same bug
raised with different messages groups together on the backend.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from ..schema import FINGERPRINT_LENGTH, StackFrame

FINGERPRINT_FRAME_COUNT = 5


def compute_fingerprint(
    exception_type: str,
    frames: Sequence[StackFrame],
    *,
    frame_count: int = FINGERPRINT_FRAME_COUNT,
) -> str:
    """Compute a stable 16-character hex digest for grouping.

    The digest covers ``exception_type`` followed by ``method:line`` for
    up to ``frame_count`` non-native frames, joined with ``:``. Missing
    line numbers count as 0.

    Args:
        exception_type: Name of the error type.
        frames: Captured frames, most recent first.
        frame_count: Maximum number of non-native frames to include.

    Returns:
        First 16 lowercase hex characters of the SHA-256 digest.
    """
    parts = [exception_type]
    for frame in frames:
        if len(parts) > frame_count:
            break
        if frame.is_native:
            continue
        parts.append(f"{frame.method_name}:{frame.line_number or 0}")

    digest = hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


__all__ = ["FINGERPRINT_FRAME_COUNT", "compute_fingerprint"]
