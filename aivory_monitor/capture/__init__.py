"""Capture engine: variable trees, stack frames, and fingerprints."""

from .fingerprint import FINGERPRINT_FRAME_COUNT, compute_fingerprint
from .frames import MAX_FRAMES, extract_frames, is_native_path
from .values import ValueCapturer, type_name

__all__ = [
    "FINGERPRINT_FRAME_COUNT",
    "MAX_FRAMES",
    "ValueCapturer",
    "compute_fingerprint",
    "extract_frames",
    "is_native_path",
    "type_name",
]
