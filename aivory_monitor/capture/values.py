"""Bounded capture of arbitrary runtime values.

Turns any Python object into a :class:`CapturedVariable` tree that is
safe to serialize. Values are dispatched by category, in this order:

1. ``None``
2. booleans and numbers
3. text (``str``, ``bytes``)
4. functions and other routines
5. atoms: enum members, classes, modules
6. sequences and sets
7. mappings
8. exceptions
9. any other object, expanded through its named fields

Expansion stops once ``depth`` reaches ``max_depth``; since every child
is captured at ``depth + 1`` this alone bounds self-referencing values.
Reading a field that raises simply omits that field.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
import inspect
import itertools
import logging
import numbers
import reprlib
from collections.abc import Mapping, Sequence, Set
from typing import Any, Iterable, Optional

from ..schema import CapturedVariable

logger = logging.getLogger(__name__)

NULL_VALUE = "null"
FUNCTION_TYPE = "Function"
ARRAY_TYPE = "Array"
ENUM_TYPE = "Enum"
CLASS_TYPE = "Type"
MODULE_TYPE = "Module"


def type_name(value: Any) -> str:
    """Return a best-effort readable name for the runtime type of value."""
    cls = type(value)
    return getattr(cls, "__qualname__", None) or getattr(cls, "__name__", "object")


def _routine_name(value: Any) -> str:
    if isinstance(value, functools.partial):
        return _routine_name(value.func)
    for attr in ("__qualname__", "__name__"):
        name = getattr(value, attr, None)
        if isinstance(name, str) and name:
            return name
    return type_name(value)


class ValueCapturer:
    """Convert runtime values into bounded variable trees.

    Args:
        max_depth: Depth at which containers and records stop expanding.
        max_string_length: Longest text kept verbatim; longer text is cut
            and flagged as truncated.
        max_collection_size: Sequences longer than this are summarized
            without elements; mappings and records expand at most this
            many entries.
    """

    def __init__(
        self,
        *,
        max_depth: int = 10,
        max_string_length: int = 1000,
        max_collection_size: int = 100,
    ) -> None:
        self._max_depth = max(0, int(max_depth))
        self._max_string_length = max(1, int(max_string_length))
        self._max_collection_size = max(0, int(max_collection_size))
        self._repr = reprlib.Repr()
        self._repr.maxstring = self._max_string_length
        self._repr.maxother = self._max_string_length

    @classmethod
    def from_config(cls, config: Any) -> "ValueCapturer":
        """Build a capturer from the limits of an AgentConfig."""
        return cls(
            max_depth=config.max_capture_depth,
            max_string_length=config.max_string_length,
            max_collection_size=config.max_collection_size,
        )

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def capture_variables(
        self,
        variables: Mapping[Any, Any],
        depth: int = 0,
    ) -> dict[str, CapturedVariable]:
        """Capture every entry of a name -> value mapping at ``depth``."""
        captured: dict[str, CapturedVariable] = {}
        for name, value in variables.items():
            key = str(name)
            captured[key] = self.capture(key, value, depth)
        return captured

    def capture(self, name: str, value: Any, depth: int = 0) -> CapturedVariable:
        """Capture a single value. Never raises."""
        try:
            return self._capture(name, value, depth)
        except Exception as exc:
            logger.debug("Capture of %r failed: %s", name, exc)
            return CapturedVariable(
                name=name,
                type=type_name(value),
                value=f"<unavailable: {type(exc).__name__}>",
            )

    def _capture(self, name: str, value: Any, depth: int) -> CapturedVariable:
        if value is None:
            return CapturedVariable(name=name, type="None", value=NULL_VALUE, is_null=True)

        if isinstance(value, (bool, numbers.Number)):
            return CapturedVariable(name=name, type=type_name(value), value=str(value))

        if isinstance(value, (str, bytes, bytearray)):
            text = value if isinstance(value, str) else bytes(value).decode("utf-8", errors="replace")
            clipped, truncated = self._clip(text)
            return CapturedVariable(
                name=name,
                type=type_name(value),
                value=clipped,
                is_truncated=truncated,
            )

        if inspect.isroutine(value) or isinstance(value, functools.partial):
            return CapturedVariable(
                name=name,
                type=FUNCTION_TYPE,
                value=f"[Function: {_routine_name(value)}]",
            )

        if isinstance(value, enum.Enum):
            return CapturedVariable(
                name=name,
                type=ENUM_TYPE,
                value=f"{type(value).__name__}.{value.name}",
            )
        if inspect.isclass(value):
            return CapturedVariable(
                name=name,
                type=CLASS_TYPE,
                value=f"{value.__module__}.{value.__qualname__}",
            )
        if inspect.ismodule(value):
            return CapturedVariable(name=name, type=MODULE_TYPE, value=value.__name__)

        if self._is_sequence(value):
            return self._capture_sequence(name, value, depth)

        if isinstance(value, Mapping):
            return self._capture_mapping(name, value, depth)

        if isinstance(value, BaseException):
            clipped, truncated = self._clip(str(value))
            return CapturedVariable(
                name=name,
                type=type_name(value),
                value=clipped,
                is_truncated=truncated,
            )

        return self._capture_record(name, value, depth)

    @staticmethod
    def _is_sequence(value: Any) -> bool:
        if isinstance(value, (str, bytes, bytearray, Mapping)):
            return False
        return isinstance(value, (Sequence, Set))

    def _capture_sequence(self, name: str, value: Any, depth: int) -> CapturedVariable:
        length = len(value)
        elements: Optional[list[CapturedVariable]] = None
        if depth < self._max_depth and length <= self._max_collection_size:
            elements = [
                self.capture(f"[{index}]", item, depth + 1)
                for index, item in enumerate(itertools.islice(value, length), start=1)
            ]
        return CapturedVariable(
            name=name,
            type=ARRAY_TYPE,
            value=f"{type_name(value)}({length})",
            array_elements=elements,
            array_length=length,
        )

    def _capture_mapping(self, name: str, value: Mapping[Any, Any], depth: int) -> CapturedVariable:
        kind = type_name(value)
        children: dict[str, CapturedVariable] = {}
        if depth < self._max_depth:
            for key, item in itertools.islice(value.items(), self._max_collection_size):
                child_name = str(key)
                children[child_name] = self.capture(child_name, item, depth + 1)
        return CapturedVariable(
            name=name,
            type=kind,
            value=f"{kind}({len(value)} entries)",
            children=children or None,
        )

    def _capture_record(self, name: str, value: Any, depth: int) -> CapturedVariable:
        clipped, truncated = self._clip(self._safe_repr(value))
        children: dict[str, CapturedVariable] = {}
        if depth < self._max_depth:
            for field_name in itertools.islice(self._named_fields(value), self._max_collection_size):
                try:
                    field_value = getattr(value, field_name)
                except Exception:
                    continue
                children[field_name] = self.capture(field_name, field_value, depth + 1)
        return CapturedVariable(
            name=name,
            type=type_name(value),
            value=clipped,
            is_truncated=truncated,
            children=children or None,
        )

    @staticmethod
    def _named_fields(value: Any) -> Iterable[str]:
        """Yield the field names an object exposes, without duplicates."""
        seen: set[str] = set()

        def _unseen(names: Iterable[str]) -> Iterable[str]:
            for field_name in names:
                if field_name not in seen and not field_name.startswith("__"):
                    seen.add(field_name)
                    yield field_name

        if dataclasses.is_dataclass(value):
            yield from _unseen(f.name for f in dataclasses.fields(value))

        model_fields = getattr(type(value), "model_fields", None)
        if isinstance(model_fields, Mapping):
            yield from _unseen(str(key) for key in model_fields)

        try:
            attributes = vars(value)
        except TypeError:
            attributes = {}
        yield from _unseen(str(key) for key in list(attributes))

        for cls in type(value).__mro__:
            slots = cls.__dict__.get("__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            yield from _unseen(slots)

    def _safe_repr(self, value: Any) -> str:
        try:
            return self._repr.repr(value)
        except Exception:
            return f"<{type_name(value)} object>"

    def _clip(self, text: str) -> tuple[str, bool]:
        if len(text) > self._max_string_length:
            return text[: self._max_string_length], True
        return text, False


__all__ = [
    "ARRAY_TYPE",
    "FUNCTION_TYPE",
    "NULL_VALUE",
    "ValueCapturer",
    "type_name",
]
