"""Pydantic schemas for AIVory Monitor captures.

These models define the contract for a captured exception: the bounded
variable tree, the stack frames, and the record sent to the backend.
Variables and frames serialize with camelCase keys; the record itself
uses the snake_case keys the backend expects.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

FINGERPRINT_LENGTH = 16


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    normalized = value
    if normalized.tzinfo is None:
        normalized = normalized.replace(tzinfo=timezone.utc)
    else:
        normalized = normalized.astimezone(timezone.utc)
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CapturedVariable(BaseModel):
    """One node of a captured variable tree.

    A node carries either a plain ``value``, a ``children`` mapping
    (keyed containers and records) or ``array_elements`` (sequences),
    never more than one kind of expansion.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    name: str
    type: str
    value: str = ""
    is_null: bool = False
    is_truncated: bool = False
    children: Optional[Dict[str, "CapturedVariable"]] = None
    array_elements: Optional[List["CapturedVariable"]] = None
    array_length: Optional[int] = Field(default=None, ge=0)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-safe mapping sent to the backend."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StackFrame(BaseModel):
    """A single frame of the captured call stack."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    method_name: str
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    is_native: bool = False

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-safe mapping sent to the backend."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CaptureRecord(BaseModel):
    """Complete snapshot of one captured exception."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    exception_type: str = Field(..., min_length=1)
    message: str = ""
    fingerprint: str
    stack_trace: List[StackFrame] = Field(default_factory=list)
    local_variables: Dict[str, CapturedVariable] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("fingerprint")
    @classmethod
    def _validate_fingerprint(cls, value: str) -> str:
        if len(value) != FINGERPRINT_LENGTH or any(c not in "0123456789abcdef" for c in value):
            raise ValueError("fingerprint must be 16 lowercase hex characters")
        return value

    @field_serializer("captured_at", when_used="json")
    def _serialise_captured_at(self, value: datetime) -> str:
        return format_timestamp(value)

    def to_wire(self) -> dict[str, Any]:
        """Return the record as the JSON-safe payload mapping."""
        return {
            "id": self.id,
            "exception_type": self.exception_type,
            "message": self.message,
            "fingerprint": self.fingerprint,
            "stack_trace": [frame.to_wire() for frame in self.stack_trace],
            "local_variables": {
                name: variable.to_wire() for name, variable in self.local_variables.items()
            },
            "context": dict(self.context),
            "captured_at": format_timestamp(self.captured_at),
        }


CapturedVariable.model_rebuild()


__all__ = [
    "CaptureRecord",
    "CapturedVariable",
    "FINGERPRINT_LENGTH",
    "StackFrame",
    "format_timestamp",
]
