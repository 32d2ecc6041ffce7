"""
Data types for refs and snapshots.

Document content is opaque JSON: any value json.dumps accepts. The store
never looks inside it.
"""

from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from typing import Any, Union

# Any JSON-serializable value
DocumentContent = Any

IdLike = Union[uuid.UUID, str]


@dataclass(frozen=True)
class Ref:
    """A stable document identity.

    Attributes:
        id: Ref identifier (UUIDv7, sortable by creation time)
        head: Identifier of the current head snapshot
    """

    id: uuid.UUID
    head: uuid.UUID


@dataclass(frozen=True)
class Snapshot:
    """A stored content version of a ref.

    Attributes:
        id: Snapshot identifier
        for_ref: Ref this snapshot was written for
        content: Document payload
        at_time: Time of last write (Unix ms)
    """

    id: uuid.UUID
    for_ref: uuid.UUID | None
    content: DocumentContent
    at_time: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": str(self.id),
            "forRef": str(self.for_ref) if self.for_ref else None,
            "content": self.content,
            "atTime": self.at_time,
        }


def new_ref_id() -> uuid.UUID:
    """Generate a time-ordered UUID (RFC 9562 version 7).

    48 bits of Unix milliseconds, then version and variant bits around
    74 random bits.
    """
    unix_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")
    value = (unix_ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & 0x3FFF_FFFF_FFFF_FFFF
    return uuid.UUID(int=value)


def coerce_id(value: IdLike) -> str:
    """Normalize an identifier to its canonical string form.

    Raises:
        ValueError: If value is not a valid UUID
    """
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(uuid.UUID(str(value)))
