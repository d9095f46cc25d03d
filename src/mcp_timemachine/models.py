"""Data models for edit operations, change descriptors, and document identities."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Union

# Longest key that still leaves room for the ".ot.json" suffix under
# common 255-byte file-name limits.
MAX_KEY_LENGTH = 200
HASHED_KEY_PREFIX = "sha256-"


class OperationKind(Enum):
    """Tag stored in the "operation" field of a persisted operation."""
    INSERT = "insert"
    DELETE = "delete"


def utf16_len(text: str) -> int:
    """Length of text in UTF-16 code units."""
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


@dataclass(frozen=True)
class InsertOp:
    """Insert ``text`` at ``position``."""
    position: int
    text: str

    @property
    def kind(self) -> OperationKind:
        return OperationKind.INSERT

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape."""
        return {
            "operation": OperationKind.INSERT.value,
            "position": self.position,
            "text": self.text,
        }


@dataclass(frozen=True)
class DeleteOp:
    """Remove the half-open span ``[start, end)``."""
    start: int
    end: int

    @property
    def kind(self) -> OperationKind:
        return OperationKind.DELETE

    @property
    def length(self) -> int:
        return self.end - self.start

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape."""
        return {
            "operation": OperationKind.DELETE.value,
            "start": self.start,
            "end": self.end,
        }


Operation = Union[InsertOp, DeleteOp]


def seed_operation(text: str) -> InsertOp:
    """Baseline entry that reconstructs ``text`` from the empty string."""
    return InsertOp(position=0, text=text)


@dataclass(frozen=True)
class ChangeDescriptor:
    """One contiguous edit against the pre-edit document.

    ``range_length`` code units starting at ``range_offset`` are replaced
    by ``text`` (which may be empty).
    """
    range_offset: int
    range_length: int
    text: str = ""

    @property
    def range_end(self) -> int:
        return self.range_offset + self.range_length

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeDescriptor":
        """Build from either host-style or snake_case field names.

        Raises:
            KeyError: If the offset or length field is missing
        """
        if "rangeOffset" in data:
            offset = data["rangeOffset"]
        else:
            offset = data["range_offset"]
        if "rangeLength" in data:
            length = data["rangeLength"]
        else:
            length = data["range_length"]
        return cls(range_offset=offset, range_length=length, text=data.get("text", ""))

    def to_dict(self) -> dict[str, Any]:
        return {
            "rangeOffset": self.range_offset,
            "rangeLength": self.range_length,
            "text": self.text,
        }


def _encode_key(path: str) -> str:
    return base64.urlsafe_b64encode(path.encode("utf-8")).decode("ascii").rstrip("=")


def _decode_key(key: str) -> str:
    padding = "=" * (-len(key) % 4)
    return base64.urlsafe_b64decode(key + padding).decode("utf-8")


@dataclass(frozen=True)
class DocumentIdentity:
    """Stable key addressing one document's operation log.

    Keys are a reversible URL-safe encoding of the absolute path. Paths
    whose encoding would be too long for a file name fall back to a
    SHA-256 digest; those keys cannot be decoded and the store records
    the path alongside the log to detect collisions.
    """
    path: str
    key: str

    @property
    def hashed(self) -> bool:
        return self.key.startswith(HASHED_KEY_PREFIX)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "DocumentIdentity":
        absolute = str(Path(path).expanduser().resolve())
        key = _encode_key(absolute)
        if len(key) > MAX_KEY_LENGTH:
            digest = hashlib.sha256(absolute.encode("utf-8")).hexdigest()
            key = f"{HASHED_KEY_PREFIX}{digest}"
        return cls(path=absolute, key=key)

    @classmethod
    def from_key(cls, key: str) -> "DocumentIdentity":
        """Recover an identity from a reversible key.

        Raises:
            ValueError: If the key is hashed or not a valid encoding
        """
        if key.startswith(HASHED_KEY_PREFIX):
            raise ValueError(f"Hashed key cannot be decoded: {key}")
        try:
            path = _decode_key(key)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid document key: {key}") from e
        return cls(path=path, key=key)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "key": self.key}


@dataclass(frozen=True)
class AppendResult:
    """Outcome of recording one change batch."""
    identity: DocumentIdentity
    operations: tuple[Operation, ...]
    total: int
    seeded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.identity.path,
            "appended": len(self.operations),
            "operations": [op.to_dict() for op in self.operations],
            "total": self.total,
            "seeded": self.seeded,
        }


@dataclass(frozen=True)
class ReplayResult:
    """Reconstructed document text at one point in history."""
    identity: DocumentIdentity
    text: str
    position: int
    total: int

    @property
    def at_head(self) -> bool:
        return self.position == self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.identity.path,
            "position": self.position,
            "total": self.total,
            "at_head": self.at_head,
            "text": self.text,
        }
