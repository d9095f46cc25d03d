"""Core edit-log engine - translation of change batches and deterministic replay."""

from __future__ import annotations

import difflib
from typing import Any, Iterable, Optional, Sequence

from .models import (
    ChangeDescriptor,
    DeleteOp,
    InsertOp,
    Operation,
    OperationKind,
    utf16_len,
)

DEFAULT_CHECKPOINT_INTERVAL = 64

_ENCODING = "utf-16-le"
_ERRORS = "surrogatepass"


class TimeMachineError(Exception):
    """Base exception for time machine operations."""
    pass


class InvalidChangeDescriptor(TimeMachineError):
    """Raised when a change descriptor violates its contract."""
    pass


class MalformedLog(TimeMachineError):
    """Raised when an operation log cannot be replayed faithfully."""

    def __init__(self, message: str, index: Optional[int] = None):
        if index is not None:
            message = f"Operation {index}: {message}"
        super().__init__(message)
        self.index = index


class LogStoreUnavailable(TimeMachineError):
    """Raised when persisted log state cannot be read or written."""
    pass


class IdentityCollisionError(TimeMachineError):
    """Raised when a hashed document key is already owned by another path."""
    pass


class DocumentNotText(TimeMachineError):
    """Raised when a document's contents are not valid UTF-8."""
    pass


def _is_offset(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ========== Operation codec and validation ==========

def operation_from_dict(data: Any, index: Optional[int] = None) -> Operation:
    """Decode one persisted operation.

    Raises:
        MalformedLog: On an unknown tag, missing field, or ill-typed field
    """
    if not isinstance(data, dict):
        raise MalformedLog(f"expected an object, got {type(data).__name__}", index)

    tag = data.get("operation")
    if tag == OperationKind.INSERT.value:
        if "position" not in data or "text" not in data:
            raise MalformedLog("insert requires 'position' and 'text'", index)
        op: Operation = InsertOp(position=data["position"], text=data["text"])
    elif tag == OperationKind.DELETE.value:
        if "start" not in data or "end" not in data:
            raise MalformedLog("delete requires 'start' and 'end'", index)
        op = DeleteOp(start=data["start"], end=data["end"])
    else:
        raise MalformedLog(f"unknown operation tag: {tag!r}", index)

    validate_operation(op, index)
    return op


def operations_from_json(data: Any) -> list[Operation]:
    """Decode a persisted log (a JSON array of operations)."""
    if not isinstance(data, list):
        raise MalformedLog(f"log must be an array, got {type(data).__name__}")
    return [operation_from_dict(item, i) for i, item in enumerate(data)]


def operations_to_json(operations: Iterable[Operation]) -> list[dict[str, Any]]:
    return [op.to_dict() for op in operations]


def validate_operation(op: Any, index: Optional[int] = None) -> None:
    """Check an operation's shape independent of any document state.

    Raises:
        MalformedLog: If the operation is not a well-formed Insert or Delete
    """
    if isinstance(op, InsertOp):
        if not _is_offset(op.position):
            raise MalformedLog(f"insert position must be an integer, got {op.position!r}", index)
        if op.position < 0:
            raise MalformedLog(f"insert position is negative: {op.position}", index)
        if not isinstance(op.text, str):
            raise MalformedLog(f"insert text must be a string, got {type(op.text).__name__}", index)
    elif isinstance(op, DeleteOp):
        if not _is_offset(op.start) or not _is_offset(op.end):
            raise MalformedLog(f"delete bounds must be integers, got [{op.start!r}, {op.end!r})", index)
        if op.start < 0:
            raise MalformedLog(f"delete start is negative: {op.start}", index)
        if op.end < op.start:
            raise MalformedLog(f"delete end {op.end} is before start {op.start}", index)
    else:
        raise MalformedLog(f"unrecognized operation: {op!r}", index)


def is_opposite_op(a: Operation, b: Operation) -> bool:
    """True when one operation inserts inside the span the other deletes."""
    if isinstance(a, InsertOp) and isinstance(b, DeleteOp):
        return b.start <= a.position <= b.end
    if isinstance(a, DeleteOp) and isinstance(b, InsertOp):
        return a.start <= b.position <= a.end
    return False


# ========== Operation Translator ==========

def parse_change(data: Any) -> ChangeDescriptor:
    """Build a ChangeDescriptor from a mapping.

    Raises:
        InvalidChangeDescriptor: If required fields are missing
    """
    if isinstance(data, ChangeDescriptor):
        return data
    if not isinstance(data, dict):
        raise InvalidChangeDescriptor(f"change must be an object, got {type(data).__name__}")
    try:
        return ChangeDescriptor.from_dict(data)
    except KeyError as e:
        raise InvalidChangeDescriptor(f"change is missing field {e}") from e


def _check_change(change: ChangeDescriptor) -> None:
    if not _is_offset(change.range_offset) or not _is_offset(change.range_length):
        raise InvalidChangeDescriptor(
            f"range offset and length must be integers, got "
            f"({change.range_offset!r}, {change.range_length!r})"
        )
    if change.range_offset < 0:
        raise InvalidChangeDescriptor(f"negative range offset: {change.range_offset}")
    if change.range_length < 0:
        raise InvalidChangeDescriptor(f"negative range length: {change.range_length}")
    if not isinstance(change.text, str):
        raise InvalidChangeDescriptor(f"change text must be a string, got {type(change.text).__name__}")


def translate_change(change: ChangeDescriptor) -> list[Operation]:
    """Translate one change into log operations.

    A replace becomes a delete followed by an insert at the same offset;
    the insert's position refers to the text after the delete.

    Raises:
        InvalidChangeDescriptor: On negative offsets or lengths
    """
    _check_change(change)
    start = change.range_offset

    ops: list[Operation] = []
    if change.range_length > 0:
        ops.append(DeleteOp(start=start, end=change.range_end))
    if change.text:
        ops.append(InsertOp(position=start, text=change.text))
    return ops


def translate_changes(
    changes: Iterable[Any],
    document_length: Optional[int] = None,
) -> list[Operation]:
    """Translate a change batch, preserving the batch order.

    With ``document_length`` (UTF-16 units), each change is checked
    against the length left by the changes before it.

    Raises:
        InvalidChangeDescriptor: If a change is malformed or ends past the document
    """
    ops: list[Operation] = []
    length = document_length
    for change in changes:
        change = parse_change(change)
        _check_change(change)
        if length is not None:
            if change.range_end > length:
                raise InvalidChangeDescriptor(
                    f"change range {change.range_offset}..{change.range_end} "
                    f"is past end of document (length {length})"
                )
            length += utf16_len(change.text) - change.range_length
        ops.extend(translate_change(change))
    return ops


# ========== Replay Engine ==========

def _apply(buffer: bytearray, op: Operation, index: int) -> None:
    """Apply one operation in place to a UTF-16-LE buffer."""
    length = len(buffer) // 2
    validate_operation(op, index)

    if isinstance(op, InsertOp):
        if op.position > length:
            raise MalformedLog(
                f"insert position {op.position} is past end of document (length {length})", index
            )
        at = op.position * 2
        buffer[at:at] = op.text.encode(_ENCODING, _ERRORS)
    else:
        if op.end > length:
            raise MalformedLog(
                f"delete span [{op.start}, {op.end}) is past end of document (length {length})", index
            )
        del buffer[op.start * 2:op.end * 2]


def _decode(buffer: bytes) -> str:
    return bytes(buffer).decode(_ENCODING, _ERRORS)


def _check_prefix(prefix_length: Optional[int], total: int) -> int:
    if prefix_length is None:
        return total
    if not _is_offset(prefix_length) or not 0 <= prefix_length <= total:
        raise ValueError(f"prefix length must be between 0 and {total}, got {prefix_length!r}")
    return prefix_length


def replay(log: Sequence[Operation], prefix_length: Optional[int] = None) -> str:
    """Fold the first ``prefix_length`` operations (default: all) into text.

    Raises:
        MalformedLog: If any replayed operation is out of bounds or ill-formed
        ValueError: If prefix_length is outside [0, len(log)]
    """
    count = _check_prefix(prefix_length, len(log))
    buffer = bytearray()
    for index in range(count):
        _apply(buffer, log[index], index)
    return _decode(buffer)


class Timeline:
    """Replay over one append-only log with cached checkpoints.

    Checkpoints hold the buffer after every ``checkpoint_interval``
    operations; because the log only grows, they stay valid across
    ``extend`` calls. Results are identical to ``replay``.
    """

    def __init__(
        self,
        operations: Iterable[Operation] = (),
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ):
        if checkpoint_interval < 1:
            raise ValueError(f"checkpoint interval must be positive, got {checkpoint_interval}")
        self.checkpoint_interval = checkpoint_interval
        self._operations: list[Operation] = list(operations)
        self._checkpoints: dict[int, bytes] = {0: b""}

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations)

    def extend(self, operations: Iterable[Operation]) -> int:
        """Append operations and return the new length."""
        self._operations.extend(operations)
        return len(self._operations)

    def text_at(self, position: Optional[int] = None) -> str:
        """Reconstruct the text after ``position`` operations (default: all)."""
        target = _check_prefix(position, len(self._operations))

        base = max(i for i in self._checkpoints if i <= target)
        buffer = bytearray(self._checkpoints[base])
        for index in range(base, target):
            _apply(buffer, self._operations[index], index)
            done = index + 1
            if done % self.checkpoint_interval == 0 and done not in self._checkpoints:
                self._checkpoints[done] = bytes(buffer)
        return _decode(buffer)

    def head(self) -> str:
        return self.text_at(None)


# ========== Snapshot diffing ==========

def diff_to_changes(before: str, after: str) -> list[ChangeDescriptor]:
    """Describe how to turn ``before`` into ``after`` as a change batch.

    Offsets are UTF-16 units against ``before``; changes are ordered from
    the end of the document backwards so each one's offsets stay valid
    while the batch is applied in order.
    """
    if before == after:
        return []

    matcher = difflib.SequenceMatcher(None, before, after, autojunk=False)
    changes = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        changes.append(ChangeDescriptor(
            range_offset=utf16_len(before[:i1]),
            range_length=utf16_len(before[i1:i2]),
            text=after[j1:j2],
        ))
    changes.reverse()
    return changes
