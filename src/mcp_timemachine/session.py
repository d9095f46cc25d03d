"""Time machine session - records document edits and scrubs through their history."""

from __future__ import annotations

import difflib
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from .config import ProjectConfig
from .engine import (
    DocumentNotText,
    LogStoreUnavailable,
    Timeline,
    diff_to_changes,
    is_opposite_op,
    translate_changes,
)
from .models import (
    AppendResult,
    DocumentIdentity,
    Operation,
    ReplayResult,
    seed_operation,
    utf16_len,
)
from .store import LogStore

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class TimeMachine:
    """Session context tying the translator, replay engine, and log store together.

    The document being edited is always passed explicitly; the only state
    held here is a cache of Timelines keyed by document identity.
    """

    def __init__(self, config: ProjectConfig, store: Optional[LogStore] = None):
        self.config = config
        self.store = store or LogStore(config)
        self._timelines: dict[str, Timeline] = {}
        self._lock = threading.RLock()

    def _resolve(self, path: PathLike) -> Path:
        p = Path(path)
        if not p.is_absolute():
            p = self.config.project_root / p
        return p

    def identity_for(self, path: PathLike) -> DocumentIdentity:
        return DocumentIdentity.from_path(self._resolve(path))

    def _timeline(self, identity: DocumentIdentity) -> Timeline:
        with self._lock:
            timeline = self._timelines.get(identity.key)
            if timeline is None:
                timeline = Timeline(
                    self.store.load(identity),
                    checkpoint_interval=self.config.checkpoint_interval,
                )
                self._timelines[identity.key] = timeline
            return timeline

    def _current_timeline(self, identity: DocumentIdentity) -> Timeline:
        """Cached Timeline, reloaded if the stored log no longer matches it."""
        with self._lock:
            stored = self.store.load(identity)
            timeline = self._timelines.get(identity.key)
            if timeline is not None and timeline.operations == tuple(stored):
                return timeline
            if timeline is not None:
                logger.warning("Log for %s changed outside this session; reloading", identity.path)
            timeline = Timeline(stored, checkpoint_interval=self.config.checkpoint_interval)
            self._timelines[identity.key] = timeline
            return timeline

    def _forget(self, identity: DocumentIdentity) -> None:
        with self._lock:
            self._timelines.pop(identity.key, None)

    def _read_document(self, identity: DocumentIdentity) -> str:
        try:
            with open(identity.path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise DocumentNotText(f"{identity.path} is not valid UTF-8: {e}") from e
        except OSError as e:
            raise LogStoreUnavailable(f"Cannot read document {identity.path}: {e}") from e

    # ========== Recording ==========

    def load(self, path: PathLike) -> list[Operation]:
        """Load the persisted log for a document."""
        return self.store.load(self.identity_for(path))

    def on_document_changed(
        self,
        path: PathLike,
        changes: Iterable[Any],
        baseline_text: str = "",
    ) -> AppendResult:
        """Record one batch of content changes.

        Args:
            path: Document the changes apply to
            changes: ChangeDescriptors or mappings with rangeOffset/rangeLength/text
            baseline_text: Document text before the batch; seeds an empty log

        Returns:
            AppendResult with the new operations and the log's total length
        """
        identity = self.identity_for(path)

        with self._lock:
            timeline = self._current_timeline(identity)
            before = len(timeline)
            # Offsets are checked against the text the batch applies to
            length = utf16_len(timeline.head()) if before else utf16_len(baseline_text)
            operations = tuple(translate_changes(changes, length))
            seeded = before == 0 and bool(baseline_text) and bool(operations)
            total = self.store.append(identity, operations, baseline=baseline_text)
            if total != before + len(operations) + int(seeded):
                # Another writer touched the log; reload on next access
                logger.warning("Log for %s changed outside this session; reloading", identity.path)
                self._forget(identity)
            else:
                if seeded:
                    timeline.extend([seed_operation(baseline_text)])
                timeline.extend(operations)

        result = AppendResult(identity=identity, operations=operations, total=total, seeded=seeded)
        if operations:
            logger.info("Recorded %d operation(s) for %s (%d total)", len(operations), identity.path, total)
            if "post_append" in self.config.hooks:
                self.config.hooks["post_append"](result)
        return result

    def record_snapshot(self, path: PathLike, text: Optional[str] = None) -> AppendResult:
        """Record whatever changed between the log's head and ``text``.

        ``text`` defaults to the document's contents on disk. An empty log
        is seeded with the text instead.
        """
        identity = self.identity_for(path)
        if text is None:
            text = self._read_document(identity)

        with self._lock:
            timeline = self._current_timeline(identity)
            if len(timeline) == 0:
                if not text:
                    return AppendResult(identity=identity, operations=(), total=0)
                self.reset(path, text)
                return AppendResult(
                    identity=identity, operations=(), total=1, seeded=True
                )

            changes = diff_to_changes(timeline.head(), text)
            return self.on_document_changed(path, changes)

    def reset(self, path: PathLike, text: Optional[str] = None) -> int:
        """Truncate a document's log to a single baseline of its current text."""
        identity = self.identity_for(path)
        if text is None:
            text = self._read_document(identity)

        with self._lock:
            total = self.store.reset(identity, text)
            self._forget(identity)

        if "post_reset" in self.config.hooks:
            self.config.hooks["post_reset"](identity, text)
        return total

    # ========== Scrubbing ==========

    def replay_at(self, path: PathLike, position: Optional[int] = None) -> ReplayResult:
        """Reconstruct the document after ``position`` operations (default: all)."""
        identity = self.identity_for(path)
        with self._lock:
            timeline = self._timeline(identity)
            total = len(timeline)
            text = timeline.text_at(position)
        return ReplayResult(
            identity=identity,
            text=text,
            position=total if position is None else position,
            total=total,
        )

    def history(
        self,
        path: PathLike,
        start: int = 0,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """List logged operations with their index in the log."""
        identity = self.identity_for(path)
        with self._lock:
            operations = self._timeline(identity).operations

        end = len(operations) if limit is None else min(len(operations), start + limit)
        entries = []
        for index in range(max(start, 0), end):
            op = operations[index]
            entry = {"index": index, **op.to_dict()}
            entry["opposes_previous"] = index > 0 and is_opposite_op(operations[index - 1], op)
            entries.append(entry)
        return entries

    def diff_between(
        self,
        path: PathLike,
        from_position: int,
        to_position: Optional[int] = None,
        context_lines: int = 3,
    ) -> dict[str, Any]:
        """Unified diff between two points in a document's history."""
        identity = self.identity_for(path)
        with self._lock:
            timeline = self._timeline(identity)
            total = len(timeline)
            to_position = total if to_position is None else to_position
            text_a = timeline.text_at(from_position)
            text_b = timeline.text_at(to_position)

        diff = list(difflib.unified_diff(
            text_a.splitlines(keepends=True),
            text_b.splitlines(keepends=True),
            fromfile=f"{identity.path}@{from_position}",
            tofile=f"{identity.path}@{to_position}",
            n=context_lines,
        ))
        additions = sum(1 for line in diff if line.startswith("+") and not line.startswith("+++"))
        deletions = sum(1 for line in diff if line.startswith("-") and not line.startswith("---"))

        return {
            "document": identity.path,
            "from_position": from_position,
            "to_position": to_position,
            "total": total,
            "identical": text_a == text_b,
            "additions": additions,
            "deletions": deletions,
            "diff_text": "".join(diff),
        }

    # ========== Status ==========

    def status(self, path: PathLike) -> dict[str, Any]:
        identity = self.identity_for(path)
        with self._lock:
            timeline = self._timeline(identity)
            total = len(timeline)
            head = timeline.head()
        return {
            "document": identity.path,
            "key": identity.key,
            "log_path": str(self.store.log_path(identity)),
            "total": total,
            "head_length": len(head),
        }

    def documents(self) -> list[dict[str, Any]]:
        """Documents with a log in the store directory."""
        return [identity.to_dict() for identity in self.store.list_documents()]
