"""Document Watcher - background thread recording edits saved to disk.

Polls files under the project root that match the configured patterns.
When a file's modification time or size changes, its new contents are
diffed against the head of its log and the difference is recorded as a
change batch. Files seen for the first time without a log are seeded
with their current contents.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from .engine import DocumentNotText, LogStoreUnavailable, TimeMachineError
from .models import AppendResult
from .session import TimeMachine

logger = logging.getLogger(__name__)


class DocumentWatcher:
    """Background watcher that feeds on-disk edits into a TimeMachine."""

    def __init__(
        self,
        machine: TimeMachine,
        poll_interval: Optional[float] = None,
        on_recorded: Optional[Callable[[AppendResult], None]] = None,
    ):
        """Initialize the watcher.

        Args:
            machine: Session that records the edits
            poll_interval: Seconds between scans (default: from config)
            on_recorded: Callback for each batch that produced operations
        """
        self.machine = machine
        self.config = machine.config
        self.poll_interval = poll_interval if poll_interval is not None else self.config.poll_interval
        self.on_recorded = on_recorded

        self._seen: dict[Path, tuple[float, int]] = {}
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the background watcher thread."""
        if self._running:
            return

        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._run, name="document-watcher", daemon=True)
        self._thread.start()
        logger.info("Watching %s every %.1fs", self.config.project_root, self.poll_interval)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background watcher thread."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._running = False

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:
                logger.exception("Watcher poll failed")
            self._stop_event.wait(self.poll_interval)

    def matches(self, path: Path) -> bool:
        """Whether a file is tracked under the configured patterns."""
        try:
            relative = path.relative_to(self.config.project_root).as_posix()
        except ValueError:
            return False

        if any(fnmatch.fnmatch(relative, pattern) for pattern in self.config.watch_ignore):
            return False
        return any(fnmatch.fnmatch(path.name, pattern) for pattern in self.config.watch_patterns)

    def _candidates(self) -> list[Path]:
        root = self.config.project_root
        if not root.exists():
            return []
        return sorted(p for p in root.rglob("*") if p.is_file() and self.matches(p))

    def poll(self) -> list[AppendResult]:
        """Scan once and record every changed document."""
        results = []
        for path in self._candidates():
            result = self.check_file(path)
            if result is not None and (result.operations or result.seeded):
                results.append(result)
        return results

    def check_file(self, path: Path) -> Optional[AppendResult]:
        """Record a single file if it changed since the last scan."""
        try:
            stat = path.stat()
        except OSError:
            return None

        signature = (stat.st_mtime, stat.st_size)
        if self._seen.get(path) == signature:
            return None

        try:
            result = self.machine.record_snapshot(path)
        except DocumentNotText:
            logger.debug("Skipping non-text file %s", path)
            self._seen[path] = signature
            return None
        except LogStoreUnavailable as e:
            logger.warning("Cannot record %s, will retry: %s", path, e)
            return None
        except TimeMachineError as e:
            # Retried only once the file changes again
            logger.error("Cannot record %s: %s", path, e)
            self._seen[path] = signature
            return None

        self._seen[path] = signature
        if result.operations or result.seeded:
            logger.debug("Recorded %s (%d total)", path, result.total)
            if self.on_recorded:
                self.on_recorded(result)
        return result
