"""Log store - one append-only JSON operation log per document identity."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional

import portalocker

from .config import ProjectConfig
from .engine import (
    IdentityCollisionError,
    LogStoreUnavailable,
    MalformedLog,
    operations_from_json,
    operations_to_json,
)
from .locking import atomic_write_text, file_lock
from .models import DocumentIdentity, Operation, seed_operation

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".ot.json"
PATH_SUFFIX = ".path"


class LogStore:
    """Reads and appends persisted operation logs.

    Appends for one identity are serialized by an in-process lock and a
    file lock; each write replaces the whole array atomically.
    """

    def __init__(self, config: ProjectConfig):
        self.config = config
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _identity_lock(self, identity: DocumentIdentity) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(identity.key)
            if lock is None:
                lock = self._locks[identity.key] = threading.Lock()
            return lock

    def log_path(self, identity: DocumentIdentity) -> Path:
        """Path of the log file for a document."""
        if self.config.sidecar_logs:
            doc = Path(identity.path)
            return doc.with_name(doc.name + LOG_SUFFIX)
        return self.config.get_store_path() / f"{identity.key}{LOG_SUFFIX}"

    def _path_record(self, identity: DocumentIdentity) -> Path:
        log_path = self.log_path(identity)
        return log_path.with_name(identity.key + PATH_SUFFIX)

    def _check_owner(self, identity: DocumentIdentity, claim: bool = False) -> None:
        """Refuse to share a hashed key between two different paths."""
        if not identity.hashed or self.config.sidecar_logs:
            return

        record = self._path_record(identity)
        if record.exists():
            owner = record.read_text(encoding="utf-8")
            if owner != identity.path:
                raise IdentityCollisionError(
                    f"Log key {identity.key} belongs to {owner}, not {identity.path}"
                )
        elif claim:
            atomic_write_text(record, identity.path)

    def _read(self, identity: DocumentIdentity) -> list[Operation]:
        self._check_owner(identity)
        path = self.log_path(identity)
        if not path.exists():
            return []

        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise MalformedLog(f"{path} is not valid UTF-8: {e}") from e
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedLog(f"{path} is not valid JSON: {e}") from e
        return operations_from_json(data)

    def _write(self, identity: DocumentIdentity, operations: list[Operation]) -> None:
        self._check_owner(identity, claim=True)
        payload = json.dumps(operations_to_json(operations), ensure_ascii=False)
        atomic_write_text(self.log_path(identity), payload)

    def load(self, identity: DocumentIdentity) -> list[Operation]:
        """Load a document's log; empty if none exists.

        Raises:
            LogStoreUnavailable: If the file cannot be read
            MalformedLog: If the file does not hold a valid operation array
        """
        try:
            return self._read(identity)
        except OSError as e:
            raise LogStoreUnavailable(f"Cannot read log for {identity.path}: {e}") from e

    def append(
        self,
        identity: DocumentIdentity,
        operations: Iterable[Operation],
        baseline: str = "",
    ) -> int:
        """Append operations, seeding an empty log with ``baseline`` first.

        ``baseline`` is the document text the new operations apply to. It
        is only written when the existing log is empty and it is non-empty.

        Returns:
            Total number of operations in the log after the append
        """
        new_ops = list(operations)
        with self._identity_lock(identity):
            try:
                with file_lock(self.log_path(identity), timeout=self.config.lock_timeout):
                    existing = self._read(identity)
                    seeded = not existing and bool(baseline) and bool(new_ops)
                    if seeded:
                        existing.append(seed_operation(baseline))
                    if not new_ops:
                        return len(existing)

                    existing.extend(new_ops)
                    self._write(identity, existing)
            except portalocker.exceptions.LockException as e:
                raise LogStoreUnavailable(f"Timed out locking log for {identity.path}") from e
            except OSError as e:
                raise LogStoreUnavailable(f"Cannot append to log for {identity.path}: {e}") from e

        logger.debug(
            "Appended %d operation(s) to %s (total %d%s)",
            len(new_ops), identity.path, len(existing), ", seeded" if seeded else "",
        )
        return len(existing)

    def reset(self, identity: DocumentIdentity, text: str) -> int:
        """Truncate the log to a single seed entry holding ``text``."""
        with self._identity_lock(identity):
            try:
                with file_lock(self.log_path(identity), timeout=self.config.lock_timeout):
                    self._write(identity, [seed_operation(text)])
            except portalocker.exceptions.LockException as e:
                raise LogStoreUnavailable(f"Timed out locking log for {identity.path}") from e
            except OSError as e:
                raise LogStoreUnavailable(f"Cannot reset log for {identity.path}: {e}") from e

        logger.info("Reset log for %s to a %d-character baseline", identity.path, len(text))
        return 1

    def exists(self, identity: DocumentIdentity) -> bool:
        return self.log_path(identity).exists()

    def list_documents(self) -> list[DocumentIdentity]:
        """Identities with a log in the central store directory."""
        store = self.config.get_store_path()
        if not store.exists():
            return []

        identities = []
        for log_file in sorted(store.glob(f"*{LOG_SUFFIX}")):
            key = log_file.name[: -len(LOG_SUFFIX)]
            identity = self._identity_from_key(store, key)
            if identity is not None:
                identities.append(identity)
        return identities

    def _identity_from_key(self, store: Path, key: str) -> Optional[DocumentIdentity]:
        if key.startswith("sha256-"):
            record = store / f"{key}{PATH_SUFFIX}"
            if not record.exists():
                logger.warning("Hashed log %s has no path record; skipping", key)
                return None
            return DocumentIdentity(path=record.read_text(encoding="utf-8"), key=key)
        try:
            return DocumentIdentity.from_key(key)
        except ValueError:
            logger.warning("Ignoring log file with undecodable key %s", key)
            return None
