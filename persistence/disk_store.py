from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from json_store import atomic_write_json, atomic_write_text, read_text

from .errors import CorruptionError, StorageQuotaError
from .interfaces import KeyValueStore
from .locks import GLOBAL_PATH_LOCKS
from .quota import estimate_size
from .recovery import MAX_BACKUPS_PER_KEY, parse_with_recovery

logger = logging.getLogger(__name__)


class DiskJsonDocumentStore:
    """
    Stores a single JSON document on disk at a fixed path.

    - Returns a dict (empty dict on missing/invalid JSON unless loaded strictly).
    - Damaged files are repaired where possible; the raw bytes are kept beside them.
    - Writes atomically.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, strict: bool = False) -> dict[str, Any]:
        """
        Load the document. With `strict`, an unrecoverable file raises
        CorruptionError instead of reading as empty.
        """
        lock = GLOBAL_PATH_LOCKS.lock_for(self._path)
        with lock:
            raw = read_text(self._path)
            if raw is None:
                return {}
            result = parse_with_recovery(raw, key=self._path.name)
            if result.success and not result.recovered:
                return result.data if isinstance(result.data, dict) else {}
            # Keep the damaged bytes before the next save overwrites them.
            self._preserve_corrupt(raw)
            if result.success and isinstance(result.data, dict):
                return result.data
            if strict:
                raise CorruptionError(str(self._path), result.error or "unparseable")
            logger.error("Discarding unreadable JSON document %s: %s", self._path, result.error)
            return {}

    def save(self, doc: dict[str, Any]) -> None:
        lock = GLOBAL_PATH_LOCKS.lock_for(self._path)
        with lock:
            atomic_write_json(self._path, doc)

    def backups(self) -> list[Path]:
        """Preserved corrupt copies, newest first."""
        pattern = f"{self._path.name}.corrupt-*"
        return sorted(self._path.parent.glob(pattern), reverse=True)

    def _preserve_corrupt(self, raw: str) -> None:
        stamp = f"{int(time.time() * 1000):013d}"
        atomic_write_text(self._path.with_name(f"{self._path.name}.corrupt-{stamp}"), raw)
        for stale in self.backups()[MAX_BACKUPS_PER_KEY:]:
            stale.unlink(missing_ok=True)
        logger.warning("Preserved corrupt copy of %s before recovery", self._path)


class DiskKeyValueStore(KeyValueStore):
    """
    File-backed key/value backend: the whole key space lives in one JSON
    object of string values, rewritten atomically on every change.

    Enforces an optional byte quota the same way a browser's localStorage
    does, by refusing the write with StorageQuotaError.
    """

    def __init__(self, path: Path, *, quota_bytes: int | None = None):
        self._doc = DiskJsonDocumentStore(path)
        self._quota = quota_bytes

    @property
    def path(self) -> Path:
        return self._doc.path

    def _entries(self) -> dict[str, str]:
        raw = self._doc.load()
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def usage_bytes(self) -> int:
        return sum(estimate_size(k, v) for k, v in self._entries().items())

    def get(self, key: str) -> str | None:
        return self._entries().get(key)

    def set(self, key: str, value: str) -> None:
        with GLOBAL_PATH_LOCKS.lock_for(self.path):
            entries = self._entries()
            if self._quota is not None:
                current = entries.get(key)
                used = sum(estimate_size(k, v) for k, v in entries.items())
                if current is not None:
                    used -= estimate_size(key, current)
                needed = estimate_size(key, value)
                if used + needed > self._quota:
                    raise StorageQuotaError(key, needed, self._quota)
            entries[key] = value
            self._doc.save(entries)

    def remove(self, key: str) -> None:
        with GLOBAL_PATH_LOCKS.lock_for(self.path):
            entries = self._entries()
            if entries.pop(key, None) is None:
                return
            self._doc.save(entries)

    def keys(self) -> list[str]:
        return list(self._entries().keys())
