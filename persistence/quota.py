"""
Quota-aware wrapper over a key/value backend.

Every key belongs to a priority class. When the backend refuses a write for
lack of space, Critical writes trigger a reclaimer that evicts the least
important entries first (largest first within a class) and retries once.
Non-Critical writes simply fail. Critical entries are never evicted.

A key's class comes from the priority it was last written with. Declarations
that differ from the static map are kept in a Critical ledger entry so they
survive a restart.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Mapping

from . import keys as K
from .errors import StorageQuotaError
from .interfaces import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_RECLAIM_TARGET_BYTES = 1024 * 1024


class StoragePriority(IntEnum):
    CRITICAL = 1  # current document, dirty record
    HIGH = 2  # version history, saved documents index
    MEDIUM = 3  # older history, analytics
    LOW = 4  # cached/parsed data, backups
    VERY_LOW = 5  # temporary workflow state


STORAGE_PRIORITY_MAP: dict[str, StoragePriority] = {
    K.CURRENT_DOCUMENT_ID_KEY: StoragePriority.CRITICAL,
    K.CURRENT_DOCUMENT_KEY: StoragePriority.CRITICAL,
    K.DIRTY_FLAG_KEY: StoragePriority.CRITICAL,
    K.DIRTY_DATA_KEY: StoragePriority.CRITICAL,
    K.DIRTY_LAST_MODIFIED_KEY: StoragePriority.CRITICAL,
    K.PRIORITY_LEDGER_KEY: StoragePriority.CRITICAL,
    "darkMode": StoragePriority.CRITICAL,
    K.SAVED_DOCUMENTS_KEY: StoragePriority.HIGH,
    K.VERSION_HISTORY_KEY: StoragePriority.HIGH,
    "resume_analytics_history": StoragePriority.HIGH,
    "resume_shareable_links": StoragePriority.MEDIUM,
    "interview_prep_sessions": StoragePriority.MEDIUM,
    "tracked_jobs": StoragePriority.MEDIUM,
    "parsed_resumes": StoragePriority.LOW,
    "linkedin_profile": StoragePriority.LOW,
    "content_history": StoragePriority.LOW,
    K.VERSION_SAVE_FAILURES_KEY: StoragePriority.LOW,
    "workflow_context": StoragePriority.VERY_LOW,
    "dismissed_workflow_suggestions": StoragePriority.VERY_LOW,
    "hasSeenTour": StoragePriority.VERY_LOW,
}


def estimate_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


@dataclass
class StorageResult:
    success: bool
    error: str | None = None
    freed_space: bool = False


@dataclass
class PriorityUsage:
    count: int = 0
    size: int = 0


@dataclass
class StorageStats:
    total_size: int = 0
    item_count: int = 0
    by_priority: dict[StoragePriority, PriorityUsage] = field(
        default_factory=lambda: {p: PriorityUsage() for p in StoragePriority}
    )


class QuotaAwareStore:
    def __init__(
        self,
        backend: KeyValueStore,
        *,
        priorities: Mapping[str, StoragePriority] | None = None,
        reclaim_target_bytes: int = DEFAULT_RECLAIM_TARGET_BYTES,
    ):
        self._backend = backend
        self._priorities = dict(STORAGE_PRIORITY_MAP)
        if priorities:
            self._priorities.update(priorities)
        self._reclaim_target = reclaim_target_bytes
        self._declared = self._load_ledger()

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    def _default_priority(self, key: str) -> StoragePriority:
        if key in self._priorities:
            return self._priorities[key]
        if K.is_backup_key(key):
            return StoragePriority.LOW
        return StoragePriority.MEDIUM

    def priority_for(self, key: str) -> StoragePriority:
        return self._declared.get(key) or self._default_priority(key)

    # --- priority ledger ---

    def _load_ledger(self) -> dict[str, StoragePriority]:
        raw = self.get(K.PRIORITY_LEDGER_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("Ignoring unreadable priority ledger: %s", e)
            return {}
        if not isinstance(data, dict):
            return {}
        declared: dict[str, StoragePriority] = {}
        for key, value in data.items():
            try:
                declared[key] = StoragePriority(value)
            except ValueError:
                continue
        return declared

    def _save_ledger(self) -> None:
        raw = json.dumps({k: int(p) for k, p in self._declared.items()}, sort_keys=True, separators=(",", ":"))
        try:
            self._backend.set(K.PRIORITY_LEDGER_KEY, raw)
        except (StorageQuotaError, OSError) as e:
            logger.warning("Could not persist priority ledger: %s", e)

    def _record_priority(self, key: str, prio: StoragePriority) -> None:
        if key == K.PRIORITY_LEDGER_KEY:
            return
        if prio == self._default_priority(key):
            if self._declared.pop(key, None) is None:
                return
        elif self._declared.get(key) == prio:
            return
        else:
            self._declared[key] = prio
        self._save_ledger()

    def _forget_priority(self, key: str) -> None:
        if self._declared.pop(key, None) is not None:
            self._save_ledger()

    def get(self, key: str) -> str | None:
        try:
            return self._backend.get(key)
        except OSError as e:
            logger.error("Error reading %s from local storage: %s", key, e)
            return None

    def keys(self) -> list[str]:
        return self._backend.keys()

    def remove(self, key: str) -> bool:
        try:
            self._backend.remove(key)
            self._forget_priority(key)
            return True
        except OSError as e:
            logger.error("Error removing %s from local storage: %s", key, e)
            return False

    def set(self, key: str, value: str, priority: StoragePriority | None = None) -> StorageResult:
        prio = self.priority_for(key) if priority is None else priority
        try:
            self._backend.set(key, value)
            self._record_priority(key, prio)
            return StorageResult(success=True)
        except StorageQuotaError:
            logger.warning("Quota exceeded for key: %s", key)
        except OSError as e:
            return StorageResult(success=False, error=f"Failed to save data: {e}")

        if prio != StoragePriority.CRITICAL:
            return StorageResult(
                success=False,
                error="Storage is full. Some non-essential data could not be saved.",
            )

        freed = self.free_up_space()
        if freed <= 0:
            return StorageResult(
                success=False,
                error="Storage is full and cannot be freed. Please delete some old resumes or clear your browser cache.",
            )
        try:
            self._backend.set(key, value)
            self._record_priority(key, prio)
            return StorageResult(success=True, freed_space=True)
        except (StorageQuotaError, OSError):
            return StorageResult(
                success=False,
                error="Storage is full. Please delete some old resumes or clear your browser cache.",
            )

    def free_up_space(self, target_bytes: int | None = None) -> int:
        """Evict non-Critical entries until `target_bytes` are freed. Returns bytes freed."""
        target = self._reclaim_target if target_bytes is None else target_bytes
        candidates: list[tuple[StoragePriority, int, str]] = []
        for key in self._backend.keys():
            prio = self.priority_for(key)
            if prio == StoragePriority.CRITICAL:
                continue
            value = self._backend.get(key) or ""
            candidates.append((prio, estimate_size(key, value), key))

        # Least important class first, largest entry first within a class.
        candidates.sort(key=lambda c: (-int(c[0]), -c[1]))

        freed = 0
        for prio, size, key in candidates:
            if freed >= target:
                break
            if self.remove(key):
                freed += size
                logger.info("Freed %d bytes by removing %s (%s)", size, key, prio.name)
        return freed

    def clear_non_critical(self) -> int:
        removed = 0
        for key in self._backend.keys():
            if self.priority_for(key) == StoragePriority.CRITICAL:
                continue
            if self.remove(key):
                removed += 1
        return removed

    def usage_bytes(self) -> int:
        return sum(estimate_size(k, self._backend.get(k) or "") for k in self._backend.keys())

    def stats(self) -> StorageStats:
        stats = StorageStats()
        for key in self._backend.keys():
            size = estimate_size(key, self._backend.get(key) or "")
            bucket = stats.by_priority[self.priority_for(key)]
            bucket.count += 1
            bucket.size += size
            stats.total_size += size
            stats.item_count += 1
        return stats
