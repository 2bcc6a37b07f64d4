"""
Version history: immutable snapshots of a document, kept under one High
priority key and pruned by a retention policy on every write.

On-disk shape of the history blob:

  { "snapshots": [ {id, documentId, versionNumber, data, createdAt, createdBy, label?, changeSummary?} ],
    "highWater": { "<documentId>": <highest versionNumber ever issued> } }

The high-water mark is what keeps version numbers from being reused after
deletion or retention. A bare list of snapshots (the older layout) is still
accepted on read.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from json_store import dumps_compact

from . import keys as K
from .documents import generate_id, parse_timestamp, to_iso, touch, utc_now
from .quota import QuotaAwareStore, StoragePriority
from .recovery import create_backup, load_with_recovery

logger = logging.getLogger(__name__)

MAX_TRACKED_FAILURES = 10

# Fields that change on every save and say nothing about content.
_VOLATILE_FIELDS = frozenset({"updatedAt", "_schemaVersion"})


class VersionSnapshot(BaseModel):
    id: str
    documentId: str
    versionNumber: int
    data: dict[str, Any]
    createdAt: str
    createdBy: str = "auto"
    label: str | None = None
    changeSummary: str | None = None


class VersionHistoryDoc(BaseModel):
    snapshots: list[VersionSnapshot] = Field(default_factory=list)
    highWater: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_disk_doc(cls, doc: Any) -> "VersionHistoryDoc":
        if isinstance(doc, list):
            # Legacy layout: a bare list of snapshots.
            raw_snapshots, raw_high_water = doc, {}
        elif isinstance(doc, Mapping):
            raw_snapshots = doc.get("snapshots") if isinstance(doc.get("snapshots"), list) else []
            raw_high_water = doc.get("highWater") if isinstance(doc.get("highWater"), Mapping) else {}
        else:
            return cls()

        snapshots: list[VersionSnapshot] = []
        for raw in raw_snapshots:
            try:
                snapshots.append(VersionSnapshot.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning("Skipping malformed version snapshot: %s", e.error_count())

        high_water: dict[str, int] = {}
        for doc_id, value in raw_high_water.items():
            if isinstance(value, int) and not isinstance(value, bool):
                high_water[str(doc_id)] = value
        for snap in snapshots:
            high_water[snap.documentId] = max(high_water.get(snap.documentId, 0), snap.versionNumber)
        return cls(snapshots=snapshots, highWater=high_water)

    def to_disk_doc(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True)
class RetentionPolicy:
    max_age_days: int = 90
    max_per_document: int = 50
    max_total: int = 500


def _created_at(snapshot: VersionSnapshot) -> datetime | None:
    return parse_timestamp(snapshot.createdAt)


def _recency_key(snapshot: VersionSnapshot) -> tuple[str, int]:
    created = _created_at(snapshot)
    return (to_iso(created) if created else "", snapshot.versionNumber)


def apply_retention(
    snapshots: list[VersionSnapshot],
    policy: RetentionPolicy,
    now: datetime,
) -> list[VersionSnapshot]:
    """
    Prune `snapshots` by age, then per document, then globally.

    Every document that had a snapshot keeps at least its newest one, unless
    there are more documents than global slots; then the most recently
    active documents win. Returned in chronological order.
    """
    by_document: dict[str, list[VersionSnapshot]] = {}
    for snap in snapshots:
        by_document.setdefault(snap.documentId, []).append(snap)

    cutoff = now - timedelta(days=policy.max_age_days)
    kept: list[VersionSnapshot] = []
    newest: dict[str, VersionSnapshot] = {}
    for doc_id, snaps in by_document.items():
        snaps.sort(key=lambda s: s.versionNumber, reverse=True)
        newest[doc_id] = snaps[0]
        survivors = [
            s for s in snaps if s is snaps[0] or (_created_at(s) is None or _created_at(s) >= cutoff)
        ]
        kept.extend(survivors[: max(policy.max_per_document, 1)])

    if len(kept) > policy.max_total:
        limit = max(policy.max_total, 0)
        active = sorted(newest.values(), key=_recency_key, reverse=True)
        guaranteed = active[:limit]
        chosen = {id(s) for s in guaranteed}
        rest = sorted((s for s in kept if id(s) not in chosen), key=_recency_key, reverse=True)
        kept = guaranteed + rest[: limit - len(guaranteed)]

    return sorted(kept, key=_recency_key)


# --- comparison ------------------------------------------------------------


@dataclass
class VersionComparison:
    from_version: int
    to_version: int
    changed_fields: list[str] = field(default_factory=list)
    personal_info_changed: bool = False
    settings_changed: bool = False
    sections_changed: bool = False
    summary: str = ""


def compare_documents(old: Mapping[str, Any], new: Mapping[str, Any]) -> list[str]:
    """Top-level field groups whose values differ, ignoring timestamps and tags."""
    names = (set(old) | set(new)) - _VOLATILE_FIELDS
    return sorted(name for name in names if old.get(name) != new.get(name))


def _summarize(changed: list[str]) -> str:
    if not changed:
        return "No changes"
    if len(changed) == 1:
        return f"Changed {changed[0]}"
    return f"Changed {len(changed)} fields: " + ", ".join(changed)


# --- failure tracking ------------------------------------------------------


class VersionSaveFailure(BaseModel):
    documentId: str
    error: str
    timestamp: str
    retried: bool = False


@dataclass
class VersionSaveResult:
    success: bool
    snapshot: VersionSnapshot | None = None
    error: str | None = None
    attempts: int = 0


class VersionSaveFailureTracker:
    """Keeps the most recent version-save failures under a Low priority key."""

    def __init__(
        self,
        store: QuotaAwareStore,
        *,
        limit: int = MAX_TRACKED_FAILURES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._limit = limit
        self._clock = clock

    def _write(self, failures: list[VersionSaveFailure]) -> None:
        result = self._store.set(
            K.VERSION_SAVE_FAILURES_KEY,
            dumps_compact([f.model_dump(mode="json") for f in failures[-self._limit :]]),
            StoragePriority.LOW,
        )
        if not result.success:
            logger.warning("Could not record version save failure: %s", result.error)

    def record(self, document_id: str, error: str, *, retried: bool = False) -> None:
        failures = self.list()
        failures.append(
            VersionSaveFailure(documentId=document_id, error=error, timestamp=to_iso(self._clock()), retried=retried)
        )
        self._write(failures)

    def list(self) -> list[VersionSaveFailure]:
        result = load_with_recovery(self._store, K.VERSION_SAVE_FAILURES_KEY)
        if not result.success or not isinstance(result.data, list):
            return []
        failures = []
        for raw in result.data:
            try:
                failures.append(VersionSaveFailure.model_validate(raw))
            except PydanticValidationError:
                continue
        return failures

    def count(self, document_id: str) -> int:
        return sum(1 for f in self.list() if f.documentId == document_id)

    def has_recent(self, document_id: str, within_minutes: float = 5) -> bool:
        threshold = self._clock() - timedelta(minutes=within_minutes)
        for failure in self.list():
            if failure.documentId != document_id:
                continue
            at = parse_timestamp(failure.timestamp)
            if at is not None and at > threshold:
                return True
        return False

    def clear(self, document_id: str | None = None) -> None:
        """Drop tracked failures for one document, or all of them."""
        if document_id is None:
            self._store.remove(K.VERSION_SAVE_FAILURES_KEY)
            return
        failures = self.list()
        remaining = [f for f in failures if f.documentId != document_id]
        if len(remaining) == len(failures):
            return
        if remaining:
            self._write(remaining)
        else:
            self._store.remove(K.VERSION_SAVE_FAILURES_KEY)


# --- store -----------------------------------------------------------------


class VersionHistoryStore:
    def __init__(
        self,
        store: QuotaAwareStore,
        *,
        policy: RetentionPolicy | None = None,
        retries: int = 2,
        retry_delay_s: float = 0.1,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        failures: VersionSaveFailureTracker | None = None,
    ):
        self._store = store
        self._policy = policy or RetentionPolicy()
        self._retries = retries
        self._retry_delay_s = retry_delay_s
        self._clock = clock
        self._sleep = sleep
        self.failures = failures or VersionSaveFailureTracker(store, clock=clock)

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    def _load(self) -> VersionHistoryDoc:
        result = load_with_recovery(self._store, K.VERSION_HISTORY_KEY)
        if result.success:
            return VersionHistoryDoc.from_disk_doc(result.data)
        if result.error != "missing":
            # Unreadable even from backups: keep the bytes, start a fresh history.
            raw = self._store.get(K.VERSION_HISTORY_KEY)
            if raw:
                create_backup(self._store, K.VERSION_HISTORY_KEY, raw)
        return VersionHistoryDoc()

    def _save(self, history: VersionHistoryDoc) -> None:
        result = self._store.set(
            K.VERSION_HISTORY_KEY,
            dumps_compact(history.to_disk_doc()),
            StoragePriority.HIGH,
        )
        if not result.success:
            raise OSError(result.error or "Failed to write version history")

    def _append(
        self,
        document_id: str,
        value: Mapping[str, Any],
        *,
        label: str | None,
        change_summary: str | None,
        created_by: str,
    ) -> VersionSnapshot:
        history = self._load()
        existing = [s.versionNumber for s in history.snapshots if s.documentId == document_id]
        number = max([history.highWater.get(document_id, 0), *existing]) + 1

        snapshot = VersionSnapshot(
            id=generate_id(),
            documentId=document_id,
            versionNumber=number,
            data=copy.deepcopy(dict(value)),
            createdAt=to_iso(self._clock()),
            createdBy=created_by,
            label=label,
            changeSummary=change_summary,
        )
        history.snapshots.append(snapshot)
        history.highWater[document_id] = number
        history.snapshots = apply_retention(history.snapshots, self._policy, self._clock())
        self._save(history)
        return snapshot

    async def save_version(
        self,
        document_id: str,
        value: Mapping[str, Any],
        *,
        label: str | None = None,
        change_summary: str | None = None,
        created_by: str = "auto",
    ) -> VersionSaveResult:
        """
        Append a snapshot of `value`, retrying with exponential backoff.

        Never raises for storage problems: after the last attempt the failure
        is recorded and returned so the caller's own save is unaffected.
        """
        attempts = 0
        last_error = ""
        for attempt in range(self._retries + 1):
            attempts += 1
            try:
                snapshot = self._append(
                    document_id,
                    value,
                    label=label,
                    change_summary=change_summary,
                    created_by=created_by,
                )
                logger.debug("Saved version %d of %s", snapshot.versionNumber, document_id)
                self.failures.clear(document_id)
                return VersionSaveResult(success=True, snapshot=snapshot, attempts=attempts)
            except (OSError, ValueError) as e:
                last_error = str(e)
                logger.warning("Version save attempt %d for %s failed: %s", attempts, document_id, e)
            if attempt < self._retries:
                await self._sleep(self._retry_delay_s * (2**attempt))

        logger.error("Giving up on version save for %s after %d attempts", document_id, attempts)
        self.failures.record(document_id, last_error, retried=attempts > 1)
        return VersionSaveResult(success=False, error=last_error, attempts=attempts)

    def list_versions(self, document_id: str) -> list[VersionSnapshot]:
        """Snapshots for one document, newest first."""
        snaps = [s for s in self._load().snapshots if s.documentId == document_id]
        return sorted(snaps, key=lambda s: s.versionNumber, reverse=True)

    def get_version(self, document_id: str, version_number: int) -> VersionSnapshot | None:
        for snap in self._load().snapshots:
            if snap.documentId == document_id and snap.versionNumber == version_number:
                return snap
        return None

    def latest_version(self, document_id: str) -> VersionSnapshot | None:
        versions = self.list_versions(document_id)
        return versions[0] if versions else None

    def version_count(self, document_id: str) -> int:
        return len(self.list_versions(document_id))

    def delete_version(self, document_id: str, version_number: int) -> bool:
        history = self._load()
        before = len(history.snapshots)
        history.snapshots = [
            s for s in history.snapshots if not (s.documentId == document_id and s.versionNumber == version_number)
        ]
        if len(history.snapshots) == before:
            return False
        self._save(history)
        return True

    def delete_all_versions(self, document_id: str) -> int:
        """Drop every snapshot of `document_id`. Its high-water mark is kept."""
        history = self._load()
        before = len(history.snapshots)
        history.snapshots = [s for s in history.snapshots if s.documentId != document_id]
        removed = before - len(history.snapshots)
        if removed:
            self._save(history)
        return removed

    def label_version(self, document_id: str, version_number: int, label: str | None) -> bool:
        history = self._load()
        for snap in history.snapshots:
            if snap.documentId == document_id and snap.versionNumber == version_number:
                snap.label = label
                self._save(history)
                return True
        return False

    def restore_version(self, document_id: str, version_number: int) -> dict[str, Any] | None:
        """A fresh copy of the snapshot's document, with `updatedAt` refreshed."""
        snap = self.get_version(document_id, version_number)
        if snap is None:
            return None
        return touch(snap.data)

    def compare_versions(self, document_id: str, from_version: int, to_version: int) -> VersionComparison | None:
        old = self.get_version(document_id, from_version)
        new = self.get_version(document_id, to_version)
        if old is None or new is None:
            return None
        changed = compare_documents(old.data, new.data)
        return VersionComparison(
            from_version=from_version,
            to_version=to_version,
            changed_fields=changed,
            personal_info_changed="personalInfo" in changed,
            settings_changed="settings" in changed,
            sections_changed="sections" in changed,
            summary=_summarize(changed),
        )
