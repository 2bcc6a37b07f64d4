"""
Sync coordinator: decides where a document is written and read.

Saving
  `schedule_save` debounces bursts of edits; when the quiet period ends the
  most recently scheduled value is saved. Only one save runs at a time; a
  request that arrives while one is in flight sets a pending flag, and the
  running loop saves the latest value again once it finishes.

  A save validates, writes to the remote store, then mirrors locally. If the
  remote is unreachable the document becomes the dirty record instead. A
  version snapshot follows once the primary write has resolved either way.

Loading
  The dirty record and the owner's latest remote document are compared by
  modification time. Local newer is a conflict that must be resolved with
  `resolve_conflict`; until then nothing is discarded and saving is refused.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from persistence.documents import (
    ValidationResult,
    ensure_identity,
    new_document,
    parse_timestamp,
    utc_now_iso,
    validate_document,
)
from persistence.errors import ConflictError, NetworkError, PersistenceError, StorageQuotaError, ValidationError
from persistence.local_cache import DirtyRecord, LocalFallbackCache
from persistence.remote import RemoteAdapter, RemoteDocument
from persistence.version_history import VersionHistoryStore, VersionSaveResult

logger = logging.getLogger(__name__)


class SaveState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    SAVED_LOCALLY = "saved_locally"
    NOT_SAVED = "not_saved"


class ConflictChoice(str, Enum):
    KEEP_LOCAL = "keep_local"
    USE_REMOTE = "use_remote"


@dataclass
class SaveOutcome:
    state: SaveState
    document: dict[str, Any] | None = None
    error: str | None = None
    validation: ValidationResult | None = None
    version: VersionSaveResult | None = None
    exception: PersistenceError | None = None

    def raise_for_state(self) -> None:
        if self.state is SaveState.NOT_SAVED and self.exception is not None:
            raise self.exception


@dataclass
class Conflict:
    document_id: str
    local: dict[str, Any]
    remote: dict[str, Any]
    local_modified: str
    remote_modified: str


@dataclass
class LoadOutcome:
    document: dict[str, Any]
    source: str  # remote | local | mirror | empty | conflict
    conflict: Conflict | None = None
    resync: SaveOutcome | None = None
    offline: bool = False


class SyncCoordinator:
    def __init__(
        self,
        remote: RemoteAdapter,
        cache: LocalFallbackCache,
        versions: VersionHistoryStore,
        *,
        owner_id: str | None = None,
        debounce_s: float = 0.5,
    ):
        self._remote = remote
        self._cache = cache
        self._versions = versions
        self._owner_id = owner_id
        self._debounce_s = debounce_s

        self._lock = asyncio.Lock()
        self._latest: dict[str, Any] | None = None
        self._timer: asyncio.Task | None = None
        self._runner: asyncio.Task | None = None
        self._pending = False

        self._state = SaveState.IDLE
        self._save_error: str | None = None
        self._conflict: Conflict | None = None
        self.last_outcome: SaveOutcome | None = None

    # --- state ---

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def state(self) -> SaveState:
        return self._state

    @property
    def is_saving(self) -> bool:
        return self._state is SaveState.SAVING

    @property
    def save_error(self) -> str | None:
        return self._save_error

    @property
    def conflict(self) -> Conflict | None:
        return self._conflict

    @property
    def has_pending_save(self) -> bool:
        timer_armed = self._timer is not None and not self._timer.done()
        running = self._runner is not None and not self._runner.done()
        return timer_armed or running

    def _ensure_no_conflict(self) -> None:
        if self._conflict is not None:
            c = self._conflict
            raise ConflictError(c.document_id, c.local_modified, c.remote_modified)

    # --- debounced, single-flight saving ---

    def schedule_save(self, document: Mapping[str, Any]) -> None:
        """
        Save `document` once edits have been quiet for the debounce period.

        Each call restarts the timer and replaces the value that will be saved.
        Must be called from a running event loop.
        """
        self._ensure_no_conflict()
        self._latest = copy.deepcopy(dict(document))
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_quiet())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_after_quiet(self) -> None:
        await asyncio.sleep(self._debounce_s)
        self._timer = None
        self._kick()

    def _kick(self) -> None:
        if self._runner is not None and not self._runner.done():
            self._pending = True
            return
        self._runner = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._pending = False
            document = self._latest
            if document is None:
                return
            try:
                await self._save_serialized(document)
            except ConflictError as e:
                logger.warning("Scheduled save skipped: %s", e)
                return
            if not self._pending:
                return

    async def flush(self) -> SaveOutcome | None:
        """Fire a waiting debounce timer now and wait for every queued save."""
        if self._timer is not None and not self._timer.done():
            self._cancel_timer()
            self._kick()
        await self.wait_idle()
        return self.last_outcome

    async def wait_idle(self) -> None:
        while self.has_pending_save:
            # asyncio.wait neither raises for a cancelled task nor cancels it.
            if self._timer is not None and not self._timer.done():
                await asyncio.wait({self._timer})
                continue
            if self._runner is not None and not self._runner.done():
                await asyncio.wait({self._runner})

    def cancel_pending(self) -> None:
        """Drop a save that is still waiting for its debounce period. In-flight saves are unaffected."""
        self._cancel_timer()
        self._latest = None

    async def save(self, document: Mapping[str, Any]) -> SaveOutcome:
        """Save immediately, after any save already in flight."""
        self._ensure_no_conflict()
        return await self._save_serialized(dict(document))

    async def _save_serialized(self, document: Mapping[str, Any]) -> SaveOutcome:
        async with self._lock:
            self._ensure_no_conflict()
            return await self._save_once(document)

    async def _save_once(self, document: Mapping[str, Any]) -> SaveOutcome:
        self._state = SaveState.SAVING
        self._save_error = None
        doc = ensure_identity(document)

        validation = validate_document(doc)
        if not validation.is_valid:
            logger.info("Not saving %s: %s", doc["id"], validation.summary)
            outcome = SaveOutcome(
                state=SaveState.NOT_SAVED,
                document=doc,
                error=validation.summary,
                validation=validation,
                exception=ValidationError(validation.summary, validation.errors),
            )
            return self._finish(outcome)

        if self._owner_id is None:
            outcome = self._save_anonymous(doc)
        else:
            outcome = await self._save_remote(doc, self._owner_id)

        if outcome.state is not SaveState.NOT_SAVED:
            outcome.version = await self._versions.save_version(doc["id"], doc)
            if not outcome.version.success:
                logger.warning("Version snapshot for %s failed: %s", doc["id"], outcome.version.error)
        return self._finish(outcome)

    def _save_anonymous(self, doc: dict[str, Any]) -> SaveOutcome:
        result = self._cache.mirror(doc)
        if not result.success:
            return SaveOutcome(
                state=SaveState.NOT_SAVED,
                document=doc,
                error=result.error,
                exception=StorageQuotaError(doc["id"]),
            )
        self._cache.index_document(doc)
        return SaveOutcome(state=SaveState.SAVED_LOCALLY, document=doc)

    async def _save_remote(self, doc: dict[str, Any], owner_id: str) -> SaveOutcome:
        try:
            await self._remote.save(doc, owner_id)
        except NetworkError as e:
            logger.warning("Remote save of %s failed, keeping changes locally: %s", doc["id"], e)
            result = self._cache.write_dirty(doc, utc_now_iso())
            if not result.success:
                logger.error("Local fallback for %s failed: %s", doc["id"], result.error)
                return SaveOutcome(
                    state=SaveState.NOT_SAVED,
                    document=doc,
                    error=result.error,
                    exception=StorageQuotaError(doc["id"]),
                )
            return SaveOutcome(
                state=SaveState.SAVED_LOCALLY,
                document=doc,
                error="Saved locally. Will retry syncing to the server.",
                exception=e,
            )

        self._cache.clear_dirty()
        self._cache.mirror(doc)
        self._cache.index_document(doc)
        return SaveOutcome(state=SaveState.SAVED, document=doc)

    def _finish(self, outcome: SaveOutcome) -> SaveOutcome:
        self._state = outcome.state
        self._save_error = outcome.error if outcome.state is not SaveState.SAVED else None
        self.last_outcome = outcome
        return outcome

    async def sync_dirty(self) -> SaveOutcome | None:
        """Push an existing dirty record to the remote store, if there is one."""
        dirty = self._cache.read_dirty()
        if dirty is None:
            return None
        self._ensure_no_conflict()
        return await self._save_serialized(dirty.document)

    # --- loading ---

    def _adopt_remote(self, remote: RemoteDocument) -> dict[str, Any]:
        self._cache.mirror(remote.document)
        self._cache.index_document(remote.document)
        return remote.document

    def _load_local(self, dirty: DirtyRecord | None, *, offline: bool = False) -> LoadOutcome:
        if dirty is not None:
            return LoadOutcome(document=dirty.document, source="local", offline=offline)
        mirror = self._cache.read_current_document()
        if mirror is not None:
            return LoadOutcome(document=mirror, source="mirror", offline=offline)
        return LoadOutcome(document=new_document(), source="empty", offline=offline)

    async def load(self, owner_id: str | None = None) -> LoadOutcome:
        """
        Pick the document a session starts from. Never raises for network or
        storage trouble; falls back to local data or an empty document.
        """
        self._owner_id = owner_id
        self._conflict = None
        dirty = self._cache.read_dirty()

        if owner_id is None:
            return self._load_local(dirty)

        try:
            remote = await self._remote.load_latest(owner_id)
        except NetworkError as e:
            logger.warning("Remote unreachable during load, using local data: %s", e)
            return self._load_local(dirty, offline=True)

        if dirty is not None and remote is not None:
            local_at = parse_timestamp(dirty.lastModifiedAt)
            remote_at = parse_timestamp(remote.updated_at)
            if local_at is None or remote_at is None or local_at > remote_at:
                self._conflict = Conflict(
                    document_id=str(dirty.document.get("id")),
                    local=dirty.document,
                    remote=remote.document,
                    local_modified=dirty.lastModifiedAt,
                    remote_modified=remote.updated_at,
                )
                logger.info("Local changes to %s are newer than the server copy", dirty.document.get("id"))
                return LoadOutcome(document=dirty.document, source="conflict", conflict=self._conflict)

            self._cache.clear_dirty(backup=True)
            return LoadOutcome(document=self._adopt_remote(remote), source="remote")

        if dirty is not None:
            resync = await self._save_serialized(dirty.document)
            return LoadOutcome(document=resync.document or dirty.document, source="local", resync=resync)

        if remote is not None:
            return LoadOutcome(document=self._adopt_remote(remote), source="remote")

        last_id = self._cache.current_document_id()
        if last_id:
            try:
                by_id = await self._remote.load(last_id, owner_id)
            except NetworkError as e:
                logger.warning("Could not look up last document %s: %s", last_id, e)
                by_id = None
            if by_id is not None:
                return LoadOutcome(document=self._adopt_remote(by_id), source="remote")

        return self._load_local(None)

    async def resolve_conflict(self, choice: ConflictChoice) -> LoadOutcome:
        if self._conflict is None:
            raise ValueError("There is no conflict to resolve")
        conflict = self._conflict

        if ConflictChoice(choice) is ConflictChoice.KEEP_LOCAL:
            self._conflict = None
            resync = await self._save_serialized(conflict.local)
            return LoadOutcome(document=resync.document or conflict.local, source="local", resync=resync)

        self._cache.clear_dirty(backup=True)
        self._conflict = None
        self._cache.mirror(conflict.remote)
        self._cache.index_document(conflict.remote)
        return LoadOutcome(document=conflict.remote, source="remote")

    # --- deletion ---

    async def delete_document(self, document_id: str) -> bool:
        """
        Delete a document everywhere: remote, version history, local cache.

        A NetworkError from the remote leaves local state untouched.
        """
        if self._latest is not None and self._latest.get("id") == document_id:
            self.cancel_pending()
        await self.wait_idle()

        deleted = True
        if self._owner_id is not None:
            deleted = await self._remote.delete(document_id, self._owner_id)
        removed_versions = self._versions.delete_all_versions(document_id)
        self._cache.forget(document_id)
        logger.info("Deleted document %s (%d versions)", document_id, removed_versions)
        return deleted
