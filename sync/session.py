from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from persistence import paths
from persistence.disk_store import DiskKeyValueStore
from persistence.documents import new_document
from persistence.http_remote import HttpRemoteStore
from persistence.interfaces import KeyValueStore, RemoteStore
from persistence.local_cache import LocalFallbackCache
from persistence.quota import QuotaAwareStore
from persistence.remote import RemoteAdapter
from persistence.repositories import AsyncDiskRemoteStore
from persistence.version_history import RetentionPolicy, VersionHistoryStore
from settings import Settings, get_settings

from .coordinator import Conflict, ConflictChoice, LoadOutcome, SaveOutcome, SyncCoordinator
from .reducer import Action, SetDocument, apply_action
from .undo import UndoRedoStack

logger = logging.getLogger(__name__)


class EditorSession:
    """
    What an editor UI talks to: the current document, its undo history and
    its save status.

    Edits go through `mutate`, which records them for undo and (with
    `autosave`) schedules a debounced save. `save` is fire-and-forget;
    `save_now` waits for the result.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        *,
        undo_limit: int = 50,
        autosave: bool = True,
        versions: VersionHistoryStore | None = None,
        cache: LocalFallbackCache | None = None,
    ):
        self._coordinator = coordinator
        self._history = UndoRedoStack(limit=undo_limit)
        self._autosave = autosave
        self.versions = versions
        self.cache = cache
        self.last_load: LoadOutcome | None = None

    @property
    def coordinator(self) -> SyncCoordinator:
        return self._coordinator

    @property
    def document(self) -> dict[str, Any] | None:
        return self._history.present

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def is_saving(self) -> bool:
        return self._coordinator.is_saving

    @property
    def save_error(self) -> str | None:
        return self._coordinator.save_error

    @property
    def conflict(self) -> Conflict | None:
        return self._coordinator.conflict

    async def load(self, owner_id: str | None = None) -> dict[str, Any]:
        outcome = await self._coordinator.load(owner_id)
        self.last_load = outcome
        self._history.reset(outcome.document)
        return outcome.document

    def mutate(self, action: Action) -> dict[str, Any]:
        current = self.document if self.document is not None else new_document()
        updated = apply_action(current, action)
        if isinstance(action, SetDocument) and updated.get("id") != current.get("id"):
            # Switching documents starts a new history.
            self._coordinator.cancel_pending()
            self._history.reset(updated)
        else:
            self._history.record(updated)
        self._autosave_if_enabled()
        return self._history.present

    def save(self, document: Mapping[str, Any] | None = None) -> None:
        """Schedule a debounced save of `document` (default: the current document)."""
        if document is not None:
            self._history.record(dict(document))
        if self._history.present is None:
            return
        self._coordinator.schedule_save(self._history.present)

    async def save_now(self) -> SaveOutcome | None:
        if self._history.present is None:
            return None
        self._coordinator.cancel_pending()
        await self._coordinator.wait_idle()
        return await self._coordinator.save(self._history.present)

    def undo(self) -> dict[str, Any] | None:
        if not self._history.can_undo:
            return self._history.present
        self._history.undo()
        self._autosave_if_enabled()
        return self._history.present

    def redo(self) -> dict[str, Any] | None:
        if not self._history.can_redo:
            return self._history.present
        self._history.redo()
        self._autosave_if_enabled()
        return self._history.present

    def _autosave_if_enabled(self) -> None:
        if not self._autosave or self._coordinator.conflict is not None:
            return
        self.save()

    async def resolve_conflict(self, choice: ConflictChoice) -> dict[str, Any]:
        outcome = await self._coordinator.resolve_conflict(choice)
        self.last_load = outcome
        self._history.reset(outcome.document)
        return outcome.document

    def new_document(self, **fields: Any) -> dict[str, Any]:
        self._coordinator.cancel_pending()
        doc = new_document(**fields)
        self._history.reset(doc)
        return doc

    async def delete_document(self) -> bool:
        doc = self.document
        if not doc or not doc.get("id"):
            return False
        deleted = await self._coordinator.delete_document(doc["id"])
        self.new_document()
        return deleted

    async def close(self) -> None:
        """Write out anything still waiting for its debounce period."""
        await self._coordinator.flush()


def create_session(
    settings: Settings | None = None,
    *,
    remote_store: RemoteStore | None = None,
    kv_store: KeyValueStore | None = None,
    autosave: bool = True,
) -> EditorSession:
    """Build the whole persistence stack from configuration."""
    settings = settings or get_settings()
    data = paths.ensure_dir(Path(settings.data_dir)) if settings.data_dir else paths.data_dir()

    if kv_store is None:
        kv_store = DiskKeyValueStore(paths.local_store_path(data), quota_bytes=settings.local_quota_bytes)
    store = QuotaAwareStore(kv_store, reclaim_target_bytes=settings.reclaim_target_bytes)

    if remote_store is None:
        if settings.remote_base_url:
            remote_store = HttpRemoteStore(settings.remote_base_url, timeout_s=settings.remote_timeout_s)
        else:
            remote_store = AsyncDiskRemoteStore(paths.remote_owners_dir(data))
    adapter = RemoteAdapter(
        remote_store,
        timeout_s=settings.remote_timeout_s,
        retries=settings.remote_retries,
        retry_delay_s=settings.remote_retry_delay_ms / 1000,
    )

    versions = VersionHistoryStore(
        store,
        policy=RetentionPolicy(
            max_age_days=settings.version_max_age_days,
            max_per_document=settings.max_versions_per_document,
            max_total=settings.max_versions_total,
        ),
        retries=settings.version_save_retries,
        retry_delay_s=settings.version_retry_delay_ms / 1000,
    )
    cache = LocalFallbackCache(store)
    coordinator = SyncCoordinator(adapter, cache, versions, debounce_s=settings.save_debounce_ms / 1000)
    logger.debug("Created editor session (remote: %s)", type(remote_store).__name__)
    return EditorSession(
        coordinator,
        undo_limit=settings.undo_limit,
        autosave=autosave,
        versions=versions,
        cache=cache,
    )
