"""
Local fallback cache.

Three things live here, all on top of the quota-aware key/value store:

- the dirty record: edits that could not be confirmed remotely;
- a mirror of the last document known to be good (plus its id);
- the saved-documents index shown in document pickers.

The dirty record spans three Critical keys. The flag is written last and
removed first, so a record that is only half written never reads as present.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from json_store import dumps_compact

from . import keys as K
from .documents import parse_timestamp, repair_document, utc_now_iso
from .migrations import mark_with_current_version, upgrade_for_use
from .quota import QuotaAwareStore, StoragePriority, StorageResult
from .recovery import create_backup, load_with_recovery

logger = logging.getLogger(__name__)

_FLAG_SET = "true"


class DirtyRecord(BaseModel):
    document: dict[str, Any]
    lastModifiedAt: str


class SavedDocumentEntry(BaseModel):
    id: str
    title: str = ""
    createdAt: str | None = None
    updatedAt: str | None = None
    templateId: str | None = None


class SavedDocumentsIndex(BaseModel):
    entries: list[SavedDocumentEntry] = Field(default_factory=list)

    @classmethod
    def from_disk_doc(cls, doc: Any) -> "SavedDocumentsIndex":
        raw = doc if isinstance(doc, list) else []
        entries = []
        for item in raw:
            try:
                entries.append(SavedDocumentEntry.model_validate(item))
            except PydanticValidationError:
                logger.warning("Dropping malformed saved-documents entry")
        return cls(entries=entries)

    def to_disk_doc(self) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json", exclude_none=True) for e in self.entries]


def _load_document(store: QuotaAwareStore, key: str) -> dict[str, Any] | None:
    result = load_with_recovery(store, key)
    if not result.success:
        return None
    upgraded, migrated = upgrade_for_use(result.data)
    document = repair_document(upgraded)
    if migrated:
        logger.info("Migrated document stored under %s", key)
    return document


class LocalFallbackCache:
    def __init__(self, store: QuotaAwareStore):
        self._store = store

    @property
    def store(self) -> QuotaAwareStore:
        return self._store

    # --- dirty record ---

    def write_dirty(self, document: Mapping[str, Any], last_modified: str | None = None) -> StorageResult:
        modified = last_modified or utc_now_iso()
        for key, value in (
            (K.DIRTY_DATA_KEY, dumps_compact(mark_with_current_version(document))),
            (K.DIRTY_LAST_MODIFIED_KEY, str(modified)),
            (K.DIRTY_FLAG_KEY, _FLAG_SET),
        ):
            result = self._store.set(key, value, StoragePriority.CRITICAL)
            if not result.success:
                logger.error("Could not write dirty record key %s: %s", key, result.error)
                return result
        logger.info("Stored unsynced changes for %s locally", document.get("id"))
        return StorageResult(success=True)

    def has_dirty(self) -> bool:
        return self._store.get(K.DIRTY_FLAG_KEY) == _FLAG_SET

    def raw_dirty(self) -> str | None:
        return self._store.get(K.DIRTY_DATA_KEY)

    def read_dirty(self) -> DirtyRecord | None:
        if not self.has_dirty():
            return None

        document = _load_document(self._store, K.DIRTY_DATA_KEY)
        if document is None:
            logger.error("Dirty record is unreadable; preserving it and clearing the flag")
            self.clear_dirty(backup=True)
            return None

        modified = self._store.get(K.DIRTY_LAST_MODIFIED_KEY)
        if not modified:
            modified = document.get("updatedAt") or utc_now_iso()
        return DirtyRecord(document=document, lastModifiedAt=modified)

    def clear_dirty(self, *, backup: bool = False) -> None:
        self._store.remove(K.DIRTY_FLAG_KEY)
        if backup:
            raw = self.raw_dirty()
            if raw:
                create_backup(self._store, K.DIRTY_DATA_KEY, raw)
        self._store.remove(K.DIRTY_DATA_KEY)
        self._store.remove(K.DIRTY_LAST_MODIFIED_KEY)

    # --- current document mirror ---

    def mirror(self, document: Mapping[str, Any]) -> StorageResult:
        result = self._store.set(
            K.CURRENT_DOCUMENT_KEY,
            dumps_compact(mark_with_current_version(document)),
            StoragePriority.CRITICAL,
        )
        if not result.success:
            logger.warning("Could not mirror document locally: %s", result.error)
            return result
        doc_id = document.get("id")
        if isinstance(doc_id, str) and doc_id:
            return self.set_current_document_id(doc_id)
        return result

    def read_current_document(self) -> dict[str, Any] | None:
        return _load_document(self._store, K.CURRENT_DOCUMENT_KEY)

    def current_document_id(self) -> str | None:
        value = self._store.get(K.CURRENT_DOCUMENT_ID_KEY)
        return value or None

    def set_current_document_id(self, document_id: str) -> StorageResult:
        return self._store.set(K.CURRENT_DOCUMENT_ID_KEY, document_id, StoragePriority.CRITICAL)

    def clear_current_document(self) -> None:
        self._store.remove(K.CURRENT_DOCUMENT_ID_KEY)
        self._store.remove(K.CURRENT_DOCUMENT_KEY)

    # --- saved documents index ---

    def _load_index(self) -> SavedDocumentsIndex:
        result = load_with_recovery(self._store, K.SAVED_DOCUMENTS_KEY)
        if not result.success:
            return SavedDocumentsIndex()
        return SavedDocumentsIndex.from_disk_doc(result.data)

    def _save_index(self, index: SavedDocumentsIndex) -> StorageResult:
        result = self._store.set(
            K.SAVED_DOCUMENTS_KEY,
            dumps_compact(index.to_disk_doc()),
            StoragePriority.HIGH,
        )
        if not result.success:
            logger.warning("Could not update saved documents index: %s", result.error)
        return result

    def list_saved(self) -> list[SavedDocumentEntry]:
        return list(self._load_index().entries)

    def index_document(self, document: Mapping[str, Any]) -> StorageResult:
        doc_id = document.get("id")
        if not isinstance(doc_id, str) or not doc_id:
            return StorageResult(success=False, error="Document has no id")

        index = self._load_index()
        previous = next((e for e in index.entries if e.id == doc_id), None)
        settings = document.get("settings") if isinstance(document.get("settings"), Mapping) else {}
        updated = document.get("updatedAt") if parse_timestamp(document.get("updatedAt")) else utc_now_iso()
        entry = SavedDocumentEntry(
            id=doc_id,
            title=str(document.get("title") or ""),
            createdAt=previous.createdAt if previous and previous.createdAt else updated,
            updatedAt=updated,
            templateId=settings.get("templateId"),
        )
        index.entries = [entry] + [e for e in index.entries if e.id != doc_id]
        return self._save_index(index)

    def remove_from_index(self, document_id: str) -> bool:
        index = self._load_index()
        remaining = [e for e in index.entries if e.id != document_id]
        if len(remaining) == len(index.entries):
            return False
        index.entries = remaining
        return self._save_index(index).success

    def forget(self, document_id: str) -> None:
        """Remove every local trace of a deleted document."""
        self.remove_from_index(document_id)
        if self.current_document_id() == document_id:
            self.clear_current_document()
        dirty = self.read_dirty()
        if dirty is not None and dirty.document.get("id") == document_id:
            self.clear_dirty()
