from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, Field

from . import paths
from .disk_store import DiskJsonDocumentStore
from .documents import parse_timestamp, utc_now_iso
from .interfaces import RemoteRecord, RemoteStore
from .locks import GLOBAL_PATH_LOCKS

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class OwnerDocumentsDoc(BaseModel):
    """
    Mirrors the on-disk owners/<owner_id>.json schema:
      { "documents": { "<document_id>": {id, owner_id, payload, updated_at, created_at, title} } }
    """

    documents: dict[str, RemoteRecord] = Field(default_factory=dict)

    @classmethod
    def from_disk_doc(cls, doc: Mapping[str, Any]) -> "OwnerDocumentsDoc":
        return cls.model_validate(doc)

    def to_disk_doc(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def _modified(record: RemoteRecord) -> datetime:
    return parse_timestamp(record.updated_at) or _EPOCH


class DiskRemoteDocumentRepository:
    """
    The authoritative document store, one JSON file per owner.

    Read-modify-write of an owner file happens under that file's path lock.
    """

    def __init__(self, root: Path | None = None):
        self._root = root if root is not None else paths.remote_owners_dir(paths.data_dir())

    def _owner_path(self, owner_id: str) -> Path:
        oid = (owner_id.strip() or "anonymous").replace("/", "_")
        return self._root / f"{oid}.json"

    def _load(self, owner_id: str) -> OwnerDocumentsDoc:
        raw = DiskJsonDocumentStore(self._owner_path(owner_id)).load(strict=True)
        return OwnerDocumentsDoc.from_disk_doc(raw)

    def upsert(self, document_id: str, owner_id: str, payload: dict[str, Any], updated_at: str) -> str:
        path = self._owner_path(owner_id)
        with GLOBAL_PATH_LOCKS.lock_for(path):
            doc = self._load(owner_id)
            previous = doc.documents.get(document_id)
            title = payload.get("title") if isinstance(payload.get("title"), str) else None
            doc.documents[document_id] = RemoteRecord(
                id=document_id,
                owner_id=owner_id,
                payload=copy.deepcopy(payload),
                updated_at=updated_at,
                created_at=previous.created_at if previous and previous.created_at else utc_now_iso(),
                title=title,
            )
            DiskJsonDocumentStore(path).save(doc.to_disk_doc())
        return document_id

    def get_by_id(self, document_id: str, owner_id: str) -> RemoteRecord | None:
        return self._load(owner_id).documents.get(document_id)

    def get_latest_by_owner(self, owner_id: str) -> RemoteRecord | None:
        records = list(self._load(owner_id).documents.values())
        if not records:
            return None
        return max(records, key=_modified)

    def list_by_owner(self, owner_id: str) -> list[RemoteRecord]:
        return sorted(self._load(owner_id).documents.values(), key=_modified, reverse=True)

    def delete(self, document_id: str, owner_id: str) -> bool:
        path = self._owner_path(owner_id)
        with GLOBAL_PATH_LOCKS.lock_for(path):
            doc = self._load(owner_id)
            if doc.documents.pop(document_id, None) is None:
                return False
            DiskJsonDocumentStore(path).save(doc.to_disk_doc())
        return True


class AsyncDiskRemoteStore(RemoteStore):
    """
    Async wrapper around the disk-backed document repository.
    Uses asyncio.to_thread to avoid blocking the event loop on file I/O.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._repo = DiskRemoteDocumentRepository(root)

    async def upsert(self, document_id: str, owner_id: str, payload: dict[str, Any], updated_at: str) -> str:
        return await asyncio.to_thread(self._repo.upsert, document_id, owner_id, payload, updated_at)

    async def get_by_id(self, document_id: str, owner_id: str) -> RemoteRecord | None:
        return await asyncio.to_thread(self._repo.get_by_id, document_id, owner_id)

    async def get_latest_by_owner(self, owner_id: str) -> RemoteRecord | None:
        return await asyncio.to_thread(self._repo.get_latest_by_owner, owner_id)

    async def delete(self, document_id: str, owner_id: str) -> bool:
        return await asyncio.to_thread(self._repo.delete, document_id, owner_id)

    async def list_by_owner(self, owner_id: str) -> list[RemoteRecord]:
        return await asyncio.to_thread(self._repo.list_by_owner, owner_id)
