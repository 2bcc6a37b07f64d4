"""
Remote adapter: the only path from the sync layer to a RemoteStore.

Adds what every caller needs and no store should have to implement: a
per-call timeout, a small number of retries with growing delay, schema
tagging on write, and migration (with best-effort write-back) on read.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from .documents import to_iso, utc_now
from .errors import CorruptionError, NetworkError
from .interfaces import RemoteRecord, RemoteStore
from .migrations import mark_with_current_version, strip_version_tag, upgrade_for_use

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RemoteDocument:
    id: str
    owner_id: str
    document: dict[str, Any]
    updated_at: str
    created_at: str | None = None
    migrated: bool = False


class RemoteAdapter:
    def __init__(
        self,
        store: RemoteStore,
        *,
        timeout_s: float = 10.0,
        retries: int = 2,
        retry_delay_s: float = 0.25,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._store = store
        self._timeout_s = timeout_s
        self._retries = retries
        self._retry_delay_s = retry_delay_s
        self._clock = clock
        self._sleep = sleep

    @property
    def store(self) -> RemoteStore:
        return self._store

    async def _call(self, label: str, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        last_error = NetworkError(f"{label} was not attempted")
        for attempt in range(self._retries + 1):
            try:
                return await asyncio.wait_for(fn(*args), timeout=self._timeout_s)
            except asyncio.TimeoutError:
                last_error = NetworkError(f"{label} timed out after {self._timeout_s}s", kind="timeout")
            except NetworkError as e:
                if not e.retryable:
                    raise
                last_error = e
            except CorruptionError as e:
                raise NetworkError(f"{label} failed: {e}", kind="corrupt", retryable=False) from e
            except OSError as e:
                last_error = NetworkError(f"{label} failed: {e}", kind="storage")

            logger.warning("Remote %s attempt %d failed: %s", label, attempt + 1, last_error)
            if attempt < self._retries:
                await self._sleep(self._retry_delay_s * (attempt + 1))

        raise last_error

    async def save(self, document: Mapping[str, Any], owner_id: str) -> RemoteDocument:
        """Upsert by id. The remote modification time is the save time."""
        document_id = document.get("id")
        if not isinstance(document_id, str) or not document_id:
            raise ValueError("Cannot save a document without an id")

        updated_at = to_iso(self._clock())
        payload = mark_with_current_version(document)
        saved_id = await self._call("save", self._store.upsert, document_id, owner_id, payload, updated_at)
        logger.debug("Saved document %s for owner %s", saved_id, owner_id)
        return RemoteDocument(
            id=saved_id,
            owner_id=owner_id,
            document=strip_version_tag(document),
            updated_at=updated_at,
        )

    async def _to_document(self, record: RemoteRecord) -> RemoteDocument:
        document, migrated = upgrade_for_use(record.payload)
        if document.get("id") != record.id:
            document["id"] = record.id

        if migrated:
            logger.info("Migrated remote document %s to the current schema", record.id)
            try:
                await self._call(
                    "migration write-back",
                    self._store.upsert,
                    record.id,
                    record.owner_id,
                    mark_with_current_version(document),
                    record.updated_at,
                )
            except NetworkError as e:
                logger.warning("Could not write back migrated document %s: %s", record.id, e)

        return RemoteDocument(
            id=record.id,
            owner_id=record.owner_id,
            document=document,
            updated_at=record.updated_at,
            created_at=record.created_at,
            migrated=migrated,
        )

    async def load(self, document_id: str, owner_id: str) -> RemoteDocument | None:
        record = await self._call("load", self._store.get_by_id, document_id, owner_id)
        if record is None:
            return None
        return await self._to_document(record)

    async def load_latest(self, owner_id: str) -> RemoteDocument | None:
        record = await self._call("load latest", self._store.get_latest_by_owner, owner_id)
        if record is None:
            return None
        return await self._to_document(record)

    async def delete(self, document_id: str, owner_id: str) -> bool:
        return await self._call("delete", self._store.delete, document_id, owner_id)

    async def list(self, owner_id: str) -> list[RemoteRecord]:
        """Records for `owner_id`, most recently modified first. Payloads are not migrated."""
        return await self._call("list", self._store.list_by_owner, owner_id)
