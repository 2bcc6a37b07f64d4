from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field


class KeyValueStore(Protocol):
    """
    Minimal localStorage-like interface: string values under string keys.

    `set` raises StorageQuotaError when the backend is full.
    """

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


class RemoteRecord(BaseModel):
    id: str
    owner_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    updated_at: str
    created_at: str | None = None
    title: str | None = None


class RemoteStore(Protocol):
    """
    Authoritative document store. Implementations raise NetworkError when
    unreachable; "not found" is a None result, never an exception.
    """

    async def upsert(self, document_id: str, owner_id: str, payload: dict[str, Any], updated_at: str) -> str: ...

    async def get_by_id(self, document_id: str, owner_id: str) -> RemoteRecord | None: ...

    async def get_latest_by_owner(self, owner_id: str) -> RemoteRecord | None: ...

    async def delete(self, document_id: str, owner_id: str) -> bool: ...

    async def list_by_owner(self, owner_id: str) -> list[RemoteRecord]: ...
