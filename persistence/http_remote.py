from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import NetworkError
from .interfaces import RemoteRecord, RemoteStore

logger = logging.getLogger(__name__)


class HttpRemoteStore(RemoteStore):
    """
    Remote store client for the document service in endpoints/remote_endpoints.py.

    Timeouts, transport failures and 5xx answers raise NetworkError; 404 is
    "not found". Pass `client` to reuse a connection pool (or, in tests, an
    ASGI transport); otherwise each call opens a short-lived client.
    """

    def __init__(self, base_url: str, *, timeout_s: float = 10.0, client: httpx.AsyncClient | None = None):
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response | None:
        try:
            if self._client is not None:
                response = await self._client.request(method, f"{self._base_url}{path}", **kwargs)
            else:
                async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout_s) as client:
                    response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out", kind="timeout") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            raise NetworkError(
                f"{method} {path} returned {response.status_code}",
                kind="server",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise NetworkError(
                f"{method} {path} rejected with {response.status_code}: {response.text}",
                kind="client",
                status_code=response.status_code,
                retryable=False,
            )
        return response

    async def upsert(self, document_id: str, owner_id: str, payload: dict[str, Any], updated_at: str) -> str:
        response = await self._request(
            "PUT",
            f"/documents/{document_id}",
            json={"owner_id": owner_id, "payload": payload, "updated_at": updated_at},
        )
        if response is None:
            raise NetworkError(f"PUT /documents/{document_id} returned 404", kind="client", retryable=False)
        return str(response.json().get("id") or document_id)

    async def get_by_id(self, document_id: str, owner_id: str) -> RemoteRecord | None:
        response = await self._request("GET", f"/documents/{document_id}", params={"owner_id": owner_id})
        if response is None:
            return None
        return RemoteRecord.model_validate(response.json())

    async def get_latest_by_owner(self, owner_id: str) -> RemoteRecord | None:
        response = await self._request("GET", f"/owners/{owner_id}/latest")
        if response is None:
            return None
        return RemoteRecord.model_validate(response.json())

    async def delete(self, document_id: str, owner_id: str) -> bool:
        response = await self._request("DELETE", f"/documents/{document_id}", params={"owner_id": owner_id})
        if response is None:
            return False
        return bool(response.json().get("deleted", True))

    async def list_by_owner(self, owner_id: str) -> list[RemoteRecord]:
        response = await self._request("GET", f"/owners/{owner_id}/documents")
        if response is None:
            return []
        return [RemoteRecord.model_validate(item) for item in response.json().get("documents", [])]
