from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from persistence.errors import NetworkError
from persistence.http_remote import HttpRemoteStore
from persistence.remote import RemoteAdapter


def test_document_routes_roundtrip(reload_endpoints, sandbox_project):
    import app as app_module

    client = TestClient(app_module.create_app())

    body = {"owner_id": "alice", "payload": {"id": "d1", "title": "First"}, "updated_at": "2025-01-01T00:00:00.000Z"}
    r = client.put("/documents/d1", json=body)
    assert r.status_code == 200
    assert r.json() == {"id": "d1"}

    body2 = {"owner_id": "alice", "payload": {"id": "d2", "title": "Second"}, "updated_at": "2025-02-01T00:00:00.000Z"}
    assert client.put("/documents/d2", json=body2).status_code == 200

    r = client.get("/documents/d1", params={"owner_id": "alice"})
    assert r.status_code == 200
    assert r.json()["payload"] == {"id": "d1", "title": "First"}
    assert r.json()["title"] == "First"

    r = client.get("/owners/alice/latest")
    assert r.json()["id"] == "d2"

    r = client.get("/owners/alice/documents")
    assert [d["id"] for d in r.json()["documents"]] == ["d2", "d1"]

    # Owners are isolated from one another.
    assert client.get("/documents/d1", params={"owner_id": "bob"}).status_code == 404
    assert client.get("/owners/bob/latest").status_code == 404

    assert client.delete("/documents/d1", params={"owner_id": "alice"}).status_code == 200
    assert client.delete("/documents/d1", params={"owner_id": "alice"}).status_code == 404

    assert (sandbox_project / "data" / "remote" / "owners" / "alice.json").exists()


def test_upsert_rejects_bad_timestamp(reload_endpoints):
    import app as app_module

    client = TestClient(app_module.create_app())
    r = client.put("/documents/d1", json={"owner_id": "alice", "payload": {}, "updated_at": "yesterday"})
    assert r.status_code == 400


def test_http_remote_store_against_service(reload_endpoints, make_document):
    import app as app_module

    doc = make_document()

    async def _run():
        transport = httpx.ASGITransport(app=app_module.create_app())
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            adapter = RemoteAdapter(HttpRemoteStore("http://test", client=client))
            saved = await adapter.save(doc, "alice")
            loaded = await adapter.load(doc["id"], "alice")
            latest = await adapter.load_latest("alice")
            listed = await adapter.list("alice")
            missing = await adapter.load("nope", "alice")
            deleted = await adapter.delete(doc["id"], "alice")
            return saved, loaded, latest, listed, missing, deleted

    saved, loaded, latest, listed, missing, deleted = asyncio.run(_run())

    assert loaded is not None and loaded.document == doc
    assert loaded.updated_at == saved.updated_at
    assert latest is not None and latest.id == doc["id"]
    assert [r.id for r in listed] == [doc["id"]]
    assert missing is None
    assert deleted is True


def test_http_remote_store_maps_failures_to_network_error():
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/owners/alice/latest":
            return httpx.Response(503, json={"detail": "down"})
        raise httpx.ConnectError("connection refused", request=request)

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            store = HttpRemoteStore("http://remote", client=client)
            with pytest.raises(NetworkError) as server_error:
                await store.get_latest_by_owner("alice")
            assert server_error.value.status_code == 503
            assert server_error.value.retryable is True

            with pytest.raises(NetworkError):
                await store.get_by_id("d1", "alice")

    asyncio.run(_run())


def test_client_errors_are_not_retried():
    calls = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(422, json={"detail": "bad"})

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            adapter = RemoteAdapter(HttpRemoteStore("http://remote", client=client), retries=3)
            with pytest.raises(NetworkError) as exc:
                await adapter.save({"id": "d1", "title": "x"}, "alice")
            assert exc.value.retryable is False

    asyncio.run(_run())
    assert calls == ["/documents/d1"]


def test_unreadable_owner_file_answers_503(reload_endpoints, sandbox_project):
    import app as app_module

    client = TestClient(app_module.create_app())
    owners = sandbox_project / "data" / "remote" / "owners"
    owners.mkdir(parents=True, exist_ok=True)
    (owners / "alice.json").write_text("garbage", encoding="utf-8")

    r = client.get("/owners/alice/latest")
    assert r.status_code == 503
    assert r.json() == {"detail": "document_store_unreadable"}
