from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from persistence.errors import NetworkError
from persistence.migrations import SCHEMA_VERSION_FIELD
from persistence.remote import RemoteAdapter
from persistence.repositories import AsyncDiskRemoteStore

FIXED_NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


def _adapter(remote_store, instant_sleep, **kwargs) -> RemoteAdapter:
    return RemoteAdapter(remote_store, clock=lambda: FIXED_NOW, sleep=instant_sleep, **kwargs)


def test_save_tags_payload_and_uses_save_time(remote_store, instant_sleep, make_document):
    adapter = _adapter(remote_store, instant_sleep)
    doc = make_document()

    async def _run():
        saved = await adapter.save(doc, "owner-1")
        assert saved.updated_at == "2025-03-01T09:30:00.000Z"
        assert SCHEMA_VERSION_FIELD not in saved.document

        loaded = await adapter.load(doc["id"], "owner-1")
        assert loaded is not None
        assert loaded.document == doc
        assert loaded.migrated is False

    asyncio.run(_run())
    assert remote_store.writes[0][SCHEMA_VERSION_FIELD] == 3


def test_retries_then_succeeds(remote_store, make_document):
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    adapter = RemoteAdapter(remote_store, retries=2, retry_delay_s=0.5, sleep=_sleep)
    remote_store.fail_next = 2

    asyncio.run(adapter.save(make_document(), "owner-1"))

    assert len(remote_store.writes) == 1
    assert delays == [0.5, 1.0]


def test_exhausted_retries_raise_network_error(remote_store, instant_sleep, make_document):
    adapter = _adapter(remote_store, instant_sleep, retries=2)
    remote_store.offline = True

    with pytest.raises(NetworkError):
        asyncio.run(adapter.save(make_document(), "owner-1"))
    assert remote_store.calls == 3


def test_exhausted_retries_surface_the_last_failure(remote_store, instant_sleep, make_document):
    adapter = _adapter(remote_store, instant_sleep, retries=0)
    remote_store.offline = True

    with pytest.raises(NetworkError, match="remote offline") as exc:
        asyncio.run(adapter.save(make_document(), "owner-1"))
    assert exc.value.kind == "network"
    assert remote_store.calls == 1


def test_slow_remote_times_out(remote_store, instant_sleep, make_document):
    adapter = _adapter(remote_store, instant_sleep, timeout_s=0.01, retries=1)

    async def _run():
        remote_store.gate = asyncio.Event()  # never set
        with pytest.raises(NetworkError) as exc:
            await adapter.save(make_document(), "owner-1")
        assert exc.value.kind == "timeout"

    asyncio.run(_run())


def test_outdated_remote_payload_is_migrated_and_written_back(remote_store, instant_sleep):
    legacy = {"id": "old-doc", "title": "Legacy", "personalInfo": {"name": "Old Name"}, "targetJob": {"title": "x"}}
    remote_store.put("owner-1", legacy, "2024-05-05T00:00:00.000Z", tag=False)
    adapter = _adapter(remote_store, instant_sleep)

    loaded = asyncio.run(adapter.load_latest("owner-1"))

    assert loaded is not None
    assert loaded.migrated is True
    assert loaded.document["personalInfo"]["fullName"] == "Old Name"
    stored = remote_store.records[("owner-1", "old-doc")]
    assert stored.payload[SCHEMA_VERSION_FIELD] == 3
    # Write-back keeps the original modification time.
    assert stored.updated_at == "2024-05-05T00:00:00.000Z"


def test_failed_write_back_is_not_fatal(remote_store, instant_sleep):
    legacy = {"id": "old-doc", "title": "Legacy", "targetJob": {"title": "x"}}
    remote_store.put("owner-1", legacy, "2024-05-05T00:00:00.000Z", tag=False)
    # Upserts hang on the gate; reads are unaffected.
    adapter = _adapter(remote_store, instant_sleep, retries=0, timeout_s=0.05)

    async def _run():
        remote_store.gate = asyncio.Event()
        return await adapter.load("old-doc", "owner-1")

    loaded = asyncio.run(_run())
    assert loaded is not None
    assert loaded.migrated is True
    assert "targetJobId" not in remote_store.records[("owner-1", "old-doc")].payload


def test_missing_documents_are_none(remote_store, instant_sleep):
    adapter = _adapter(remote_store, instant_sleep)

    async def _run():
        assert await adapter.load("nope", "owner-1") is None
        assert await adapter.load_latest("owner-1") is None
        assert await adapter.list("owner-1") == []
        assert await adapter.delete("nope", "owner-1") is False

    asyncio.run(_run())


def test_unreadable_remote_is_a_non_retryable_network_error(tmp_path, instant_sleep):
    store = AsyncDiskRemoteStore(tmp_path)
    (tmp_path / "owner-1.json").write_text("garbage", encoding="utf-8")
    adapter = _adapter(store, instant_sleep, retries=2)

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(adapter.load_latest("owner-1"))
    assert exc_info.value.kind == "corrupt"
    assert exc_info.value.retryable is False
