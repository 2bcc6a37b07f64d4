from __future__ import annotations

import asyncio
import copy
import importlib
from pathlib import Path
import sys
from typing import Any, Callable


import pytest


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for imports like `import persistence...` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


from persistence.documents import new_document  # noqa: E402
from persistence.errors import NetworkError  # noqa: E402
from persistence.interfaces import RemoteRecord  # noqa: E402
from persistence.memory_store import MemoryKeyValueStore  # noqa: E402
from persistence.migrations import mark_with_current_version  # noqa: E402
from persistence.quota import QuotaAwareStore  # noqa: E402


@pytest.fixture
def sandbox_project(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """
    Redirect persistence paths to a temp project directory so tests never touch real ./data.
    """
    import persistence.paths as paths

    def _project_root() -> Path:
        return tmp_path

    def _data_dir() -> Path:
        p = tmp_path / "data"
        p.mkdir(parents=True, exist_ok=True)
        return p

    monkeypatch.delenv("DATA_DIR", raising=False)
    monkeypatch.delenv("REMOTE_BASE_URL", raising=False)
    monkeypatch.setattr(paths, "project_root", _project_root)
    monkeypatch.setattr(paths, "data_dir", _data_dir)
    return tmp_path


@pytest.fixture
def reload_endpoints(sandbox_project: Path) -> None:
    """
    Endpoints create store singletons at import time; reload after sandboxing paths.
    """
    import endpoints.remote_endpoints as remote_endpoints

    importlib.reload(remote_endpoints)


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv: MemoryKeyValueStore) -> QuotaAwareStore:
    return QuotaAwareStore(kv)


class InMemoryRemoteStore:
    """
    RemoteStore double. `offline` fails every call, `fail_next` fails that many
    calls, and `gate` (an asyncio.Event) holds upserts until it is set.
    """

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], RemoteRecord] = {}
        self.writes: list[dict[str, Any]] = []
        self.offline = False
        self.fail_next = 0
        self.gate: asyncio.Event | None = None
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.offline:
            raise NetworkError("remote offline")
        if self.fail_next > 0:
            self.fail_next -= 1
            raise NetworkError("remote flaked")

    def put(self, owner_id: str, payload: dict[str, Any], updated_at: str, *, tag: bool = True) -> None:
        """Seed a record directly. Tagged like a real writer would unless `tag` is False."""
        doc_id = payload["id"]
        stored = mark_with_current_version(payload) if tag else copy.deepcopy(payload)
        self.records[(owner_id, doc_id)] = RemoteRecord(
            id=doc_id, owner_id=owner_id, payload=stored, updated_at=updated_at
        )

    async def upsert(self, document_id: str, owner_id: str, payload: dict[str, Any], updated_at: str) -> str:
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail()
        self.writes.append(copy.deepcopy(payload))
        previous = self.records.get((owner_id, document_id))
        self.records[(owner_id, document_id)] = RemoteRecord(
            id=document_id,
            owner_id=owner_id,
            payload=copy.deepcopy(payload),
            updated_at=updated_at,
            created_at=previous.created_at if previous else updated_at,
        )
        return document_id

    async def get_by_id(self, document_id: str, owner_id: str) -> RemoteRecord | None:
        self._maybe_fail()
        return self.records.get((owner_id, document_id))

    async def get_latest_by_owner(self, owner_id: str) -> RemoteRecord | None:
        self._maybe_fail()
        mine = [r for (owner, _), r in self.records.items() if owner == owner_id]
        return max(mine, key=lambda r: r.updated_at) if mine else None

    async def delete(self, document_id: str, owner_id: str) -> bool:
        self._maybe_fail()
        return self.records.pop((owner_id, document_id), None) is not None

    async def list_by_owner(self, owner_id: str) -> list[RemoteRecord]:
        self._maybe_fail()
        mine = [r for (owner, _), r in self.records.items() if owner == owner_id]
        return sorted(mine, key=lambda r: r.updated_at, reverse=True)


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def make_document() -> Callable[..., dict[str, Any]]:
    """Factory for documents that pass validation."""

    def _make(**overrides: Any) -> dict[str, Any]:
        doc = new_document(
            title="Backend Engineer",
            personalInfo={"fullName": "Ada Lovelace", "email": "ada@example.com", "phone": "", "summary": ""},
            sections=[
                {
                    "id": "exp",
                    "title": "Experience",
                    "type": "experience",
                    "isVisible": True,
                    "items": [{"id": "job-1", "company": "Analytical Engines"}],
                }
            ],
        )
        doc.update(overrides)
        return doc

    return _make


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def instant_sleep() -> Callable[[float], Any]:
    return no_sleep
