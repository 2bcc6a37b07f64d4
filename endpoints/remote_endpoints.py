from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from persistence import paths
from persistence.documents import parse_timestamp
from persistence.repositories import AsyncDiskRemoteStore
from settings import get_settings

router = APIRouter(tags=["documents"])
logger = logging.getLogger(__name__)

SETTINGS = get_settings()
DEBUG_LOG_REQUESTS = SETTINGS.debug_log_requests


def _data_dir() -> Path:
    if SETTINGS.data_dir:
        return paths.ensure_dir(Path(SETTINGS.data_dir))
    return paths.data_dir()


DOCUMENT_STORE = AsyncDiskRemoteStore(paths.remote_owners_dir(_data_dir()))


class UpsertDocumentBody(BaseModel):
    owner_id: str = Field(min_length=1)
    payload: dict[str, Any]
    updated_at: str


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.put("/documents/{document_id}")
async def upsert_document(document_id: str, body: UpsertDocumentBody) -> dict[str, str]:
    if parse_timestamp(body.updated_at) is None:
        raise HTTPException(status_code=400, detail="updated_at must be an ISO-8601 timestamp")
    if DEBUG_LOG_REQUESTS:
        logger.info("UPSERT document=%s owner=%s", document_id, body.owner_id)
    saved_id = await DOCUMENT_STORE.upsert(document_id, body.owner_id, body.payload, body.updated_at)
    return {"id": saved_id}


@router.get("/documents/{document_id}")
async def get_document(document_id: str, owner_id: str = Query(min_length=1)) -> dict[str, Any]:
    record = await DOCUMENT_STORE.get_by_id(document_id, owner_id)
    if record is None:
        raise HTTPException(status_code=404, detail="document_not_found")
    return record.model_dump(mode="json")


@router.delete("/documents/{document_id}")
async def delete_document(document_id: str, owner_id: str = Query(min_length=1)) -> dict[str, Any]:
    deleted = await DOCUMENT_STORE.delete(document_id, owner_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="document_not_found")
    if DEBUG_LOG_REQUESTS:
        logger.info("DELETE document=%s owner=%s", document_id, owner_id)
    return {"id": document_id, "deleted": True}


@router.get("/owners/{owner_id}/latest")
async def latest_document(owner_id: str) -> dict[str, Any]:
    record = await DOCUMENT_STORE.get_latest_by_owner(owner_id)
    if record is None:
        raise HTTPException(status_code=404, detail="no_documents")
    return record.model_dump(mode="json")


@router.get("/owners/{owner_id}/documents")
async def list_documents(owner_id: str) -> dict[str, Any]:
    records = await DOCUMENT_STORE.list_by_owner(owner_id)
    return {"documents": [r.model_dump(mode="json") for r in records]}
