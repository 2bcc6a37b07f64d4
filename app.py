from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv

from persistence.errors import CorruptionError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    load_dotenv("local.env")

    from endpoints.remote_endpoints import router as documents_router

    app = FastAPI(title="Resume document store")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CorruptionError)
    async def _corrupt_store(request: Request, exc: CorruptionError) -> JSONResponse:
        logger.error("Document store unreadable at %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "document_store_unreadable"})

    app.include_router(documents_router)

    return app


app = create_app()
