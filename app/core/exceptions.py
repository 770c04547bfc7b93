from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("book_downloads")


class StoreError(Exception):
    """Base class for document store failures."""


class StoreUnavailable(StoreError):
    """The backend could not serve the call (network, permission, quota, lock)."""


class DocumentNotFound(StoreError):
    """Raised by ``update`` when the target document does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class InvalidDocumentPath(ValueError):
    """A document path or identifier segment is malformed."""


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("event=store_unavailable path=%s error=%s", request.url.path, exc)
        metrics = getattr(request.app.state, "metrics", None)
        if metrics is not None:
            metrics.record_store_error()
        return JSONResponse({"detail": "Document store unavailable"}, status_code=503)

    @app.exception_handler(DocumentNotFound)
    async def document_not_found_handler(request: Request, exc: DocumentNotFound):
        logger.warning("event=document_not_found path=%s document=%s", request.url.path, exc.path)
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.exception_handler(InvalidDocumentPath)
    async def invalid_path_handler(request: Request, exc: InvalidDocumentPath):
        return JSONResponse({"detail": str(exc)}, status_code=400)
