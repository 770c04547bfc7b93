from __future__ import annotations

import logging

from app.config import DOCUMENT_STORE, FIRESTORE_DATABASE, FIRESTORE_PROJECT
from app.store.base import DocumentStore

logger = logging.getLogger("book_downloads.storage")

BACKENDS = ("sql", "memory", "firestore")


def create_store(backend: str | None = None) -> DocumentStore:
    """Build the document store selected by DOCUMENT_STORE."""
    backend = (backend or DOCUMENT_STORE).strip().lower()
    if backend == "memory":
        from app.store.memory import MemoryDocumentStore

        store: DocumentStore = MemoryDocumentStore()
    elif backend == "sql":
        from app.db import engine, init_db
        from app.store.sql import SqlDocumentStore

        init_db(engine)
        store = SqlDocumentStore(engine)
    elif backend == "firestore":
        # Imported lazily so the Google client is only required when selected
        from google.cloud import firestore

        from app.store.firestore import FirestoreDocumentStore

        kwargs = {}
        if FIRESTORE_PROJECT:
            kwargs["project"] = FIRESTORE_PROJECT
        if FIRESTORE_DATABASE:
            kwargs["database"] = FIRESTORE_DATABASE
        store = FirestoreDocumentStore(firestore.AsyncClient(**kwargs))
    else:
        raise ValueError(f"Unknown DOCUMENT_STORE backend {backend!r}; expected one of {', '.join(BACKENDS)}")

    logger.info("event=store_selected backend=%s", backend)
    return store
