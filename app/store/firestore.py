from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from app.core.exceptions import DocumentNotFound, StoreUnavailable
from app.store.base import DocumentSnapshot, DocumentStore, Increment

logger = logging.getLogger("book_downloads.firestore")


@contextmanager
def _translate_errors(operation: str, path: str) -> Iterator[None]:
    try:
        yield
    except google_exceptions.NotFound as exc:
        raise DocumentNotFound(path) from exc
    except google_exceptions.GoogleAPICallError as exc:
        logger.warning("event=firestore_error op=%s path=%s error=%s", operation, path, exc)
        raise StoreUnavailable(f"Firestore {operation} failed for {path}: {exc}") from exc


class FirestoreDocumentStore(DocumentStore):
    """Document store over Cloud Firestore's async client."""

    def __init__(self, client: firestore.AsyncClient) -> None:
        self.db = client
        logger.info("event=firestore_ready project=%s", getattr(client, "project", None))

    @staticmethod
    def _convert(fields: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            name: firestore.Increment(value.amount) if isinstance(value, Increment) else value
            for name, value in fields.items()
        }

    async def get(self, path: str) -> DocumentSnapshot:
        with _translate_errors("get", path):
            snapshot = await self.db.document(path).get()
        return DocumentSnapshot(path, snapshot.to_dict() if snapshot.exists else None)

    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = False) -> None:
        with _translate_errors("set", path):
            await self.db.document(path).set(self._convert(fields), merge=merge)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        with _translate_errors("update", path):
            await self.db.document(path).update(self._convert(fields))

    async def delete(self, path: str) -> None:
        with _translate_errors("delete", path):
            await self.db.document(path).delete()

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        snapshots: List[DocumentSnapshot] = []
        with _translate_errors("list", collection):
            async for snapshot in self.db.collection(collection).stream():
                snapshots.append(DocumentSnapshot(f"{collection}/{snapshot.id}", snapshot.to_dict() or {}))
        return snapshots

    async def list_group(self, name: str) -> List[DocumentSnapshot]:
        snapshots: List[DocumentSnapshot] = []
        with _translate_errors("list_group", name):
            async for snapshot in self.db.collection_group(name).stream():
                snapshots.append(DocumentSnapshot(snapshot.reference.path, snapshot.to_dict() or {}))
        return snapshots
