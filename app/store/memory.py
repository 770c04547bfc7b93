from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping

from app.core.exceptions import DocumentNotFound
from app.store.base import DocumentSnapshot, DocumentStore, apply_fields, parent_collection


class MemoryDocumentStore(DocumentStore):
    """In-process document store for tests and local runs.

    Writes never suspend between reading and storing a document, so each call
    is atomic with respect to other coroutines on the same loop.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def get(self, path: str) -> DocumentSnapshot:
        data = self._documents.get(path)
        return DocumentSnapshot(path, copy.deepcopy(data) if data is not None else None)

    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = False) -> None:
        self._documents[path] = apply_fields(self._documents.get(path), fields, merge=merge)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        current = self._documents.get(path)
        if current is None:
            raise DocumentNotFound(path)
        self._documents[path] = apply_fields(current, fields, merge=True)

    async def delete(self, path: str) -> None:
        self._documents.pop(path, None)

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        return [
            DocumentSnapshot(path, copy.deepcopy(data))
            for path, data in sorted(self._documents.items())
            if parent_collection(path) == collection
        ]

    async def list_group(self, name: str) -> List[DocumentSnapshot]:
        return [
            DocumentSnapshot(path, copy.deepcopy(data))
            for path, data in sorted(self._documents.items())
            if parent_collection(path).rsplit("/", 1)[-1] == name
        ]
