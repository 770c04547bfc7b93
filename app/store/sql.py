"""SQL backed document store.

Each document is one row of the ``documents`` table with its fields kept in a
JSON column. Datetimes are tagged on the way in so they come back as
``datetime`` objects. Sessions are synchronous, so every call runs in a worker
thread. Writes are optimistic: each row carries a version that an update
must still match, so a concurrent writer in another process forces a retry
instead of a lost update.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, TypeVar

from sqlalchemy import delete, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.exceptions import DocumentNotFound, StoreUnavailable
from app.models import Document
from app.store.base import DocumentSnapshot, DocumentStore, apply_fields, parent_collection

T = TypeVar("T")

logger = logging.getLogger("book_downloads.sql")

_DATETIME_TAG = "__datetime__"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_DATETIME_TAG}:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


class SqlDocumentStore(DocumentStore):
    # Optimistic writes retry when another writer committed first
    max_write_attempts = 10

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        # Serializes read-modify-write cycles inside this process; writers in
        # other processes are detected through the row version.
        self._write_lock = threading.Lock()

    async def _run(self, func: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(func)
        except OperationalError as exc:
            raise StoreUnavailable(f"Database unavailable: {exc.orig or exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def get(self, path: str) -> DocumentSnapshot:
        def _get() -> DocumentSnapshot:
            with Session(self.engine) as session:
                row = session.get(Document, path)
                if row is None:
                    return DocumentSnapshot(path)
                return DocumentSnapshot(path, _decode(row.data))

        return await self._run(_get)

    def _try_write(self, path: str, fields: Mapping[str, Any], *, merge: bool, must_exist: bool) -> bool:
        """One read-modify-write cycle; False when a concurrent writer won."""
        with Session(self.engine) as session:
            row = session.get(Document, path)
            if row is None:
                if must_exist:
                    raise DocumentNotFound(path)
                session.add(
                    Document(
                        path=path,
                        collection=parent_collection(path),
                        data=_encode(apply_fields(None, fields, merge=merge)),
                    )
                )
                try:
                    session.commit()
                except IntegrityError:
                    # Inserted by another writer meanwhile; retry as an update
                    session.rollback()
                    return False
                return True

            data = _encode(apply_fields(_decode(row.data), fields, merge=merge))
            stmt = (
                update(Document)
                .where(Document.path == path, Document.version == row.version)
                .values(data=data, version=row.version + 1, updated_at=datetime.now(timezone.utc))
            )
            result = session.connection().execute(stmt)
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def _write(self, path: str, fields: Mapping[str, Any], *, merge: bool, must_exist: bool) -> None:
        with self._write_lock:
            for attempt in range(1, self.max_write_attempts + 1):
                if self._try_write(path, fields, merge=merge, must_exist=must_exist):
                    return
                logger.debug("event=sql_write_conflict path=%s attempt=%s", path, attempt)
        raise StoreUnavailable(f"Gave up writing {path} after {self.max_write_attempts} conflicting attempts")

    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = False) -> None:
        await self._run(lambda: self._write(path, fields, merge=merge, must_exist=False))

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        await self._run(lambda: self._write(path, fields, merge=True, must_exist=True))

    async def delete(self, path: str) -> None:
        def _delete() -> None:
            with self._write_lock, Session(self.engine) as session:
                session.connection().execute(delete(Document).where(Document.path == path))
                session.commit()

        await self._run(_delete)

    def _select(self, *criteria) -> List[DocumentSnapshot]:
        with Session(self.engine) as session:
            rows = session.exec(select(Document).where(*criteria).order_by(Document.path)).all()
            return [DocumentSnapshot(row.path, _decode(row.data)) for row in rows]

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        return await self._run(lambda: self._select(Document.collection == collection))

    async def list_group(self, name: str) -> List[DocumentSnapshot]:
        return await self._run(
            lambda: self._select(
                or_(Document.collection == name, Document.collection.endswith(f"/{name}", autoescape=True))
            )
        )

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
