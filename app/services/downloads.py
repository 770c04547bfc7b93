"""Per-user download accounting.

Two pieces of state are kept for every user:

* ``users/{userId}`` carries a denormalized ``downloads`` counter;
* ``downloads/{userId}/downloads/{bookId}`` is the ledger, one record per
  downloaded book with ``bookId`` and ``downloadedAt``.

Counter and ledger are written by independent calls. Nothing here makes them
transactional: callers that want them to agree pair ``increment_downloads``
with ``record_download`` and ``remove_download`` with ``decrement_downloads``.
A failure between the two leaves them out of step, and the decrement has no
floor at zero.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.models import DownloadRecord
from app.store.base import (
    DocumentStore,
    Increment,
    collection_path,
    document_path,
    is_number,
)

logger = logging.getLogger("book_downloads.accounting")

USERS_COLLECTION = "users"
DOWNLOADS_COLLECTION = "downloads"
COUNTER_FIELD = "downloads"


def user_path(user_id: str) -> str:
    return document_path(USERS_COLLECTION, user_id)


def ledger_path(user_id: str) -> str:
    return collection_path(DOWNLOADS_COLLECTION, user_id, DOWNLOADS_COLLECTION)


def download_path(user_id: str, book_id: str) -> str:
    return document_path(DOWNLOADS_COLLECTION, user_id, DOWNLOADS_COLLECTION, book_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(record: DownloadRecord) -> tuple:
    stamp = record.downloaded_at
    if stamp is None:
        return (1, 0.0)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return (0, -stamp.timestamp())


class DownloadAccounting:
    def __init__(self, store: DocumentStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self._clock = clock or _utcnow

    async def _adjust_counter(self, user_id: str, amount: int) -> None:
        path = user_path(user_id)
        if self.store.supports_merge_increment:
            await self.store.set(path, {COUNTER_FIELD: Increment(amount)}, merge=True)
            return
        # The existence check is not atomic with the increment. Two callers
        # racing on a new user can both write the zero, and the second write
        # resets an increment that landed in between.
        snapshot = await self.store.get(path)
        if not snapshot.exists:
            await self.store.set(path, {COUNTER_FIELD: 0}, merge=True)
        await self.store.update(path, {COUNTER_FIELD: Increment(amount)})

    async def increment_downloads(self, user_id: str, amount: int = 1) -> None:
        await self._adjust_counter(user_id, amount)
        logger.info("event=downloads_incremented user_id=%s amount=%s", user_id, amount)

    async def decrement_downloads(self, user_id: str) -> None:
        await self._adjust_counter(user_id, -1)
        logger.info("event=downloads_decremented user_id=%s", user_id)

    async def record_download(self, user_id: str, book_id: str) -> None:
        path = download_path(user_id, book_id)
        await self.store.set(path, {"bookId": book_id, "downloadedAt": self._clock()}, merge=True)
        logger.info("event=download_recorded user_id=%s book_id=%s", user_id, book_id)

    async def get_download_count(self, user_id: str) -> int:
        snapshot = await self.store.get(user_path(user_id))
        value = snapshot.get(COUNTER_FIELD)
        if not is_number(value):
            return 0
        return max(int(value), 0)

    async def remove_download(self, user_id: str, book_id: str) -> None:
        await self.store.delete(download_path(user_id, book_id))
        logger.info("event=download_removed user_id=%s book_id=%s", user_id, book_id)

    async def list_downloads(self, user_id: str) -> List[DownloadRecord]:
        """Ledger entries for ``user_id``, most recent first."""
        snapshots = await self.store.list(ledger_path(user_id))
        records = []
        for snapshot in snapshots:
            stamp = snapshot.get("downloadedAt")
            records.append(
                DownloadRecord(
                    book_id=str(snapshot.get("bookId") or snapshot.id),
                    downloaded_at=stamp if isinstance(stamp, datetime) else None,
                )
            )
        records.sort(key=_sort_key)
        return records
