from app.models import DownloadAudit
from app.services.downloads import (
    COUNTER_FIELD,
    DOWNLOADS_COLLECTION,
    USERS_COLLECTION,
    ledger_path,
    user_path,
)
from app.store.base import DocumentStore, is_number


async def audit_user(store: DocumentStore, user_id: str) -> DownloadAudit:
    """Compare the stored counter with the ledger size. Reports drift, never repairs it."""
    snapshot = await store.get(user_path(user_id))
    value = snapshot.get(COUNTER_FIELD)
    counter = int(value) if is_number(value) else 0
    ledger_entries = len(await store.list(ledger_path(user_id)))
    return DownloadAudit(
        user_id=user_id,
        counter=counter,
        ledger_entries=ledger_entries,
        consistent=counter == ledger_entries,
    )


async def ledger_owners(store: DocumentStore) -> set[str]:
    """User ids owning at least one ledger entry (downloads/{userId}/downloads/{bookId})."""
    owners = set()
    for snapshot in await store.list_group(DOWNLOADS_COLLECTION):
        segments = snapshot.path.split("/")
        if len(segments) == 4 and segments[0] == DOWNLOADS_COLLECTION:
            owners.add(segments[1])
    return owners


async def audit_all_users(store: DocumentStore) -> list[DownloadAudit]:
    """Audit users with a counter document and users with ledger entries only."""
    user_ids = {snapshot.id for snapshot in await store.list(USERS_COLLECTION)}
    user_ids |= await ledger_owners(store)
    return [await audit_user(store, user_id) for user_id in sorted(user_ids)]
