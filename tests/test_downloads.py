import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import InvalidDocumentPath, StoreUnavailable
from app.services.downloads import DownloadAccounting, download_path, ledger_path, user_path
from app.store.base import Increment
from app.store.memory import MemoryDocumentStore


class TwoStepStore(MemoryDocumentStore):
    """Store without create-and-increment, forcing the get/set/update sequence."""

    supports_merge_increment = False

    def __init__(self):
        super().__init__()
        self.calls = []

    async def get(self, path):
        self.calls.append(("get", path))
        return await super().get(path)

    async def set(self, path, fields, merge=False):
        self.calls.append(("set", path))
        await super().set(path, fields, merge=merge)

    async def update(self, path, fields):
        self.calls.append(("update", path))
        await super().update(path, fields)


class FailingStore(MemoryDocumentStore):
    async def set(self, path, fields, merge=False):
        raise StoreUnavailable("permission denied")

    async def delete(self, path):
        raise StoreUnavailable("network unreachable")


class StepClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        value = self.now
        self.now = self.now + timedelta(minutes=5)
        return value


@pytest.fixture(params=["merge-increment", "two-step"])
def store(request):
    return MemoryDocumentStore() if request.param == "merge-increment" else TwoStepStore()


def run(coro):
    return asyncio.run(coro)


def test_paths_follow_persisted_layout():
    assert user_path("u1") == "users/u1"
    assert download_path("u1", "b7") == "downloads/u1/downloads/b7"
    assert ledger_path("u1") == "downloads/u1/downloads"


@pytest.mark.parametrize("user_id", ["", "   ", "a/b"])
def test_invalid_user_ids_are_rejected(user_id):
    accounting = DownloadAccounting(MemoryDocumentStore())
    with pytest.raises(InvalidDocumentPath):
        run(accounting.increment_downloads(user_id))


def test_fresh_user_has_zero_downloads(store):
    accounting = DownloadAccounting(store)
    assert run(accounting.get_download_count("nobody")) == 0


def test_increment_creates_counter_and_accumulates(store):
    accounting = DownloadAccounting(store)

    async def scenario():
        await accounting.increment_downloads("u1")
        first = await accounting.get_download_count("u1")
        await accounting.increment_downloads("u1", 5)
        return first, await accounting.get_download_count("u1")

    assert run(scenario()) == (1, 6)
    assert run(store.get("users/u1")).data == {"downloads": 6}


def test_sequential_increments_count_up(store):
    accounting = DownloadAccounting(store)

    async def scenario():
        for _ in range(7):
            await accounting.increment_downloads("u2")
        return await accounting.get_download_count("u2")

    assert run(scenario()) == 7


def test_concurrent_increments_do_not_lose_updates(store):
    accounting = DownloadAccounting(store)

    async def scenario():
        await asyncio.gather(*(accounting.increment_downloads("u3") for _ in range(20)))
        return await accounting.get_download_count("u3")

    assert run(scenario()) == 20


def test_increment_then_decrement_restores_value(store):
    accounting = DownloadAccounting(store)

    async def scenario():
        await accounting.increment_downloads("u4", 3)
        await accounting.increment_downloads("u4")
        await accounting.decrement_downloads("u4")
        return await accounting.get_download_count("u4")

    assert run(scenario()) == 3


def test_decrement_on_fresh_user_goes_negative(store):
    accounting = DownloadAccounting(store)
    run(accounting.decrement_downloads("fresh"))

    # No floor at zero in storage; the read path reports zero.
    assert run(store.get("users/fresh")).get("downloads") == -1
    assert run(accounting.get_download_count("fresh")) == 0


def test_counter_initialization_keeps_other_fields(store):
    run(store.set("users/u5", {"displayName": "Reader"}))
    accounting = DownloadAccounting(store)
    run(accounting.increment_downloads("u5", 2))

    assert run(store.get("users/u5")).data == {"displayName": "Reader", "downloads": 2}


def test_two_step_form_initializes_only_missing_counter():
    store = TwoStepStore()
    accounting = DownloadAccounting(store)

    run(accounting.increment_downloads("u6"))
    assert store.calls == [("get", "users/u6"), ("set", "users/u6"), ("update", "users/u6")]

    store.calls.clear()
    run(accounting.increment_downloads("u6"))
    assert store.calls == [("get", "users/u6"), ("update", "users/u6")]


def test_two_step_form_can_lose_an_increment_racing_on_a_new_user():
    store = TwoStepStore()
    accounting = DownloadAccounting(store)
    read = store.get

    async def get_then_other_caller_increments(path):
        snapshot = await read(path)
        if not snapshot.exists:
            await MemoryDocumentStore.set(store, path, {"downloads": 0}, merge=True)
            await MemoryDocumentStore.update(store, path, {"downloads": Increment(1)})
        return snapshot

    store.get = get_then_other_caller_increments
    run(accounting.increment_downloads("u7"))

    # The late zero write wiped the other caller's increment
    assert run(accounting.get_download_count("u7")) == 1


@pytest.mark.parametrize("value", ["12", None, True, float("nan"), {"n": 1}])
def test_corrupt_counter_reads_as_zero(value):
    store = MemoryDocumentStore()
    run(store.set("users/u7", {"downloads": value}))
    assert run(DownloadAccounting(store).get_download_count("u7")) == 0


def test_float_counter_reads_as_integer():
    store = MemoryDocumentStore()
    run(store.set("users/u8", {"downloads": 4.0}))
    assert run(DownloadAccounting(store).get_download_count("u8")) == 4


def test_record_download_is_an_idempotent_upsert():
    store = MemoryDocumentStore()
    start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    accounting = DownloadAccounting(store, clock=StepClock(start))

    run(accounting.record_download("u1", "b1"))
    run(accounting.record_download("u1", "b1"))

    entries = run(store.list("downloads/u1/downloads"))
    assert len(entries) == 1
    assert entries[0].data == {"bookId": "b1", "downloadedAt": start + timedelta(minutes=5)}


def test_record_download_does_not_touch_counter():
    store = MemoryDocumentStore()
    accounting = DownloadAccounting(store)
    run(accounting.record_download("u1", "b1"))

    assert not run(store.get("users/u1")).exists


def test_record_then_remove_leaves_no_record():
    store = MemoryDocumentStore()
    accounting = DownloadAccounting(store)

    run(accounting.record_download("u1", "b1"))
    run(accounting.remove_download("u1", "b1"))

    assert not run(store.get("downloads/u1/downloads/b1")).exists
    assert run(accounting.list_downloads("u1")) == []


def test_remove_download_keeps_counter_and_tolerates_missing_record():
    store = MemoryDocumentStore()
    accounting = DownloadAccounting(store)

    async def scenario():
        await accounting.increment_downloads("u1")
        await accounting.record_download("u1", "b1")
        await accounting.remove_download("u1", "b1")
        await accounting.remove_download("u1", "b1")
        return await accounting.get_download_count("u1")

    assert run(scenario()) == 1


def test_list_downloads_newest_first():
    store = MemoryDocumentStore()
    accounting = DownloadAccounting(store, clock=StepClock(datetime(2026, 1, 1, tzinfo=timezone.utc)))

    async def scenario():
        for book_id in ("b1", "b2", "b3"):
            await accounting.record_download("u1", book_id)
        await accounting.record_download("u2", "other")
        await store.set("downloads/u1/downloads/legacy", {"bookId": "legacy"})
        return await accounting.list_downloads("u1")

    records = run(scenario())
    assert [r.book_id for r in records] == ["b3", "b2", "b1", "legacy"]
    assert records[-1].downloaded_at is None


def test_store_failures_propagate_unchanged():
    accounting = DownloadAccounting(FailingStore())

    with pytest.raises(StoreUnavailable, match="permission denied"):
        run(accounting.increment_downloads("u1"))
    with pytest.raises(StoreUnavailable, match="permission denied"):
        run(accounting.record_download("u1", "b1"))
    with pytest.raises(StoreUnavailable, match="network unreachable"):
        run(accounting.remove_download("u1", "b1"))
