from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from relocation_queue.core.config import MANUAL_COLUMNS, QUEUE_COLUMNS, QueueConfig
from relocation_queue.services.errors import (
    MissingColumnsError,
    QueueBusyError,
    QueueValidationError,
    TaskConflictError,
    TaskNotFoundError,
)
from relocation_queue.services.locks import LocalDocumentLock, advisory_lock_key
from relocation_queue.services.queue_service import QueueService
from relocation_queue.services.records import ClaimState, WorkQueueItem
from relocation_queue.services.tables import InMemoryTableStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))


class CountingLock:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.acquired = 0
        self.released = 0

    async def try_acquire(self, timeout_seconds: float) -> bool:
        if not self.available:
            return False
        self.acquired += 1
        return True

    async def release(self) -> None:
        self.released += 1


def _service(
    store: InMemoryTableStore,
    lock: CountingLock | LocalDocumentLock | None = None,
) -> tuple[QueueService, RecordingNotifier]:
    notifier = RecordingNotifier()
    service = QueueService(
        store,
        lock or CountingLock(),
        notifier,
        QueueConfig(claim_ttl_minutes=30, manual_ttl_minutes=30),
        lock_timeout_seconds=0.05,
    )
    return service, notifier


def _store_with_queue(*items: WorkQueueItem) -> InMemoryTableStore:
    store = InMemoryTableStore()
    store.put("QUEUE", QUEUE_COLUMNS, [item.to_row(QUEUE_COLUMNS) for item in items])
    return store


def test_reconcile_runs_under_lock_and_notifies_count() -> None:
    store = InMemoryTableStore()
    store.put("SOURCE", ["ID", "LOCATION"], [["A1", "LINE-1"], ["A2", "LINE-2"]])
    lock = CountingLock()
    service, notifier = _service(store, lock)

    assert asyncio.run(service.reconcile(now=NOW)) == 2
    assert (lock.acquired, lock.released) == (1, 1)
    assert notifier.messages == [("info", "Queue synced: 2 tasks written.")]


def test_reconcile_releases_lock_and_notifies_on_failure() -> None:
    store = InMemoryTableStore()
    store.put("SOURCE", ["ID"], [["A1"]])
    lock = CountingLock()
    service, notifier = _service(store, lock)

    with pytest.raises(MissingColumnsError):
        asyncio.run(service.reconcile(now=NOW))

    assert (lock.acquired, lock.released) == (1, 1)
    assert notifier.messages[0][0] == "error"
    assert "LOCATION" in notifier.messages[0][1]


def test_busy_document_skips_the_run() -> None:
    store = InMemoryTableStore()
    store.put("SOURCE", ["ID", "LOCATION"], [["A1", "LINE-1"]])
    lock = CountingLock(available=False)
    service, notifier = _service(store, lock)

    with pytest.raises(QueueBusyError):
        asyncio.run(service.reconcile(now=NOW))
    with pytest.raises(QueueBusyError):
        asyncio.run(service.release_stale_leases(now=NOW))

    assert "QUEUE" not in store.tables
    assert lock.released == 0
    assert [level for level, _ in notifier.messages] == ["warning", "warning"]


def test_local_lock_times_out_while_held() -> None:
    async def run() -> bool:
        lock = LocalDocumentLock()
        assert await lock.try_acquire(0.05)
        contended = await lock.try_acquire(0.05)
        await lock.release()
        reacquired = await lock.try_acquire(0.05)
        await lock.release()
        return contended is False and reacquired

    assert asyncio.run(run())


def test_release_stale_leases_reports_count() -> None:
    store = _store_with_queue(
        WorkQueueItem("A1", "LINE-1", 1.0, claim=ClaimState(claimed_by="bob", claim_time=NOW - timedelta(minutes=45))),
    )
    service, notifier = _service(store)

    assert asyncio.run(service.release_stale_leases(now=NOW)) == 1
    assert notifier.messages == [("info", "Released 1 stale claims.")]


def test_claim_task_sets_claim_fields() -> None:
    store = _store_with_queue(WorkQueueItem("A1", "LINE-1", 1.0))
    service, _ = _service(store)

    item = asyncio.run(service.claim_task("a1", "bob", now=NOW))

    assert item.claim.claimed_by == "bob"
    row = dict(zip(QUEUE_COLUMNS, store.tables["QUEUE"].rows[0]))
    assert row["CLAIMED_BY"] == "bob"
    assert row["CLAIM_TIME"] == NOW
    assert row["CLAIMED"] is True


def test_claim_task_rejects_conflicts() -> None:
    store = _store_with_queue(
        WorkQueueItem("A1", "LINE-1", 1.0, claim=ClaimState(claimed_by="amy", claim_time=NOW)),
        WorkQueueItem("A2", "LINE-1", 1.0, claim=ClaimState(new_location="DOCK-1")),
    )
    service, _ = _service(store)

    with pytest.raises(TaskConflictError):
        asyncio.run(service.claim_task("A1", "bob", now=NOW))
    with pytest.raises(TaskConflictError):
        asyncio.run(service.claim_task("A2", "bob", now=NOW))
    with pytest.raises(TaskNotFoundError):
        asyncio.run(service.claim_task("ZZ", "bob", now=NOW))
    with pytest.raises(QueueValidationError):
        asyncio.run(service.claim_task("A1", "  ", now=NOW))


def test_complete_task_records_arrival() -> None:
    store = _store_with_queue(
        WorkQueueItem("A1", "LINE-1", 1.0, claim=ClaimState(claimed_by="bob", claim_time=NOW - timedelta(hours=2))),
    )
    service, _ = _service(store)

    item = asyncio.run(service.complete_task("A1", "dock-3", notes="left by door", now=NOW))

    assert item.claim.completed
    row = dict(zip(QUEUE_COLUMNS, store.tables["QUEUE"].rows[0]))
    assert row["NEW_LOCATION"] == "DOCK-3"
    assert row["ARRIVAL_TIME"] == NOW
    assert row["NOTES"] == "left by door"
    # Completed rows are never released, however old the claim.
    assert asyncio.run(service.release_stale_leases(now=NOW + timedelta(days=1))) == 0


def test_add_manual_record_appends_row_then_reconcile_queues_it() -> None:
    store = InMemoryTableStore()
    store.put("SOURCE", ["ID", "LOCATION"])
    store.put("MANUAL", MANUAL_COLUMNS)
    service, _ = _service(store)

    record_id = asyncio.run(service.add_manual_record("m7", "line-4", notes="urgent"))

    (row,) = store.tables["MANUAL"].rows
    manual = dict(zip(MANUAL_COLUMNS, row))
    assert manual["ID"] == "M7"
    assert manual["LOCATION"] == "LINE-4"
    assert manual["MANUAL_RECORD_ID"] == record_id
    assert manual["FIRST_SEEN_AT"] == ""

    with pytest.raises(TaskConflictError):
        asyncio.run(service.add_manual_record("M7", "LINE-4"))

    assert asyncio.run(service.reconcile(now=NOW)) == 1
    (queued,) = asyncio.run(service.list_queue())
    assert queued.task_id == "M7"
    assert queued.type == "MANUAL"
    assert queued.claim.notes == "urgent"


def test_repair_manual_table_adds_missing_columns() -> None:
    store = InMemoryTableStore()
    store.put("MANUAL", ["ID", "LOCATION", "NOTES"])
    service, notifier = _service(store)

    added = asyncio.run(service.repair_manual_table())

    assert added == [column for column in MANUAL_COLUMNS if column not in {"ID", "LOCATION", "NOTES"}]
    assert store.tables["MANUAL"].header[:3] == ["ID", "LOCATION", "NOTES"]
    assert asyncio.run(service.repair_manual_table()) == []
    assert len(notifier.messages) == 1


def test_advisory_lock_key_is_stable_signed_bigint() -> None:
    key = advisory_lock_key("doc-1")
    assert key == advisory_lock_key("doc-1")
    assert key != advisory_lock_key("doc-2")
    assert -(2**63) <= key < 2**63
