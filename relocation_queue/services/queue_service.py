from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import AsyncIterator
from uuid import uuid4

from opentelemetry import trace

from relocation_queue.core.config import QueueConfig, Settings, get_settings
from relocation_queue.jobs.lease_reaper import release_stale_leases
from relocation_queue.services.errors import (
    ManualTableUnavailableError,
    QueueBusyError,
    QueueValidationError,
    TaskConflictError,
    TaskNotFoundError,
)
from relocation_queue.services.locks import DocumentLock, LocalDocumentLock, PostgresAdvisoryLock
from relocation_queue.services.notify import LogNotifier, Notifier, WebhookNotifier
from relocation_queue.services.reconcile import QueueReconciler
from relocation_queue.services.records import ClaimState, WorkQueueItem
from relocation_queue.services.sheets import SheetsTableStore
from relocation_queue.services.snapshot import coerce_flag
from relocation_queue.services.tables import CellUpdate, InMemoryTableStore, TableGrid, TableStore, normalize_code
from relocation_queue.services.temporal import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class QueueService:
    """Entry point for every operation that touches the queue document.

    Mutating operations run inside the document lock, one acquire/release pair
    each; contention raises ``QueueBusyError`` without touching any table.
    """

    def __init__(
        self,
        store: TableStore,
        lock: DocumentLock,
        notifier: Notifier,
        config: QueueConfig,
        *,
        lock_timeout_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.lock = lock
        self.notifier = notifier
        self.config = config
        self.lock_timeout_seconds = lock_timeout_seconds
        self.reconciler = QueueReconciler(store, config)

    async def reconcile(self, now: datetime | None = None) -> int:
        try:
            async with self._guarded("reconcile"):
                written = await self.reconciler.reconcile(now=now)
        except QueueBusyError:
            raise
        except Exception as exc:
            await self.notifier.notify("error", f"Queue sync failed: {exc}")
            raise
        await self.notifier.notify("info", f"Queue synced: {written} tasks written.")
        return written

    async def release_stale_leases(self, now: datetime | None = None) -> int:
        try:
            async with self._guarded("release_stale_leases"):
                released = await release_stale_leases(self.store, self.config, now=now)
        except QueueBusyError:
            raise
        except Exception as exc:
            await self.notifier.notify("error", f"Releasing stale claims failed: {exc}")
            raise
        await self.notifier.notify("info", f"Released {released} stale claims.")
        return released

    async def list_queue(self) -> list[WorkQueueItem]:
        grid = await self.store.read_table(self.config.queue_table)
        if grid is None:
            return []
        return [_row_to_item(grid, row) for row in grid.rows if normalize_code(grid.value(row, "ID"))]

    async def claim_task(self, task_id: str, operator: str, now: datetime | None = None) -> WorkQueueItem:
        now = now or utcnow()
        operator = operator.strip()
        if not operator:
            raise QueueValidationError("operator must be a non-empty string")

        async with self._guarded("claim_task"):
            grid, index = await self._find_queue_row(task_id)
            item = _row_to_item(grid, grid.rows[index])
            if item.claim.completed:
                raise TaskConflictError(f"task {item.task_id} is already completed")
            if item.claim.claimed_by and item.claim.claimed_by != operator:
                raise TaskConflictError(f"task {item.task_id} is claimed by {item.claim.claimed_by}")

            await self.store.batch_update(
                self.config.queue_table,
                [
                    CellUpdate(row=index, column="CLAIMED_BY", value=operator),
                    CellUpdate(row=index, column="CLAIM_TIME", value=now),
                    CellUpdate(row=index, column="CLAIMED", value=True),
                ],
            )
            logger.info("task claimed id=%s operator=%s", item.task_id, operator)
            item.claim = ClaimState(claimed_by=operator, claim_time=now, notes=item.claim.notes, claimed=True)
            return item

    async def complete_task(
        self,
        task_id: str,
        new_location: str,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> WorkQueueItem:
        now = now or utcnow()
        new_location = normalize_code(new_location)
        if not new_location:
            raise QueueValidationError("new_location must be a non-empty string")

        async with self._guarded("complete_task"):
            grid, index = await self._find_queue_row(task_id)
            item = _row_to_item(grid, grid.rows[index])
            if item.claim.completed:
                raise TaskConflictError(f"task {item.task_id} is already completed")

            updates = [
                CellUpdate(row=index, column="NEW_LOCATION", value=new_location),
                CellUpdate(row=index, column="ARRIVAL_TIME", value=now),
                CellUpdate(row=index, column="CLAIMED", value=True),
            ]
            if notes:
                updates.append(CellUpdate(row=index, column="NOTES", value=notes.strip()))
            await self.store.batch_update(self.config.queue_table, updates)
            logger.info("task completed id=%s new_location=%s", item.task_id, new_location)
            item.claim = ClaimState(
                claimed_by=item.claim.claimed_by,
                claim_time=item.claim.claim_time,
                new_location=new_location,
                notes=notes.strip() if notes else item.claim.notes,
                claimed=True,
                arrival_time=now,
            )
            return item

    async def add_manual_record(self, task_id: str, location: str, notes: str | None = None) -> str:
        """Append an operator-entered task to the manual table.

        Returns the generated manual record id. FIRST_SEEN_AT is left blank;
        the next reconcile run starts the TTL countdown.
        """
        task_id = normalize_code(task_id)
        location = normalize_code(location)
        if not task_id or not location:
            raise QueueValidationError("manual records need both an ID and a LOCATION")

        async with self._guarded("add_manual_record"):
            grid = await self.store.read_table(self.config.manual_table)
            if grid is None:
                raise ManualTableUnavailableError(f"manual table {self.config.manual_table!r} not found")
            missing = grid.missing_columns(("ID", "LOCATION"))
            if missing:
                raise ManualTableUnavailableError(
                    f"manual table {self.config.manual_table!r} is missing {', '.join(missing)}"
                )
            if any(normalize_code(grid.value(row, "ID")) == task_id for row in grid.rows):
                raise TaskConflictError(f"manual record for task {task_id} already exists")

            record_id = uuid4().hex
            values = {"ID": task_id, "LOCATION": location, "NOTES": notes or "", "MANUAL_RECORD_ID": record_id}
            await self.store.append_row(
                self.config.manual_table,
                [values.get(normalize_code(label), "") for label in grid.header],
            )
            logger.info("manual record added id=%s location=%s record_id=%s", task_id, location, record_id)
            return record_id

    async def repair_manual_table(self) -> list[str]:
        async with self._guarded("repair_manual_table"):
            added = await self.store.append_columns_if_missing(
                self.config.manual_table,
                list(self.config.manual_columns),
            )
        if added:
            await self.notifier.notify("info", f"Manual table repaired: added {', '.join(added)}.")
        return added

    async def _find_queue_row(self, task_id: str) -> tuple[TableGrid, int]:
        wanted = normalize_code(task_id)
        grid = await self.store.read_table(self.config.queue_table)
        if grid is not None:
            for index, row in enumerate(grid.rows):
                if normalize_code(grid.value(row, "ID")) == wanted:
                    return grid, index
        raise TaskNotFoundError(f"task {wanted} is not on the queue")

    @asynccontextmanager
    async def _guarded(self, operation: str) -> AsyncIterator[None]:
        with tracer.start_as_current_span(f"queue.guard.{operation}") as span:
            if not await self.lock.try_acquire(self.lock_timeout_seconds):
                span.set_attribute("queue.lock_acquired", False)
                logger.info("queue busy; %s skipped after %.1fs", operation, self.lock_timeout_seconds)
                await self.notifier.notify("warning", f"Queue is busy; {operation} did not run. Try again shortly.")
                raise QueueBusyError(f"{operation} skipped: queue document is locked by another run")
            span.set_attribute("queue.lock_acquired", True)
            try:
                yield
            finally:
                await self.lock.release()


def _row_to_item(grid: TableGrid, row: list) -> WorkQueueItem:
    raw_score = grid.value(row, "HOURS_REMAINING")
    try:
        hours_remaining = float(raw_score) if raw_score not in (None, "") else 0.0
    except (TypeError, ValueError):
        hours_remaining = 0.0
    return WorkQueueItem(
        task_id=normalize_code(grid.value(row, "ID")),
        location=normalize_code(grid.value(row, "LOCATION")),
        hours_remaining=hours_remaining,
        type=grid.text(row, "TYPE"),
        shift=grid.text(row, "SHIFT"),
        origin=grid.text(row, "ORIGIN"),
        claim=ClaimState(
            claimed_by=grid.text(row, "CLAIMED_BY"),
            claim_time=grid.value(row, "CLAIM_TIME") or None,
            new_location=grid.text(row, "NEW_LOCATION"),
            notes=grid.text(row, "NOTES"),
            claimed=coerce_flag(grid.value(row, "CLAIMED")),
            arrival_time=grid.value(row, "ARRIVAL_TIME") or None,
        ),
    )


def build_queue_service(settings: Settings) -> QueueService:
    config = settings.queue_config()

    store: TableStore
    if settings.storage_backend == "sheets":
        if not settings.spreadsheet_id or not settings.sheets_access_token:
            raise ValueError("sheets backend needs RQ_SPREADSHEET_ID and RQ_SHEETS_ACCESS_TOKEN")
        store = SheetsTableStore(
            settings.spreadsheet_id,
            settings.sheets_access_token,
            base_url=settings.sheets_api_base_url,
            timeout_seconds=settings.sheets_timeout_seconds,
            tz=config.tz,
        )
    else:
        store = InMemoryTableStore()

    lock: DocumentLock
    if settings.lock_backend == "postgres":
        if not settings.lock_database_url:
            raise ValueError("postgres lock backend needs RQ_LOCK_DATABASE_URL")
        lock = PostgresAdvisoryLock(
            settings.lock_database_url,
            document_id=settings.spreadsheet_id or settings.app_name,
            poll_interval_seconds=settings.lock_poll_interval_seconds,
        )
    else:
        lock = LocalDocumentLock()

    notifier: Notifier
    if settings.notify_webhook_url:
        notifier = WebhookNotifier(
            settings.notify_webhook_url,
            source=settings.app_name,
            timeout_seconds=settings.notify_timeout_seconds,
        )
    else:
        notifier = LogNotifier()

    return QueueService(store, lock, notifier, config, lock_timeout_seconds=settings.lock_timeout_seconds)


@lru_cache
def get_queue_service() -> QueueService:
    return build_queue_service(get_settings())
