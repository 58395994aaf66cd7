from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from opentelemetry import trace

from relocation_queue.core.config import QueueConfig
from relocation_queue.services.ingest import apply_manual_sweep, ingest_source, plan_manual_sweep
from relocation_queue.services.records import ClaimState, PreviousStateMap, WorkQueueItem
from relocation_queue.services.snapshot import extract_claim_states, merge_previous_state
from relocation_queue.services.tables import TableStore
from relocation_queue.services.temporal import utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def merge_and_rank(
    source_items: list[WorkQueueItem],
    manual_items: list[WorkQueueItem],
    previous: PreviousStateMap,
) -> list[WorkQueueItem]:
    """Attach carried-over claim state and order the queue, most urgent first.

    Equal scores fall back to task ID so repeated runs produce the same order.
    """
    merged = [
        replace(item, claim=previous.get(item.task_id, ClaimState()))
        for item in [*source_items, *manual_items]
    ]
    merged.sort(key=lambda item: (item.hours_remaining, item.task_id))
    return merged


class QueueReconciler:
    def __init__(self, store: TableStore, config: QueueConfig) -> None:
        self.store = store
        self.config = config

    async def reconcile(self, now: datetime | None = None) -> int:
        """Rebuild the queue table from the source export and the manual table.

        Returns the number of tasks written.
        """
        now = now or utcnow()
        config = self.config

        with tracer.start_as_current_span("queue.reconcile") as span:
            source_grid = await self.store.read_table(config.source_table)
            queue_grid = await self.store.read_table(config.queue_table)
            manual_grid = await self.store.read_table(config.manual_table)

            previous = merge_previous_state(
                extract_claim_states(queue_grid),
                extract_claim_states(manual_grid),
            )

            source = ingest_source(source_grid, config, now)

            manual_items: list[WorkQueueItem] = []
            plan = plan_manual_sweep(manual_grid, config, source.accepted_ids, now)
            if plan is not None:
                await apply_manual_sweep(self.store, config, plan, now)
                manual_items = plan.items

            ranked = merge_and_rank(source.items, manual_items, previous)
            await self.store.write_table(
                config.queue_table,
                list(config.queue_columns),
                [item.to_row(config.queue_columns) for item in ranked],
            )

            span.set_attribute("queue.source_tasks", len(source.items))
            span.set_attribute("queue.manual_tasks", len(manual_items))
            span.set_attribute("queue.tasks_written", len(ranked))
            logger.info(
                "queue rebuilt table=%s tasks=%s source=%s manual=%s carried_claims=%s",
                config.queue_table,
                len(ranked),
                len(source.items),
                len(manual_items),
                sum(1 for item in ranked if item.claim.derived_claimed),
            )
            return len(ranked)
