from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from opentelemetry import trace

from relocation_queue.core.config import QueueConfig
from relocation_queue.services.records import ClaimState
from relocation_queue.services.snapshot import claim_state_from_row
from relocation_queue.services.tables import CellUpdate, TableStore, normalize_code
from relocation_queue.services.temporal import parse_timestamp, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def lease_expired(
    claim: ClaimState,
    ttl: timedelta,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> bool:
    now = now or utcnow()
    claimed_at = parse_timestamp(claim.claim_time, tz)
    if claimed_at is None:
        return False
    return now - claimed_at > ttl


def should_release(
    claim: ClaimState,
    ttl: timedelta,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> bool:
    return bool(claim.claimed_by) and not claim.completed and lease_expired(claim, ttl, now=now, tz=tz)


async def release_stale_leases(store: TableStore, config: QueueConfig, now: datetime | None = None) -> int:
    """Clear claims held longer than the claim TTL without a completion signal.

    All qualifying rows are released in a single batched write, so no row is
    ever left with its claimant cleared but its flag still set.
    """
    now = now or utcnow()
    with tracer.start_as_current_span("queue.release_stale_leases") as span:
        grid = await store.read_table(config.queue_table)
        if grid is None or grid.missing_columns(("ID", "CLAIMED_BY", "CLAIM_TIME")):
            span.set_attribute("queue.leases_released", 0)
            return 0

        has_flag = grid.column_index("CLAIMED") is not None
        updates: list[CellUpdate] = []
        released: list[str] = []
        for index, row in enumerate(grid.rows):
            task_id = normalize_code(grid.value(row, "ID"))
            claim = claim_state_from_row(grid, row)
            if not task_id or not should_release(claim, config.claim_ttl, now=now, tz=config.tz):
                continue
            updates.append(CellUpdate(row=index, column="CLAIMED_BY", value=""))
            updates.append(CellUpdate(row=index, column="CLAIM_TIME", value=""))
            if has_flag:
                updates.append(CellUpdate(row=index, column="CLAIMED", value=False))
            released.append(task_id)

        if updates:
            await store.batch_update(config.queue_table, updates)
            logger.info("released stale leases table=%s ids=%s", config.queue_table, ",".join(released))

        span.set_attribute("queue.leases_released", len(released))
        return len(released)
