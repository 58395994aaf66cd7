from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from relocation_queue.core.config import QueueConfig
from relocation_queue.services.errors import MissingColumnsError, SourceTableMissingError
from relocation_queue.services.records import MANUAL_PRIORITY_SCORE, MANUAL_TYPE_LABEL, WorkQueueItem
from relocation_queue.services.tables import CellUpdate, TableGrid, TableStore, normalize_code
from relocation_queue.services.temporal import hours_between, parse_timestamp

logger = logging.getLogger(__name__)

_TOKEN_SPLIT_RE = re.compile(r"[-\s]+")


def derive_origin(location: str, exceptions: Mapping[str, str]) -> str:
    normalized = normalize_code(location)
    if normalized in exceptions:
        return exceptions[normalized]
    tokens = [token for token in _TOKEN_SPLIT_RE.split(normalized) if token]
    if not tokens or not (tokens[-1].isascii() and tokens[-1].isdigit()):
        return normalized
    return f"Line {int(tokens[-1])}"


def location_in_scope(location: str, config: QueueConfig) -> bool:
    return location in config.location_exceptions or config.location_regex.fullmatch(location) is not None


@dataclass(slots=True)
class SourceIngestResult:
    items: list[WorkQueueItem] = field(default_factory=list)
    accepted_ids: set[str] = field(default_factory=set)


def ingest_source(grid: TableGrid | None, config: QueueConfig, now: datetime) -> SourceIngestResult:
    """Turn the authoritative export into queue items.

    Raises before anything is written when the table is missing or lacks a
    required column.
    """
    if grid is None:
        raise SourceTableMissingError(f"source table {config.source_table!r} not found")
    missing = grid.missing_columns(config.required_source_columns)
    if missing:
        raise MissingColumnsError(config.source_table, missing)

    recognized = set(config.source_columns)
    has_due = "DUE_DATETIME" in recognized and grid.column_index("DUE_DATETIME") is not None
    result = SourceIngestResult()
    skipped = 0

    for row in grid.rows:
        task_id = normalize_code(grid.value(row, "ID"))
        location = normalize_code(grid.value(row, "LOCATION"))
        if not task_id or not location:
            continue
        if not location_in_scope(location, config):
            skipped += 1
            continue

        hours_remaining = 0.0
        if has_due:
            due = parse_timestamp(grid.value(row, "DUE_DATETIME"), config.tz)
            if due is not None:
                hours_remaining = round(hours_between(now, due), 2)

        result.items.append(
            WorkQueueItem(
                task_id=task_id,
                location=location,
                hours_remaining=hours_remaining,
                type=grid.text(row, "TYPE") if "TYPE" in recognized else "",
                shift=grid.text(row, "SHIFT") if "SHIFT" in recognized else "",
                origin=derive_origin(location, config.location_exceptions),
            )
        )
        result.accepted_ids.add(task_id)

    logger.info(
        "source ingested table=%s accepted=%s out_of_scope=%s",
        config.source_table,
        len(result.items),
        skipped,
    )
    return result


@dataclass(slots=True)
class ManualSweepPlan:
    items: list[WorkQueueItem] = field(default_factory=list)
    superseded: list[int] = field(default_factory=list)
    expired: list[int] = field(default_factory=list)
    stamps: list[int] = field(default_factory=list)

    @property
    def deletions(self) -> list[int]:
        return sorted(set(self.superseded) | set(self.expired), reverse=True)


def plan_manual_sweep(
    grid: TableGrid | None,
    config: QueueConfig,
    accepted_ids: set[str],
    now: datetime,
) -> ManualSweepPlan | None:
    """Classify every manual row as superseded, expired, stamped or kept.

    Returns ``None`` when the manual table cannot contribute this run; the
    source sync goes ahead without it.
    """
    if grid is None:
        logger.info("manual table %s not found; skipping manual rows", config.manual_table)
        return None
    missing = grid.missing_columns(("ID", "LOCATION"))
    if missing:
        logger.warning(
            "manual table %s is missing %s; skipping manual rows",
            config.manual_table,
            ", ".join(missing),
        )
        return None

    has_first_seen = grid.column_index("FIRST_SEEN_AT") is not None
    plan = ManualSweepPlan()

    for index, row in enumerate(grid.rows):
        task_id = normalize_code(grid.value(row, "ID"))
        location = normalize_code(grid.value(row, "LOCATION"))
        if not task_id and not location:
            continue

        if task_id and task_id in accepted_ids:
            plan.superseded.append(index)
            continue

        if has_first_seen:
            first_seen = parse_timestamp(grid.value(row, "FIRST_SEEN_AT"), config.tz)
            if first_seen is None:
                plan.stamps.append(index)
            elif now - first_seen > config.manual_ttl:
                plan.expired.append(index)
                continue

        if task_id and location:
            plan.items.append(
                WorkQueueItem(
                    task_id=task_id,
                    location=location,
                    hours_remaining=MANUAL_PRIORITY_SCORE,
                    type=MANUAL_TYPE_LABEL,
                    origin=derive_origin(location, config.location_exceptions),
                )
            )

    return plan


async def apply_manual_sweep(store: TableStore, config: QueueConfig, plan: ManualSweepPlan, now: datetime) -> None:
    # Stamps address pre-deletion row indices, so they go first.
    if plan.stamps:
        await store.batch_update(
            config.manual_table,
            [CellUpdate(row=index, column="FIRST_SEEN_AT", value=now) for index in plan.stamps],
        )
    for index in plan.deletions:
        await store.delete_row(config.manual_table, index)

    if plan.superseded or plan.expired or plan.stamps:
        logger.info(
            "manual sweep table=%s superseded=%s expired=%s stamped=%s",
            config.manual_table,
            len(plan.superseded),
            len(plan.expired),
            len(plan.stamps),
        )
