from __future__ import annotations

from typing import Any

from relocation_queue.services.records import ClaimState, PreviousStateMap
from relocation_queue.services.tables import Cell, TableGrid, cell_text, normalize_code


def extract_claim_states(grid: TableGrid | None) -> PreviousStateMap:
    """Read the claim columns of a queue or manual table keyed by task ID.

    Absent columns read as empty/false so a partially repaired table still
    contributes whatever it has.
    """
    if grid is None or grid.column_index("ID") is None:
        return {}

    states: PreviousStateMap = {}
    for row in grid.rows:
        task_id = normalize_code(grid.value(row, "ID"))
        if not task_id:
            continue
        states[task_id] = claim_state_from_row(grid, row)
    return states


def claim_state_from_row(grid: TableGrid, row: list[Cell]) -> ClaimState:
    return ClaimState(
        claimed_by=grid.text(row, "CLAIMED_BY"),
        claim_time=_blank_to_none(grid.value(row, "CLAIM_TIME")),
        new_location=grid.text(row, "NEW_LOCATION"),
        notes=grid.text(row, "NOTES"),
        claimed=coerce_flag(grid.value(row, "CLAIMED")),
        arrival_time=_blank_to_none(grid.value(row, "ARRIVAL_TIME")),
    )


def merge_previous_state(queue_states: PreviousStateMap, manual_states: PreviousStateMap) -> PreviousStateMap:
    merged: PreviousStateMap = dict(queue_states)
    for task_id, manual_state in manual_states.items():
        existing = merged.get(task_id)
        merged[task_id] = existing.overlay(manual_state) if existing is not None else manual_state
    return merged


def coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return cell_text(value).lower() in {"true", "yes", "y", "1", "x"}


def _blank_to_none(value: Cell) -> Cell:
    return value if cell_text(value) else None
