from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from relocation_queue.services.tables import Cell, cell_text

# Manual rows always sort ahead of anything with a real due time.
MANUAL_PRIORITY_SCORE = -9999.0
MANUAL_TYPE_LABEL = "MANUAL"


@dataclass(frozen=True, slots=True)
class ClaimState:
    claimed_by: str = ""
    claim_time: Cell = None
    new_location: str = ""
    notes: str = ""
    claimed: bool = False
    arrival_time: Cell = None

    @property
    def completed(self) -> bool:
        return bool(self.new_location) or bool(cell_text(self.arrival_time))

    @property
    def derived_claimed(self) -> bool:
        return bool(self.claimed_by) or self.completed

    def overlay(self, other: "ClaimState") -> "ClaimState":
        """Return a copy where every non-empty field of ``other`` wins."""
        return replace(
            self,
            claimed_by=other.claimed_by or self.claimed_by,
            claim_time=other.claim_time if cell_text(other.claim_time) else self.claim_time,
            new_location=other.new_location or self.new_location,
            notes=other.notes or self.notes,
            claimed=other.claimed or self.claimed,
            arrival_time=other.arrival_time if cell_text(other.arrival_time) else self.arrival_time,
        )


PreviousStateMap = dict[str, ClaimState]


@dataclass(slots=True)
class WorkQueueItem:
    task_id: str
    location: str
    hours_remaining: float
    type: str = ""
    shift: str = ""
    origin: str = ""
    claim: ClaimState = field(default_factory=ClaimState)

    def to_row(self, columns: Sequence[str]) -> list[Cell]:
        values: dict[str, Cell] = {
            "ID": self.task_id,
            "LOCATION": self.location,
            "HOURS_REMAINING": self.hours_remaining,
            "TYPE": self.type,
            "SHIFT": self.shift,
            "ORIGIN": self.origin,
            "CLAIMED_BY": self.claim.claimed_by,
            "CLAIM_TIME": self.claim.claim_time,
            "NEW_LOCATION": self.claim.new_location,
            "NOTES": self.claim.notes,
            "CLAIMED": self.claim.derived_claimed,
            "ARRIVAL_TIME": self.claim.arrival_time,
        }
        return [values.get(column) for column in columns]
