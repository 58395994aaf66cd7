from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ClaimStateOut(BaseModel):
    claimed_by: str = ""
    claim_time: Any = None
    new_location: str = ""
    notes: str = ""
    claimed: bool = False
    arrival_time: Any = None


class QueueItemOut(BaseModel):
    id: str
    location: str
    hours_remaining: float
    type: str = ""
    shift: str = ""
    origin: str = ""
    claim: ClaimStateOut = Field(default_factory=ClaimStateOut)


class ReconcileOut(BaseModel):
    tasks_written: int
    ran_at: datetime


class ReleaseOut(BaseModel):
    released: int
    ran_at: datetime


class ClaimRequest(BaseModel):
    operator: str = Field(min_length=1, max_length=120)


class CompleteRequest(BaseModel):
    new_location: str = Field(min_length=1, max_length=120)
    notes: str | None = Field(default=None, max_length=2000)


class ManualRecordIn(BaseModel):
    id: str = Field(min_length=1, max_length=120)
    location: str = Field(min_length=1, max_length=120)
    notes: str | None = Field(default=None, max_length=2000)


class ManualRecordOut(BaseModel):
    id: str
    location: str
    manual_record_id: str


class RepairOut(BaseModel):
    added_columns: list[str]
