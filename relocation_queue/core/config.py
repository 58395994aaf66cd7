from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

QUEUE_COLUMNS = (
    "ID",
    "LOCATION",
    "HOURS_REMAINING",
    "TYPE",
    "SHIFT",
    "ORIGIN",
    "CLAIMED_BY",
    "CLAIM_TIME",
    "NEW_LOCATION",
    "NOTES",
    "CLAIMED",
    "ARRIVAL_TIME",
)
MANUAL_COLUMNS = (
    "ID",
    "LOCATION",
    "CLAIMED_BY",
    "NEW_LOCATION",
    "ARRIVAL_TIME",
    "NOTES",
    "CLAIM_TIME",
    "CLAIMED",
    "FIRST_SEEN_AT",
    "MANUAL_RECORD_ID",
)
SOURCE_COLUMNS = ("ID", "LOCATION", "DUE_DATETIME", "TYPE", "SHIFT")
REQUIRED_SOURCE_COLUMNS = ("ID", "LOCATION")
DEFAULT_LOCATION_EXCEPTIONS = {"REWORK": "Rework", "QA-HOLD": "QA Hold"}


@dataclass(frozen=True, slots=True)
class QueueConfig:
    """Immutable view of the settings the reconciliation components need."""

    source_table: str = "SOURCE"
    queue_table: str = "QUEUE"
    manual_table: str = "MANUAL"
    location_pattern: str = r"LINE[-\s]?\d+"
    location_exceptions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LOCATION_EXCEPTIONS))
    claim_ttl_minutes: float = 30.0
    manual_ttl_minutes: float = 60.0
    timezone: str = "UTC"
    required_source_columns: tuple[str, ...] = REQUIRED_SOURCE_COLUMNS
    source_columns: tuple[str, ...] = SOURCE_COLUMNS
    queue_columns: tuple[str, ...] = QUEUE_COLUMNS
    manual_columns: tuple[str, ...] = MANUAL_COLUMNS

    @property
    def location_regex(self) -> re.Pattern[str]:
        return re.compile(self.location_pattern, re.IGNORECASE)

    @property
    def claim_ttl(self) -> timedelta:
        return timedelta(minutes=self.claim_ttl_minutes)

    @property
    def manual_ttl(self) -> timedelta:
        return timedelta(minutes=self.manual_ttl_minutes)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class Settings(BaseSettings):
    app_name: str = "relocation-queue"
    environment: str = "dev"

    source_table: str = "SOURCE"
    queue_table: str = "QUEUE"
    manual_table: str = "MANUAL"
    location_pattern: str = r"LINE[-\s]?\d+"
    location_exceptions: dict[str, str] = dict(DEFAULT_LOCATION_EXCEPTIONS)
    claim_ttl_minutes: float = 30.0
    manual_ttl_minutes: float = 60.0
    timezone: str = "UTC"
    required_source_columns: list[str] = list(REQUIRED_SOURCE_COLUMNS)
    source_columns: list[str] = list(SOURCE_COLUMNS)
    queue_columns: list[str] = list(QUEUE_COLUMNS)
    manual_columns: list[str] = list(MANUAL_COLUMNS)

    storage_backend: Literal["memory", "sheets"] = "memory"
    spreadsheet_id: str | None = None
    sheets_api_base_url: str = "https://sheets.googleapis.com"
    sheets_access_token: str | None = None
    sheets_timeout_seconds: float = 10.0

    lock_backend: Literal["local", "postgres"] = "local"
    lock_database_url: str | None = None
    lock_timeout_seconds: float = 30.0
    lock_poll_interval_seconds: float = 0.5

    notify_webhook_url: str | None = None
    notify_timeout_seconds: float = 5.0

    reconcile_interval_seconds: float = 300.0
    lease_release_interval_seconds: float = 60.0
    worker_tick_seconds: float = 5.0
    max_backoff_seconds: float = 120.0

    otel_enabled: bool = True
    otel_service_name: str = "relocation-queue"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RQ_", extra="ignore")

    @field_validator("required_source_columns", "source_columns", "queue_columns", "manual_columns")
    @classmethod
    def _normalize_columns(cls, value: list[str]) -> list[str]:
        return [column.strip().upper() for column in value if column.strip()]

    @field_validator("location_exceptions")
    @classmethod
    def _normalize_exceptions(cls, value: dict[str, str]) -> dict[str, str]:
        return {key.strip().upper(): label for key, label in value.items() if key.strip()}

    @field_validator("queue_columns")
    @classmethod
    def _require_queue_columns(cls, value: list[str]) -> list[str]:
        missing = [column for column in QUEUE_COLUMNS if column not in value]
        if missing:
            raise ValueError(f"queue_columns is missing {', '.join(missing)}")
        return value

    @field_validator("location_pattern")
    @classmethod
    def _compile_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid location_pattern: {exc}") from exc
        return value

    def queue_config(self) -> QueueConfig:
        return QueueConfig(
            source_table=self.source_table,
            queue_table=self.queue_table,
            manual_table=self.manual_table,
            location_pattern=self.location_pattern,
            location_exceptions=dict(self.location_exceptions),
            claim_ttl_minutes=self.claim_ttl_minutes,
            manual_ttl_minutes=self.manual_ttl_minutes,
            timezone=self.timezone,
            required_source_columns=tuple(self.required_source_columns),
            source_columns=tuple(self.source_columns),
            queue_columns=tuple(self.queue_columns),
            manual_columns=tuple(self.manual_columns),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
