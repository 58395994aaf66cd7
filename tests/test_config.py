from datetime import timedelta

import pytest
from pydantic import ValidationError

from relocation_queue.core.config import DEFAULT_LOCATION_EXCEPTIONS, QUEUE_COLUMNS, QueueConfig, Settings


def test_settings_read_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("RQ_CLAIM_TTL_MINUTES", "45")
    monkeypatch.setenv("RQ_LOCATION_EXCEPTIONS", '{" dock-a ": "Dock A"}')
    monkeypatch.setenv("RQ_REQUIRED_SOURCE_COLUMNS", '["id", "location", "due_datetime"]')

    config = Settings().queue_config()

    assert config.claim_ttl == timedelta(minutes=45)
    assert config.location_exceptions == {"DOCK-A": "Dock A"}
    assert config.required_source_columns == ("ID", "LOCATION", "DUE_DATETIME")
    assert config.queue_columns == QUEUE_COLUMNS


def test_settings_reject_queue_columns_missing_fields() -> None:
    with pytest.raises(ValidationError):
        Settings(queue_columns=["ID", "LOCATION"])


def test_settings_reject_invalid_location_pattern() -> None:
    with pytest.raises(ValidationError):
        Settings(location_pattern="LINE-(")


def test_queue_config_pattern_is_case_insensitive() -> None:
    config = Settings().queue_config()
    assert config.location_regex.fullmatch("line-12")
    assert not config.location_regex.fullmatch("LINE-12-B")


def test_location_exceptions_default_is_shared() -> None:
    assert QueueConfig().location_exceptions == DEFAULT_LOCATION_EXCEPTIONS
    assert Settings().queue_config().location_exceptions == DEFAULT_LOCATION_EXCEPTIONS
