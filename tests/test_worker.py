from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from relocation_queue import cli
from relocation_queue.services.errors import QueueBusyError, SourceTableMissingError
from relocation_queue.services.notify import WebhookNotifier
from relocation_queue.worker import Schedule, run_due_jobs


class FakeService:
    def __init__(self, busy: bool = False, fail: bool = False) -> None:
        self.busy = busy
        self.fail = fail
        self.calls: list[str] = []

    async def reconcile(self) -> int:
        self.calls.append("reconcile")
        if self.busy:
            raise QueueBusyError("locked")
        if self.fail:
            raise SourceTableMissingError("source table 'SOURCE' not found")
        return 4

    async def release_stale_leases(self) -> int:
        self.calls.append("release_stale_leases")
        if self.busy:
            raise QueueBusyError("locked")
        return 1

    async def repair_manual_table(self) -> list[str]:
        self.calls.append("repair_manual_table")
        return ["FIRST_SEEN_AT"]


def test_run_due_jobs_respects_intervals() -> None:
    service = FakeService()
    schedule = Schedule(reconcile_interval_seconds=300, lease_release_interval_seconds=60)

    first = asyncio.run(run_due_jobs(service, schedule, now=1000.0))
    second = asyncio.run(run_due_jobs(service, schedule, now=1030.0))
    third = asyncio.run(run_due_jobs(service, schedule, now=1061.0))

    assert first == {"reconcile": 4, "release_stale_leases": 1}
    assert second == {}
    assert third == {"release_stale_leases": 1}


def test_run_due_jobs_skips_busy_document() -> None:
    service = FakeService(busy=True)
    schedule = Schedule(reconcile_interval_seconds=300, lease_release_interval_seconds=60)

    results = asyncio.run(run_due_jobs(service, schedule, now=0.0))

    assert results == {"reconcile": None, "release_stale_leases": None}
    assert schedule.last_reconcile_at == 0.0


def test_cli_prints_count(capsys) -> None:
    assert cli.main(["reconcile"], service=FakeService()) == 0
    assert capsys.readouterr().out.strip() == "4 tasks written"

    assert cli.main(["repair-manual"], service=FakeService()) == 0
    assert "FIRST_SEEN_AT" in capsys.readouterr().out


def test_cli_exit_codes_for_busy_and_failure(capsys) -> None:
    assert cli.main(["release-leases"], service=FakeService(busy=True)) == cli.EXIT_BUSY
    assert cli.main(["reconcile"], service=FakeService(fail=True)) == cli.EXIT_FAILED
    assert "not found" in capsys.readouterr().err


def test_cli_rejects_unknown_command() -> None:
    with pytest.raises(SystemExit):
        cli.main(["explode"], service=FakeService())


def test_webhook_notifier_posts_json_and_swallows_delivery_errors(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    class FakeAsyncClient:
        async def __aenter__(self) -> "FakeAsyncClient":
            return self

        async def __aexit__(self, exc_type, exc, tb) -> None:
            return None

        async def post(self, url: str, json: dict[str, Any]) -> httpx.Response:
            captured["url"] = url
            captured["json"] = json
            request = httpx.Request("POST", url)
            return httpx.Response(status_code=500, request=request)

    def fake_async_client(*args: Any, **kwargs: Any) -> FakeAsyncClient:
        captured.update(kwargs)
        return FakeAsyncClient()

    monkeypatch.setattr(httpx, "AsyncClient", fake_async_client)
    notifier = WebhookNotifier("https://hooks.example.test/queue", timeout_seconds=2.0)

    asyncio.run(notifier.notify("warning", "Queue is busy"))

    assert captured["timeout"] == 2.0
    assert captured["url"] == "https://hooks.example.test/queue"
    assert captured["json"] == {"source": "relocation-queue", "level": "warning", "text": "Queue is busy"}
