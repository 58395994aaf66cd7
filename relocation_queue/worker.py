from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time

from opentelemetry import trace

from relocation_queue.core.config import get_settings
from relocation_queue.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from relocation_queue.services.errors import QueueBusyError
from relocation_queue.services.queue_service import QueueService, build_queue_service

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class Schedule:
    reconcile_interval_seconds: float
    lease_release_interval_seconds: float
    last_reconcile_at: float | None = None
    last_release_at: float | None = None


async def run_due_jobs(service: QueueService, schedule: Schedule, now: float) -> dict[str, int | None]:
    """Run whichever of reconcile and lease release is due.

    A busy document counts as attempted; the next interval retries it.
    """
    results: dict[str, int | None] = {}
    if schedule.last_reconcile_at is None or now - schedule.last_reconcile_at >= schedule.reconcile_interval_seconds:
        schedule.last_reconcile_at = now
        try:
            results["reconcile"] = await service.reconcile()
        except QueueBusyError:
            logger.info("reconcile skipped: document busy")
            results["reconcile"] = None

    if schedule.last_release_at is None or now - schedule.last_release_at >= schedule.lease_release_interval_seconds:
        schedule.last_release_at = now
        try:
            results["release_stale_leases"] = await service.release_stale_leases()
        except QueueBusyError:
            logger.info("lease release skipped: document busy")
            results["release_stale_leases"] = None
    return results


async def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    telemetry_runtime = setup_telemetry(settings)
    service = build_queue_service(settings)
    schedule = Schedule(
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
        lease_release_interval_seconds=settings.lease_release_interval_seconds,
    )

    backoff = settings.worker_tick_seconds
    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.tick"):
                    results = await run_due_jobs(service, schedule, time.monotonic())
                if results:
                    logger.info("worker cycle results=%s", results)
                backoff = settings.worker_tick_seconds
                await asyncio.sleep(settings.worker_tick_seconds)
            except Exception as exc:  # pragma: no cover - scheduling robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
