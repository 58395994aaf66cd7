#!/usr/bin/env python3
"""Run one queue operation from a shell or a cron entry."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from relocation_queue.core.config import get_settings
from relocation_queue.core.telemetry import configure_logging
from relocation_queue.services.errors import QueueBusyError, QueueSyncError
from relocation_queue.services.queue_service import QueueService, build_queue_service

EXIT_FAILED = 1
EXIT_BUSY = 2


async def _run(service: QueueService, command: str) -> str:
    if command == "reconcile":
        return f"{await service.reconcile()} tasks written"
    if command == "release-leases":
        return f"{await service.release_stale_leases()} stale claims released"
    added = await service.repair_manual_table()
    return f"added columns: {', '.join(added)}" if added else "manual table already complete"


def main(argv: Sequence[str] | None = None, service: QueueService | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a relocation queue operation once.")
    parser.add_argument(
        "command",
        choices=["reconcile", "release-leases", "repair-manual"],
        help="Operation to run under the document lock",
    )
    args = parser.parse_args(argv)

    configure_logging(get_settings().log_level)
    service = service or build_queue_service(get_settings())
    try:
        print(asyncio.run(_run(service, args.command)))
    except QueueBusyError as exc:
        print(f"busy: {exc}", file=sys.stderr)
        return EXIT_BUSY
    except QueueSyncError as exc:
        print(f"failed: {exc}", file=sys.stderr)
        return EXIT_FAILED
    return 0


if __name__ == "__main__":
    sys.exit(main())
