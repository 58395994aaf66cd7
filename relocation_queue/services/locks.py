from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Protocol

import asyncpg  # type: ignore[import-untyped]

from relocation_queue.services.errors import TableStoreError

logger = logging.getLogger(__name__)


class DocumentLock(Protocol):
    async def try_acquire(self, timeout_seconds: float) -> bool: ...

    async def release(self) -> None: ...


class LocalDocumentLock:
    """Serializes runs inside one process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def try_acquire(self, timeout_seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=max(0.0, timeout_seconds))
        except asyncio.TimeoutError:
            return False
        return True

    async def release(self) -> None:
        if self._lock.locked():
            self._lock.release()


def advisory_lock_key(document_id: str) -> int:
    digest = hashlib.blake2b(document_id.encode("utf-8"), digest_size=8).digest()
    # pg advisory locks take a signed bigint.
    return int.from_bytes(digest, "big", signed=True)


class PostgresAdvisoryLock:
    """Session-level Postgres advisory lock scoped to one document.

    Works across processes and hosts that share the database.
    """

    def __init__(self, database_url: str, document_id: str, poll_interval_seconds: float = 0.5) -> None:
        self.database_url = database_url
        self.key = advisory_lock_key(document_id)
        self.poll_interval_seconds = max(0.05, poll_interval_seconds)
        self._conn: asyncpg.Connection | None = None

    async def try_acquire(self, timeout_seconds: float) -> bool:
        try:
            conn = await asyncpg.connect(self.database_url, timeout=max(1.0, timeout_seconds))
        except (OSError, asyncpg.PostgresError) as exc:
            raise TableStoreError(f"lock database unavailable: {exc}") from exc

        deadline = time.monotonic() + max(0.0, timeout_seconds)
        try:
            while True:
                if await conn.fetchval("select pg_try_advisory_lock($1::bigint)", self.key):
                    self._conn = conn
                    return True
                if time.monotonic() >= deadline:
                    break
                await asyncio.sleep(self.poll_interval_seconds)
        except BaseException:
            await conn.close()
            raise

        await conn.close()
        logger.info("advisory lock key=%s still held after %.1fs", self.key, timeout_seconds)
        return False

    async def release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.execute("select pg_advisory_unlock($1::bigint)", self.key)
        finally:
            await conn.close()
