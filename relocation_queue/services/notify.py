from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)

NotifyLevel = Literal["info", "warning", "error"]

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class Notifier(Protocol):
    async def notify(self, level: NotifyLevel, message: str) -> None: ...


class LogNotifier:
    async def notify(self, level: NotifyLevel, message: str) -> None:
        logger.log(_LOG_LEVELS[level], "notification: %s", message)


class WebhookNotifier:
    """Posts notifications as JSON to a chat or alerting webhook.

    Delivery failures are logged and never raised; an undeliverable notice must
    not fail the run it reports on.
    """

    def __init__(self, url: str, *, source: str = "relocation-queue", timeout_seconds: float = 5.0) -> None:
        self.url = url
        self.source = source
        self.timeout_seconds = timeout_seconds

    async def notify(self, level: NotifyLevel, message: str) -> None:
        logger.log(_LOG_LEVELS[level], "notification: %s", message)
        payload = {"source": self.source, "level": level, "text": message}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("notification webhook failed: %s", exc)
