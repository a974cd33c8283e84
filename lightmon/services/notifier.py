from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from ..core.timeutil import now_utc

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts failure messages as JSON to each target URL.

    Targets that are not http(s) URLs are logged only. Delivery errors are
    logged and never raised.
    """

    def __init__(
        self,
        app_name: str = "Light Monitor",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._app_name = app_name
        self._timeout = timeout
        self._transport = transport

    async def notify(self, targets: Sequence[str], message: str) -> None:
        logger.warning("NOTIFY: %s", message)
        urls = [t for t in targets if t.startswith(("http://", "https://"))]
        if not urls:
            return
        payload = {
            "app": self._app_name,
            "message": message,
            "ts_utc": now_utc().isoformat(),
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for url in urls:
                try:
                    resp = await client.post(url, json=payload)
                    resp.raise_for_status()
                except Exception:
                    logger.warning("Notification to %s failed", url, exc_info=True)
