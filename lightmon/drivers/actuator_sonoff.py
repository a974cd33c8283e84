from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..domain.models import CommandResult, SwitchState

logger = logging.getLogger(__name__)


class SonoffSwitch:
    """Sonoff relay in eWeLink DIY mode (LAN HTTP API).

    ``refresh`` asks the device for its switch state and caches it;
    ``current_state`` only returns that cache, so a state is trusted only
    after an explicit refresh.
    """

    def __init__(
        self,
        device_id: str,
        name: str,
        ip: str,
        port: int = 8081,
        sonoff_device_id: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.device_id = str(device_id)
        self.name = name
        self._base_url = f"http://{ip}:{port}"
        self._sonoff_id = sonoff_device_id or self.device_id
        self._timeout = timeout
        self._transport = transport
        self._reported: SwitchState = SwitchState.UNKNOWN

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _post(self, path: str, data: dict) -> dict:
        async with self._client() as client:
            resp = await client.post(
                f"{self._base_url}{path}",
                json={"deviceid": self._sonoff_id, "data": data},
            )
            resp.raise_for_status()
            body = resp.json()
        # DIY mode reports application errors in-band
        if body.get("error", 0) != 0:
            raise RuntimeError(f"Sonoff error code {body.get('error')}")
        return body

    async def set_state(self, state: SwitchState) -> CommandResult:
        switch_val = SwitchState.parse(state).value
        try:
            await self._post("/zeroconf/switch", {"switch": switch_val})
            logger.info("Sonoff %s set_state=%s", self.name, switch_val)
            return CommandResult.success()
        except Exception as e:
            logger.warning(
                "Sonoff %s set_state(%s) failed", self.name, switch_val, exc_info=True,
            )
            return CommandResult.failure(str(e) or type(e).__name__)

    async def refresh(self) -> CommandResult:
        try:
            body = await self._post("/zeroconf/info", {})
            self._reported = SwitchState.parse(body["data"]["switch"])
            logger.debug("Sonoff %s reports %s", self.name, self._reported.value)
            return CommandResult.success()
        except Exception as e:
            logger.warning(
                "Sonoff %s refresh failed, keeping last report %s",
                self.name, self._reported.value, exc_info=True,
            )
            return CommandResult.failure(str(e) or type(e).__name__)

    async def current_state(self) -> SwitchState:
        return self._reported
