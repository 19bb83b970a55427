"""HTTP device gateway for paging speaker endpoints."""

import asyncio
import math
from collections.abc import Sequence
from typing import Any

import httpx

from .config import (
    DEFAULT_GATEWAY_URL,
    GATEWAY_SETTINGS_PATH,
    GATEWAY_SPEAKER_GROUP_PATH,
    GATEWAY_TIMEOUT,
    GATEWAY_VOLUME_KEY,
    VOLUME_DB_PER_LEVEL,
    VOLUME_LEVELS,
)
from .exceptions import GatewayError
from .interfaces import DeviceGateway
from .logging_utils import get_logger
from .models import DeviceConnection

logger = get_logger(__name__)


def percent_to_level(percent: float) -> int:
    """Quantize a 0-100% volume to the device's 0-10 level scale (half rounds up)."""
    percent = min(max(percent, 0.0), 100.0)
    return math.floor(percent / 100 * VOLUME_LEVELS + 0.5)


def percent_to_db(percent: float) -> str:
    """
    Convert a volume percentage to the device's dB setting string.

    0% maps to -30dB and 100% to 0dB, 3 dB per level.

    Args:
        percent: Volume in percent (clamped to 0-100)

    Returns:
        Setting string such as "-12dB" or "0dB"
    """
    db = (percent_to_level(percent) - VOLUME_LEVELS) * VOLUME_DB_PER_LEVEL
    return f"{db}dB"


class HttpDeviceGateway(DeviceGateway):
    """
    Device gateway that talks to the speaker control bridge over HTTP.

    Each call posts JSON to the bridge. Per-device failures are logged and
    reported as False in the result mapping; nothing is raised to callers.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = GATEWAY_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            base_url: Base URL of the control bridge
            timeout: Per-request timeout in seconds
            client: Optional preconfigured client (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def set_volume(
        self, devices: Sequence[DeviceConnection], db: str
    ) -> dict[str, bool]:
        if not devices:
            return {}

        async def _one(device: DeviceConnection) -> tuple[str, bool]:
            payload = {**device.to_payload(), "settings": {GATEWAY_VOLUME_KEY: db}}
            try:
                await self._post(GATEWAY_SETTINGS_PATH, payload)
                return device.address, True
            except GatewayError as e:
                logger.error(f"Failed to set volume {db} for {device.address}: {e}")
                return device.address, False

        results = await asyncio.gather(*(_one(device) for device in devices))
        logger.trace(f"Volume {db} sent to {len(results)} device(s)")
        return dict(results)

    async def enable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        return await self._set_output(devices, True)

    async def disable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        return await self._set_output(devices, False)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _set_output(
        self, devices: Sequence[DeviceConnection], enable: bool
    ) -> dict[str, bool]:
        if not devices:
            return {}
        action = "enable" if enable else "disable"
        payload = {
            "speakers": [device.to_payload() for device in devices],
            "enable": enable,
        }
        try:
            await self._post(GATEWAY_SPEAKER_GROUP_PATH, payload)
            ok = True
            logger.debug(f"Speaker output {action}d on {len(devices)} device(s)")
        except GatewayError as e:
            logger.error(f"Failed to {action} speakers: {e}")
            ok = False
        return {device.address: ok for device in devices}

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Post JSON to the bridge and validate the reply.

        Raises:
            GatewayError: On transport errors, non-2xx replies or error payloads
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise GatewayError(f"Request to {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            message = body.get("error") or response.reason_phrase
            raise GatewayError(f"HTTP {response.status_code}: {message}")
        if body.get("error"):
            raise GatewayError(str(body["error"]))
        if body.get("success") is False:
            raise GatewayError("Bridge reported failure")
        return body
