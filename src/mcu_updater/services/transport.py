"""Transport interface and an HTTP bridge implementation."""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from mcu_updater.errors import TransportError
from mcu_updater.models.commands import DeviceCommand, DeviceResponse


class Transport(ABC):
    """Byte-oriented channel to one device.

    Implementations own framing, byte-level retries and connection
    handling. The upgrade manager only sends commands and waits for the
    device to come back after a reset.
    """

    @abstractmethod
    async def send(self, command: DeviceCommand) -> DeviceResponse:
        """Send one command and return the device reply.

        Raises:
            TransportError: If the command could not be delivered or the
                reply could not be read
        """

    @abstractmethod
    async def wait_for_reconnect(self) -> None:
        """Return once the device is reachable again after a reset.

        Must not return before the device has actually gone down and come
        back; the caller applies its own timeout.
        """

    async def aclose(self) -> None:
        """Release transport resources."""


class HttpTransport(Transport):
    """Sends device commands as JSON to an HTTP bridge.

    Request body for POST {base_url}/api/v1.0/smp:
        {"op": "upload", "image": 0, "offset": 0, "length": 1000,
         "digest": "<hex>", "data": "<base64>"}
    """

    def __init__(
        self,
        base_url: str = "http://localhost:9080",
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize HTTP transport.

        Args:
            base_url: Base URL of the device bridge
            timeout: Per-request HTTP timeout in seconds
            poll_interval: Seconds between health polls while waiting for reconnect
            client: Preconfigured client (created lazily if None)
        """
        self.logger = logging.getLogger("mcu_updater.transport")
        self.base_url = base_url.rstrip("/")
        self.smp_endpoint = f"{self.base_url}/api/v1.0/smp"
        self.health_endpoint = f"{self.base_url}/api/v1.0/health"
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, command: DeviceCommand) -> DeviceResponse:
        payload = command.model_dump(mode="json", exclude={"data"}, exclude_none=True)
        if command.data is not None:
            payload["data"] = base64.b64encode(command.data).decode("ascii")

        try:
            response = await self._get_client().post(self.smp_endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(f"{command.op.value} request failed: {e}")
            raise TransportError(f"{command.op.value} request failed: {e}") from e

        try:
            return DeviceResponse.model_validate(response.json())
        except ValueError as e:
            raise TransportError(f"Malformed reply to {command.op.value}: {e}") from e

    async def wait_for_reconnect(self) -> None:
        # The device drops off the bridge while swapping; poll until it answers again
        await asyncio.sleep(self.poll_interval)
        while True:
            try:
                response = await self._get_client().get(self.health_endpoint)
                if response.status_code == 200:
                    self.logger.info("Device reachable again")
                    return
                self.logger.debug(f"Health check returned {response.status_code}")
            except httpx.HTTPError as e:
                self.logger.debug(f"Device not reachable yet: {e}")
            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
