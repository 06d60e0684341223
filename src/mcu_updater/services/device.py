"""Single device requests and standalone device management."""

import asyncio
import logging
from typing import Optional

from mcu_updater.errors import DeviceRejectedError, TransportError, UpgradeError, UpgradeTimeoutError
from mcu_updater.models.commands import DeviceCommand, DeviceOperation, DeviceResponse, SlotInfo
from mcu_updater.services.transport import Transport
from mcu_updater.utils.logging import TrafficDirection, TrafficLogSink

logger = logging.getLogger("mcu_updater.device")


def _log_traffic(
    sink: Optional[TrafficLogSink],
    direction: TrafficDirection,
    command: DeviceCommand,
    response: Optional[DeviceResponse] = None,
) -> None:
    if sink is None:
        return
    try:
        sink.log_traffic(direction, command, response)
    except Exception as e:
        logger.warning(f"Traffic log sink failed: {e}")


async def send_command(
    transport: Transport,
    command: DeviceCommand,
    timeout: float,
    log_sink: Optional[TrafficLogSink] = None,
) -> DeviceResponse:
    """Send one command and check the device reply.

    Args:
        transport: Transport to the device
        command: Command to send
        timeout: Seconds to wait for the reply
        log_sink: Optional traffic sink

    Returns:
        Successful DeviceResponse

    Raises:
        TransportError: If the transport failed
        UpgradeTimeoutError: If no reply arrived within ``timeout``
        DeviceRejectedError: If the device replied with a non-zero rc
    """
    _log_traffic(log_sink, TrafficDirection.OUTGOING, command)
    try:
        response = await asyncio.wait_for(transport.send(command), timeout=timeout)
    except UpgradeError:
        raise
    except asyncio.TimeoutError as e:
        raise UpgradeTimeoutError(
            f"no reply to {command.op.value} within {timeout:.1f}s"
        ) from e
    except OSError as e:
        raise TransportError(f"{command.op.value} failed: {e}") from e
    _log_traffic(log_sink, TrafficDirection.INCOMING, command, response)

    if not response.ok:
        detail = f"{command.op.value} rejected"
        if response.message:
            detail += f": {response.message}"
        raise DeviceRejectedError(detail, rc=response.rc)
    return response


class DeviceManager:
    """Device operations outside an upgrade run (image list, reset).

    Must not be used while an upgrade manager owns the same transport.
    """

    def __init__(
        self,
        transport: Transport,
        response_timeout: float = 30.0,
        log_sink: Optional[TrafficLogSink] = None,
    ):
        self.logger = logging.getLogger("mcu_updater.device")
        self.transport = transport
        self.response_timeout = response_timeout
        self.log_sink = log_sink

    async def list_images(self) -> list[SlotInfo]:
        """Read the image slots currently on the device."""
        response = await send_command(
            self.transport,
            DeviceCommand(op=DeviceOperation.LIST),
            self.response_timeout,
            self.log_sink,
        )
        return response.images

    async def reset(self) -> None:
        """Ask the device to reboot."""
        self.logger.info("Sending reset command")
        await send_command(
            self.transport,
            DeviceCommand(op=DeviceOperation.RESET),
            self.response_timeout,
            self.log_sink,
        )
        self.logger.info("Device reset requested")
