"""Per-application wiring of the upgrade manager and its observers."""

import logging
from typing import Optional

from mcu_updater.models.config import UpgradeConfiguration
from mcu_updater.models.image import ValidatedImage
from mcu_updater.services.device import DeviceManager
from mcu_updater.services.events import UpgradeObserver
from mcu_updater.services.extractor import ImageExtractor
from mcu_updater.services.orchestrator import UpgradeManagerBuilder
from mcu_updater.services.reporter import ReportService
from mcu_updater.services.status import StatusTracker
from mcu_updater.services.transport import Transport
from mcu_updater.utils.logging import LoggerTrafficSink


class UpdaterContext(UpgradeObserver):
    """Everything the API routes operate on, bound to one transport.

    Also observes the manager so a successfully installed firmware is
    released and must be loaded again for another run.
    """

    def __init__(
        self,
        transport: Transport,
        configuration: Optional[UpgradeConfiguration] = None,
        callback_url: Optional[str] = None,
    ):
        """Initialize updater context.

        Args:
            transport: Transport to the device
            configuration: Upgrade parameters (defaults if None)
            callback_url: Base URL for event reports (disabled if None)
        """
        self.logger = logging.getLogger("mcu_updater.context")
        self.transport = transport
        self.status = StatusTracker()
        self.extractor = ImageExtractor()
        self.reporter = ReportService(callback_url) if callback_url else None

        log_sink = LoggerTrafficSink()
        builder = (
            UpgradeManagerBuilder(configuration)
            .with_observer(self.status)
            .with_observer(self)
        )
        if self.reporter is not None:
            builder.with_observer(self.reporter)
        self.manager = builder.with_log_sink(log_sink).connect(transport)
        self.device = DeviceManager(
            transport,
            response_timeout=self.manager.configuration.response_timeout,
            log_sink=log_sink,
        )

        self.firmware_name: Optional[str] = None
        self.images: list[ValidatedImage] = []

    def load_firmware(self, name: str, validated: list[ValidatedImage]) -> None:
        self.firmware_name = name
        self.images = list(validated)
        self.status.set_firmware(name, validated)
        self.logger.info(f"Firmware loaded: {name} ({len(validated)} image(s))")

    def clear_firmware(self, message: str, error: Optional[str] = None) -> None:
        self.firmware_name = None
        self.images = []
        self.status.clear_firmware(message, error)

    def on_complete(self) -> None:
        self.firmware_name = None
        self.images = []

    async def aclose(self) -> None:
        if self.reporter is not None:
            await self.reporter.aclose()
        await self.transport.aclose()
