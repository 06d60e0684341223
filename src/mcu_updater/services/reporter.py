"""Upgrade event reporting to a remote callback endpoint."""

import asyncio
from datetime import datetime
import logging
from typing import Optional

import httpx

from mcu_updater.api.models import ReportPayload
from mcu_updater.models.status import UpgradeState
from mcu_updater.services.events import UpgradeObserver
from mcu_updater.services.progress import progress_ratio
from mcu_updater.services.status import STATUS_TEXT


class ReportService(UpgradeObserver):
    """Posts upgrade state and progress to a callback service.

    Events are queued and sent in order by a single worker task so the
    upgrade never waits on the network.
    """

    def __init__(self, callback_url: str = "http://localhost:9080", step: int = 5):
        """Initialize report service.

        Args:
            callback_url: Base URL of the receiving service
            step: Progress percentage step between reports
        """
        self.logger = logging.getLogger("mcu_updater.reporter")
        self.callback_url = callback_url
        self.report_endpoint = f"{callback_url}/api/v1.0/ota/report"
        self.step = step
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._last_progress = -1

    async def report_progress(
        self,
        stage: UpgradeState,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Send one report.

        Args:
            stage: Current upgrade state
            progress: Current image completion (0-100)
            message: Human-readable status description
            error: Error message if stage == failed

        Note:
            Failures are logged but not raised to avoid blocking the upgrade
        """
        payload = ReportPayload(stage=stage, progress=progress, message=message, error=error)

        self.logger.debug(f"Reporting: stage={stage.value}, progress={progress}%")

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(
                    self.report_endpoint,
                    json=payload.model_dump(mode="json"),
                )
                response.raise_for_status()
                self.logger.debug("Report sent successfully")

        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to report progress: {e}. Continuing upgrade...")
        except Exception as e:
            self.logger.error(f"Unexpected error reporting progress: {e}", exc_info=True)

    def _enqueue(
        self,
        stage: UpgradeState,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())
        self._queue.put_nowait((stage, progress, message, error))

    async def _drain(self) -> None:
        while True:
            stage, progress, message, error = await self._queue.get()
            try:
                await self.report_progress(stage, progress, message, error)
            finally:
                self._queue.task_done()

    async def aclose(self) -> None:
        """Wait for queued reports, then stop the worker."""
        if self._queue is not None:
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

    # Observer events

    def on_state_change(self, previous: UpgradeState, new: UpgradeState) -> None:
        if new.is_terminal:
            # Terminal events carry the details
            return
        self._last_progress = -1
        self._enqueue(new, 0, STATUS_TEXT.get(new, new.value))

    def on_progress(self, bytes_sent: int, image_size: int, timestamp: datetime) -> None:
        progress = int(progress_ratio(bytes_sent, image_size) * 100)
        if bytes_sent == 0:
            self._last_progress = -1
        if progress >= self._last_progress + self.step or (
            progress == 100 and self._last_progress != 100
        ):
            self._last_progress = progress
            self._enqueue(UpgradeState.UPLOAD, progress, f"Uploading {bytes_sent}/{image_size} bytes")

    def on_complete(self) -> None:
        self._enqueue(UpgradeState.SUCCESS, 100, STATUS_TEXT[UpgradeState.SUCCESS])

    def on_fail(self, state: UpgradeState, error: Exception) -> None:
        self._enqueue(UpgradeState.FAILED, 0, f"Failed during {state.value}", str(error))

    def on_cancel(self, state: UpgradeState) -> None:
        self._enqueue(UpgradeState.CANCELLED, 0, f"Cancelled during {state.value}")
