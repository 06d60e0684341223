"""In-memory upgrade status for the control API."""

from datetime import datetime
from typing import Optional, Sequence
import logging

from mcu_updater.api.models import FirmwareInfo, ImageDisplay, ProgressData
from mcu_updater.models.image import ValidatedImage
from mcu_updater.models.status import UpgradeState
from mcu_updater.services.events import UpgradeObserver
from mcu_updater.services.progress import ProgressReporter

STATUS_TEXT = {
    UpgradeState.VALIDATE: "VALIDATING...",
    UpgradeState.UPLOAD: "UPLOADING...",
    UpgradeState.TEST: "TESTING...",
    UpgradeState.CONFIRM: "CONFIRMING...",
    UpgradeState.RESET: "RESETTING...",
    UpgradeState.SUCCESS: "UPLOAD COMPLETE",
}
READY_TEXT = "READY"
IDLE_TEXT = "Updater ready"


class StatusTracker(UpgradeObserver):
    """Tracks the latest upgrade status for GET /progress.

    Holds:
    - Current stage, per-image progress, message and error
    - Display metadata of the loaded firmware file
    """

    def __init__(self):
        """Initialize status tracker."""
        self.logger = logging.getLogger("mcu_updater.status")
        self.progress = ProgressReporter()
        self._firmware: Optional[FirmwareInfo] = None
        self._current_stage = UpgradeState.IDLE
        self._current_message = IDLE_TEXT
        self._current_error: Optional[str] = None
        self._paused = False

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        if self._current_stage is UpgradeState.SUCCESS:
            progress = 100
        else:
            progress = self.progress.percent
        return ProgressData(
            stage=self._current_stage,
            progress=progress,
            message=self._current_message,
            error=self._current_error,
            paused=self._paused,
            firmware=self._firmware,
        )

    def update_status(
        self,
        stage: UpgradeState,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status.

        Args:
            stage: Current upgrade state
            message: Human-readable description
            error: Error message if stage == failed
        """
        self._current_stage = stage
        self._current_message = message
        self._current_error = error
        self.logger.debug(f"Status updated: stage={stage.value}, message={message}")

    def set_firmware(self, name: str, validated: Sequence[ValidatedImage]) -> None:
        """Record the loaded firmware and show it as ready."""
        self._firmware = FirmwareInfo(
            name=name,
            images=[
                ImageDisplay(
                    core=v.image.core,
                    image=v.image.image,
                    size=v.size_text,
                    hash=v.hash_text,
                )
                for v in validated
            ],
        )
        self.progress.reset()
        self.update_status(UpgradeState.IDLE, READY_TEXT)

    def clear_firmware(self, message: str = IDLE_TEXT, error: Optional[str] = None) -> None:
        self._firmware = None
        self.progress.reset()
        self.update_status(UpgradeState.IDLE, message, error)

    def set_paused(self, paused: bool) -> None:
        self._paused = paused
        if paused:
            self._current_message = "PAUSED"
        else:
            self._current_message = STATUS_TEXT.get(self._current_stage, self._current_message)

    # Observer events

    def on_start(self) -> None:
        self.progress.on_start()
        self._paused = False
        self.update_status(UpgradeState.IDLE, "STARTING...")

    def on_state_change(self, previous: UpgradeState, new: UpgradeState) -> None:
        self.update_status(new, STATUS_TEXT.get(new, ""))

    def on_progress(self, bytes_sent: int, image_size: int, timestamp: datetime) -> None:
        self.progress.on_progress(bytes_sent, image_size, timestamp)

    def on_complete(self) -> None:
        self.progress.on_complete()
        self._paused = False
        self._firmware = None
        self.update_status(UpgradeState.SUCCESS, STATUS_TEXT[UpgradeState.SUCCESS])

    def on_fail(self, state: UpgradeState, error: Exception) -> None:
        self.progress.on_fail(state, error)
        self._paused = False
        self.update_status(UpgradeState.FAILED, f"Failed during {state.value}", error=str(error))

    def on_cancel(self, state: UpgradeState) -> None:
        self.progress.on_cancel(state)
        self._paused = False
        self.update_status(UpgradeState.CANCELLED, "CANCELLED")
