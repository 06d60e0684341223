"""Per-image upload progress tracking."""

from datetime import datetime
from typing import Callable, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field

from mcu_updater.services.events import UpgradeObserver


class ProgressSample(BaseModel):
    """Most recent byte-count callback of an image upload."""

    model_config = ConfigDict(frozen=True)

    bytes_sent: int = Field(..., ge=0)
    image_size: int = Field(..., gt=0)
    timestamp: datetime = Field(default_factory=datetime.now)


def progress_ratio(bytes_sent: int, image_size: int) -> float:
    """Normalized completion of one image, clamped to [0.0, 1.0].

    Args:
        bytes_sent: Bytes acknowledged by the device for this image
        image_size: Total size of the image (> 0)
    """
    if image_size <= 0:
        raise ValueError(f"image_size must be positive, got {image_size}")
    return min(max(bytes_sent / image_size, 0.0), 1.0)


class ProgressReporter(UpgradeObserver):
    """Derives a per-image completion ratio from progress events.

    Progress restarts at 0 for each image; it is never a cumulative
    fraction of the whole run.
    """

    def __init__(self, callback: Optional[Callable[[float], None]] = None, step: int = 5):
        """Initialize progress reporter.

        Args:
            callback: Called with the new ratio on every progress event
            step: Percentage step between debug log lines
        """
        self.logger = logging.getLogger("mcu_updater.progress")
        self.callback = callback
        self.step = step
        self.sample: Optional[ProgressSample] = None
        self._last_logged = -1

    @property
    def ratio(self) -> float:
        if self.sample is None:
            return 0.0
        return progress_ratio(self.sample.bytes_sent, self.sample.image_size)

    @property
    def percent(self) -> int:
        return int(self.ratio * 100)

    def reset(self) -> None:
        self.sample = None
        self._last_logged = -1

    def on_start(self) -> None:
        self.reset()

    def on_progress(self, bytes_sent: int, image_size: int, timestamp: datetime) -> None:
        if bytes_sent == 0:
            # Start of a new image
            self._last_logged = -1
        self.sample = ProgressSample(
            bytes_sent=bytes_sent, image_size=image_size, timestamp=timestamp
        )
        percent = self.percent
        if percent >= self._last_logged + self.step or percent == 100:
            if percent != self._last_logged:
                self._last_logged = percent
                self.logger.debug(
                    f"Upload progress: {percent}% ({bytes_sent}/{image_size} bytes)"
                )
        if self.callback is not None:
            self.callback(self.ratio)

    def on_complete(self) -> None:
        self.reset()

    def on_fail(self, state, error) -> None:
        self.reset()

    def on_cancel(self, state) -> None:
        self.reset()
