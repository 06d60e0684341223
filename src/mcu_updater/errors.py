"""Error taxonomy for firmware preparation and upgrade runs.

Input errors are raised synchronously before any device I/O.
Run errors end an active run through the observer's on_fail event.
Cancellation is not an error and has no exception here.
"""

from typing import Optional


class UpgradeError(Exception):
    """Base class for all updater errors.

    Rendered as ``"CODE: detail"`` so logs and API responses carry a
    machine-readable prefix.
    """

    code = "UPGRADE_ERROR"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


# Input errors


class InputError(UpgradeError, ValueError):
    """Invalid input detected before any device I/O. Never retried."""

    code = "INVALID_INPUT"


class ArchiveFormatError(InputError):
    code = "ARCHIVE_FORMAT"


class EmptyArchiveError(InputError):
    code = "EMPTY_ARCHIVE"

    def __init__(self, detail: str = "archive contains no firmware images"):
        super().__init__(detail)


class InvalidImageError(InputError):
    """An image in the candidate set failed header validation."""

    code = "INVALID_IMAGE"

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"image {index}: {reason}")


# Start errors


class StartError(UpgradeError):
    code = "START_FAILED"


class AlreadyRunningError(StartError):
    code = "ALREADY_RUNNING"

    def __init__(self, state: Optional[str] = None):
        self.state = state
        super().__init__(
            f"upgrade already in progress: {state}" if state else "upgrade already in progress"
        )


class EmptyImageSetError(StartError, InputError):
    code = "EMPTY_IMAGE_SET"

    def __init__(self, detail: str = "no images to upload"):
        super().__init__(detail)


# Run errors


class RunError(UpgradeError):
    """Failure during an active run, surfaced through on_fail."""

    code = "RUN_FAILED"


class TransportError(RunError):
    code = "TRANSPORT_ERROR"


class DeviceRejectedError(RunError):
    code = "DEVICE_REJECTED"

    def __init__(self, detail: str, rc: Optional[int] = None):
        self.rc = rc
        if rc is not None:
            detail = f"{detail} (rc={rc})"
        super().__init__(detail)


class UpgradeTimeoutError(RunError, TimeoutError):
    code = "TIMEOUT"
