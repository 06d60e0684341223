"""Pydantic models for HTTP API requests and responses."""

from typing import Optional
from pydantic import BaseModel, Field

from mcu_updater.models.image import CoreId
from mcu_updater.models.status import UpgradeMode, UpgradeState


class LoadFirmwareRequest(BaseModel):
    """POST /api/v1.0/firmware payload.

    Loads and validates a firmware archive from local storage.

    Example:
        {
            "path": "/var/lib/mcu-updater/dfu_application.zip"
        }
    """

    path: str = Field(
        ...,
        min_length=1,
        description="Path to a .zip archive or a bare MCUboot image",
        examples=["/tmp/dfu_application.zip", "/tmp/app_update.bin"],
    )


class UpgradeRequest(BaseModel):
    """POST /api/v1.0/upgrade payload.

    Example:
        {
            "mode": "testAndConfirm"
        }
    """

    mode: UpgradeMode = Field(
        UpgradeMode.TEST_AND_CONFIRM,
        description="Upgrade mode",
        examples=["testAndConfirm", "testOnly", "confirmOnly"],
    )


class ImageDisplay(BaseModel):
    """Display metadata for one loaded image."""

    core: CoreId = Field(..., description="Target core")
    image: int = Field(..., ge=0, description="Device image number")
    size: str = Field(..., description="Size text, e.g. '1000 bytes (app core)'")
    hash: str = Field(..., description="Digest prefix, e.g. 'A1B2C3 (app core)'")


class FirmwareInfo(BaseModel):
    """Loaded firmware file and its images."""

    name: str = Field(..., description="File name")
    images: list[ImageDisplay] = Field(default_factory=list)


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: UpgradeState = Field(..., description="Current upgrade state")
    progress: int = Field(..., ge=0, le=100, description="Current image completion (0-100)")
    message: str = Field(..., description="Human-readable status, e.g. 'UPLOADING...'")
    error: Optional[str] = Field(None, description="Error code and message if stage == failed")
    paused: bool = Field(False, description="Upload paused")
    firmware: Optional[FirmwareInfo] = Field(None, description="Loaded firmware, if any")


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response.

    Returns current status with application-level status code.
    """

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ReportPayload(BaseModel):
    """Payload for POST to {callback_url}/api/v1.0/ota/report.

    Sent on state transitions and every 5% of image upload progress.
    """

    stage: UpgradeState = Field(..., description="Current upgrade state")
    progress: int = Field(..., ge=0, le=100, description="Current image completion")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(None, description="Error code and message if stage == failed")
