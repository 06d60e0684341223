"""Device command and response models exchanged with a transport.

These describe what the orchestrator asks of the device, not how the
request is framed on the wire; encoding belongs to the transport.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DeviceOperation(str, Enum):
    """Operations the orchestrator issues to the device."""

    LIST = "list"
    UPLOAD = "upload"
    TEST = "test"
    CONFIRM = "confirm"
    RESET = "reset"
    ERASE_SETTINGS = "eraseSettings"


class DeviceCommand(BaseModel):
    """One request to the device."""

    model_config = ConfigDict(frozen=True)

    op: DeviceOperation = Field(..., description="Requested operation")
    image: int = Field(0, ge=0, description="Device image number")
    offset: Optional[int] = Field(None, ge=0, description="Upload offset of this chunk")
    length: Optional[int] = Field(
        None, gt=0, description="Total image length (first upload chunk only)"
    )
    digest: Optional[str] = Field(
        None,
        pattern=r"^[a-f0-9]{64}$",
        description="Image SHA-256 as lowercase hex",
    )
    data: Optional[bytes] = Field(None, description="Chunk payload")

    def __repr__(self) -> str:
        size = len(self.data) if self.data is not None else 0
        return (
            f"DeviceCommand(op={self.op.value}, image={self.image}, "
            f"offset={self.offset}, data={size} bytes)"
        )


class SlotInfo(BaseModel):
    """State of one image slot as reported by the device."""

    image: int = Field(0, ge=0)
    slot: int = Field(..., ge=0)
    version: Optional[str] = None
    hash: str = Field(..., pattern=r"^[a-fA-F0-9]+$", description="Slot image hash (hex)")
    bootable: bool = False
    pending: bool = False
    confirmed: bool = False
    active: bool = False
    permanent: bool = False


class DeviceResponse(BaseModel):
    """Device reply to a DeviceCommand.

    ``rc`` follows the device convention: 0 means success.
    """

    rc: int = Field(0, description="Device return code (0 = OK)")
    offset: Optional[int] = Field(
        None, ge=0, description="Next expected upload offset, for upload replies"
    )
    images: list[SlotInfo] = Field(default_factory=list, description="Slot list, for list replies")
    message: Optional[str] = Field(None, description="Optional device-side detail")

    @property
    def ok(self) -> bool:
        return self.rc == 0
