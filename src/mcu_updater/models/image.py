"""Firmware image data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CoreId(str, Enum):
    """Target core of a firmware image.

    Image index 0 is the application core, 1 the network core.
    """

    APP = "app"
    NET = "net"
    UNKNOWN = "unknown"

    @classmethod
    def from_image_index(cls, index: int) -> "CoreId":
        if index == 0:
            return cls.APP
        if index == 1:
            return cls.NET
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        """Short display label, empty for unknown cores."""
        if self is CoreId.APP:
            return "(app core)"
        if self is CoreId.NET:
            return "(net core)"
        return ""


class FirmwareImage(BaseModel):
    """One firmware image destined for one core.

    Immutable. ``digest`` is unset on candidates returned by the extractor
    and populated by the validator.
    """

    model_config = ConfigDict(frozen=True)

    core: CoreId = Field(..., description="Target core, read from archive metadata")
    image: int = Field(0, ge=0, description="Device image number")
    content: bytes = Field(..., description="Raw image bytes")
    digest: Optional[bytes] = Field(None, description="Image hash (SHA-256)")
    name: str = Field("", description="Member name inside the archive")

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def digest_hex(self) -> Optional[str]:
        return self.digest.hex() if self.digest is not None else None

    def __repr__(self) -> str:
        return (
            f"FirmwareImage(core={self.core.value}, image={self.image}, "
            f"size={self.size}, digest={self.digest_hex})"
        )


class ImageInfo(BaseModel):
    """Parsed MCUboot image header and hash TLV."""

    model_config = ConfigDict(frozen=True)

    load_address: int = Field(..., ge=0)
    header_size: int = Field(..., ge=32)
    protected_tlv_size: int = Field(..., ge=0)
    image_size: int = Field(..., ge=0)
    flags: int = Field(0, ge=0)
    version: str = Field(..., description="major.minor.revision+build")
    hash: bytes = Field(..., min_length=32, max_length=32)


class ValidatedImage(BaseModel):
    """A validated image plus human-readable display metadata."""

    model_config = ConfigDict(frozen=True)

    image: FirmwareImage
    info: ImageInfo
    size_text: str = Field(..., description="e.g. '1000 bytes (app core)'")
    hash_text: str = Field(..., description="First 3 digest bytes, upper-hex")
