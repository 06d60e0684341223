"""Manifest data models for multi-image firmware archives."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ManifestFile(BaseModel):
    """File entry in manifest.json.

    Represents a single firmware image inside the archive.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file: str = Field(
        ...,
        pattern=r"^[^/].*$",
        description="Relative path within ZIP (no leading /)",
    )
    image_index: int = Field(
        0, ge=0, description="Device image number (0 = app core, 1 = net core)"
    )
    type: Optional[str] = Field(None, description="Image type, e.g. 'application'")
    board: Optional[str] = Field(None, description="Target board name")
    size: Optional[int] = Field(None, ge=0, description="Declared image size in bytes")
    version: Optional[str] = Field(
        None, alias="version_MCUBOOT", description="MCUboot image version"
    )

    @field_validator("file")
    @classmethod
    def no_directory_traversal(cls, v: str) -> str:
        """Prevent directory traversal in member path."""
        if ".." in v:
            raise ValueError("File path must not contain '..'")
        return v

    @field_validator("image_index", mode="before")
    @classmethod
    def parse_image_index(cls, v):
        """Image indexes are written as strings by the SDK build tools."""
        if isinstance(v, str):
            return int(v.strip())
        return v


class Manifest(BaseModel):
    """Root manifest.json schema.

    Embedded in archive root, lists the images it carries.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    format_version: int = Field(0, alias="format-version", ge=0)
    name: Optional[str] = Field(None, description="Package name")
    files: list[ManifestFile] = Field(
        default_factory=list, description="Images contained in the archive"
    )

    @field_validator("files")
    @classmethod
    def unique_image_indexes(cls, v: list[ManifestFile]) -> list[ManifestFile]:
        """Ensure each device image appears once."""
        indexes = [f.image_index for f in v]
        if len(indexes) != len(set(indexes)):
            raise ValueError("Image indexes must be unique")
        return v
