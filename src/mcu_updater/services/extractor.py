"""Firmware archive extraction."""

import io
import json
import zipfile
import zlib
from pathlib import Path
import logging

import aiofiles
from pydantic import ValidationError

from mcu_updater.errors import ArchiveFormatError, EmptyArchiveError
from mcu_updater.models.image import CoreId, FirmwareImage
from mcu_updater.models.manifest import Manifest
from mcu_updater.utils.verification import has_image_magic

MANIFEST_NAME = "manifest.json"

# Raised by ZipFile.read for damaged, encrypted or unsupported members
MEMBER_READ_ERRORS = (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError)


class ImageExtractor:
    """Turns archive bytes into an ordered list of candidate images.

    Supported inputs:
    - ZIP archive with manifest.json listing one file per device image
    - A bare MCUboot image (treated as the app core image)
    """

    def __init__(self):
        """Initialize image extractor."""
        self.logger = logging.getLogger("mcu_updater.extractor")

    def extract(self, data: bytes, name: str = "firmware") -> list[FirmwareImage]:
        """Extract candidate images from archive bytes.

        Args:
            data: Archive or raw image bytes
            name: Display name of the source (file name)

        Returns:
            Candidate images ordered by image index (app core first)

        Raises:
            ArchiveFormatError: If the container cannot be parsed
            EmptyArchiveError: If it contains no images
        """
        if not data:
            raise EmptyArchiveError(f"{name} is empty")

        if zipfile.is_zipfile(io.BytesIO(data)):
            images = self._extract_zip(data, name)
        elif has_image_magic(data):
            self.logger.info(f"{name}: bare image, {len(data)} bytes")
            images = [FirmwareImage(core=CoreId.APP, image=0, content=data, name=name)]
        else:
            raise ArchiveFormatError(f"{name} is neither a ZIP archive nor a firmware image")

        if not images:
            raise EmptyArchiveError(f"{name} contains no firmware images")

        # Stable sort keeps manifest order for equal indexes
        images.sort(key=lambda img: img.image)
        self.logger.info(
            f"Extracted {len(images)} image(s) from {name}: "
            + ", ".join(f"{img.core.value}[{img.image}]={img.size}B" for img in images)
        )
        return images

    async def load(self, path: Path) -> list[FirmwareImage]:
        """Read an archive from disk and extract it.

        Args:
            path: Archive file path

        Raises:
            FileNotFoundError: If the file does not exist
            ArchiveFormatError: If the container cannot be parsed
            EmptyArchiveError: If it contains no images
        """
        path = Path(path)
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        self.logger.debug(f"Read {len(data)} bytes from {path}")
        return self.extract(data, name=path.name)

    def _read_manifest(self, zf: zipfile.ZipFile) -> Manifest:
        """Read and parse manifest.json from an open archive.

        Raises:
            ArchiveFormatError: If manifest is missing or invalid
        """
        if MANIFEST_NAME not in zf.namelist():
            raise ArchiveFormatError(f"{MANIFEST_NAME} not found in archive root")

        manifest_data = self._read_member(zf, MANIFEST_NAME)
        try:
            manifest_data = manifest_data.decode("utf-8")
            manifest = Manifest(**json.loads(manifest_data))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveFormatError(f"Invalid manifest JSON: {e}") from e
        except (ValidationError, TypeError) as e:
            raise ArchiveFormatError(f"Invalid manifest: {e}") from e

        self.logger.debug(f"Parsed manifest: {manifest.model_dump()}")
        return manifest

    def _read_member(self, zf: zipfile.ZipFile, member: str) -> bytes:
        try:
            return zf.read(member)
        except MEMBER_READ_ERRORS as e:
            raise ArchiveFormatError(f"Cannot read {member}: {e}") from e

    def _extract_zip(self, data: bytes, name: str) -> list[FirmwareImage]:
        try:
            with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
                manifest = self._read_manifest(zf)
                names = set(zf.namelist())

                images = []
                for entry in manifest.files:
                    if entry.file not in names:
                        raise ArchiveFormatError(
                            f"File {entry.file} listed in manifest not found in archive"
                        )
                    content = self._read_member(zf, entry.file)
                    if entry.size is not None and entry.size != len(content):
                        self.logger.warning(
                            f"{entry.file}: manifest declares {entry.size} bytes, "
                            f"archive holds {len(content)}"
                        )
                    images.append(
                        FirmwareImage(
                            core=CoreId.from_image_index(entry.image_index),
                            image=entry.image_index,
                            content=content,
                            name=entry.file,
                        )
                    )
                return images

        except zipfile.BadZipFile as e:
            raise ArchiveFormatError(f"Invalid ZIP archive {name}: {e}") from e


def extract_images(data: bytes, name: str = "firmware") -> list[FirmwareImage]:
    """Extract candidate images from archive bytes with a default extractor."""
    return ImageExtractor().extract(data, name=name)


async def load_images(path: Path) -> list[FirmwareImage]:
    """Read and extract an archive file with a default extractor."""
    return await ImageExtractor().load(path)
