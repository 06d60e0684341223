"""Global pytest fixtures and configuration."""

import asyncio
import hashlib
import io
import json
import struct
import sys
import zipfile
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcu_updater.models.commands import (  # noqa: E402
    DeviceCommand,
    DeviceOperation,
    DeviceResponse,
    SlotInfo,
)
from mcu_updater.models.image import CoreId, FirmwareImage  # noqa: E402
from mcu_updater.services.events import UpgradeObserver  # noqa: E402
from mcu_updater.services.transport import Transport  # noqa: E402

IMAGE_MAGIC = 0x96F3B83D
# header (32) + TLV info (4) + SHA-256 TLV (4 + 32)
IMAGE_OVERHEAD = 72


def build_image(
    body: bytes,
    version: tuple = (1, 2, 3, 4),
    header_size: int = 32,
    protected_tlvs: bytes = b"",
    corrupt_hash: bool = False,
    include_hash: bool = True,
) -> bytes:
    """Build an MCUboot image around ``body`` with a valid SHA-256 TLV."""
    protect_size = len(protected_tlvs) + 4 if protected_tlvs else 0
    major, minor, revision, build = version
    header = struct.pack(
        "<IIHHIIBBHII",
        IMAGE_MAGIC,
        0,
        header_size,
        protect_size,
        len(body),
        0,
        major,
        minor,
        revision,
        build,
        0,
    )
    header += b"\x00" * (header_size - 32)
    protected = b""
    if protected_tlvs:
        protected = struct.pack("<HH", 0x6908, protect_size) + protected_tlvs

    digest = hashlib.sha256(header + body + protected).digest()
    if corrupt_hash:
        digest = bytes([digest[0] ^ 0xFF]) + digest[1:]
    tlvs = struct.pack("<HH", 0x10, 32) + digest if include_hash else b""
    tlvs += struct.pack("<HH", 0x01, 4) + b"\xAA\xBB\xCC\xDD"  # unrelated TLV
    info = struct.pack("<HH", 0x6907, 4 + len(tlvs))
    return header + body + protected + info + tlvs


def build_sized_image(total_size: int, fill: int = 0x5A) -> bytes:
    """Build a valid image of exactly ``total_size`` bytes."""
    # build_image adds an 8-byte unrelated TLV on top of the base overhead
    body_len = total_size - IMAGE_OVERHEAD - 8
    assert body_len >= 0
    return build_image(bytes([fill]) * body_len)


def build_archive(files: list[tuple[str, int, bytes]], manifest: Optional[dict] = None) -> bytes:
    """Build a dfu_application.zip style archive.

    Args:
        files: (member name, image index, content) triples, in manifest order
        manifest: Explicit manifest dict (overrides the generated one)
    """
    if manifest is None:
        manifest = {
            "format-version": 0,
            "name": "dfu_application",
            "files": [
                {
                    "type": "application",
                    "file": name,
                    "image_index": str(index),
                    "size": len(content),
                    "version_MCUBOOT": "1.2.3+4",
                }
                for name, index, content in files
            ],
        }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("manifest.json", json.dumps(manifest))
        for name, _, content in files:
            zf.writestr(name, content)
    return buffer.getvalue()


class FakeTransport(Transport):
    """Scripted in-memory device."""

    def __init__(
        self,
        slots: Optional[list[SlotInfo]] = None,
        reconnect: bool = True,
        reconnect_delay: float = 0.0,
    ):
        self.commands: list[DeviceCommand] = []
        self.slots = slots or []
        self.reconnect = reconnect
        self.reconnect_delay = reconnect_delay
        self.errors: dict[DeviceOperation, Exception] = {}
        self.rejections: dict[DeviceOperation, int] = {}
        self.delays: dict[DeviceOperation, float] = {}
        self.hooks: dict[DeviceOperation, Callable[[DeviceCommand], None]] = {}
        self.upload_ack: Optional[Callable[[DeviceCommand], int]] = None
        self.reconnects = 0
        self.closed = False

    def ops(self) -> list[DeviceOperation]:
        return [c.op for c in self.commands]

    def uploads(self, image: Optional[int] = None) -> list[DeviceCommand]:
        return [
            c
            for c in self.commands
            if c.op is DeviceOperation.UPLOAD and (image is None or c.image == image)
        ]

    async def send(self, command: DeviceCommand) -> DeviceResponse:
        self.commands.append(command)
        await asyncio.sleep(self.delays.get(command.op, 0))
        hook = self.hooks.get(command.op)
        if hook is not None:
            hook(command)
        if command.op in self.errors:
            raise self.errors[command.op]
        if command.op in self.rejections:
            return DeviceResponse(rc=self.rejections[command.op], message="rejected by test")
        if command.op is DeviceOperation.LIST:
            return DeviceResponse(images=self.slots)
        if command.op is DeviceOperation.UPLOAD:
            if self.upload_ack is not None:
                return DeviceResponse(offset=self.upload_ack(command))
            return DeviceResponse(offset=command.offset + len(command.data))
        return DeviceResponse()

    async def wait_for_reconnect(self) -> None:
        if not self.reconnect:
            await asyncio.Event().wait()
        await asyncio.sleep(self.reconnect_delay)
        self.reconnects += 1

    async def aclose(self) -> None:
        self.closed = True


class RecordingObserver(UpgradeObserver):
    """Collects every event as a tuple."""

    def __init__(self):
        self.events: list[tuple] = []

    def names(self) -> list[str]:
        return [e[0] for e in self.events]

    def transitions(self) -> list[tuple]:
        return [(e[1], e[2]) for e in self.events if e[0] == "state"]

    def progress(self) -> list[tuple[int, int]]:
        return [(e[1], e[2]) for e in self.events if e[0] == "progress"]

    def on_start(self):
        self.events.append(("start",))

    def on_state_change(self, previous, new):
        self.events.append(("state", previous, new))

    def on_progress(self, bytes_sent, image_size, timestamp):
        self.events.append(("progress", bytes_sent, image_size, timestamp))

    def on_complete(self):
        self.events.append(("complete",))

    def on_fail(self, state, error):
        self.events.append(("fail", state, error))

    def on_cancel(self, state):
        self.events.append(("cancel", state))


@pytest.fixture
def image_factory():
    """Build MCUboot image bytes."""
    return build_image


@pytest.fixture
def sized_image_factory():
    """Build MCUboot image bytes of an exact total size."""
    return build_sized_image


@pytest.fixture
def archive_factory():
    """Build dfu_application.zip bytes."""
    return build_archive


@pytest.fixture
def app_image():
    """1000-byte app core image."""
    return FirmwareImage(core=CoreId.APP, image=0, content=build_sized_image(1000, 0x11))


@pytest.fixture
def net_image():
    """500-byte net core image."""
    return FirmwareImage(core=CoreId.NET, image=1, content=build_sized_image(500, 0x22))


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def transport_factory():
    return FakeTransport


@pytest.fixture
def recorder():
    return RecordingObserver()
