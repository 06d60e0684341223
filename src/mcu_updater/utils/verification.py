"""MCUboot image header parsing and digest utilities."""

import hashlib
import struct
import logging

from mcu_updater.models.image import ImageInfo

IMAGE_MAGIC = 0x96F3B83D
IMAGE_HEADER_SIZE = 32
# magic, load_addr, hdr_size, protect_tlv_size, img_size, flags,
# ver.major, ver.minor, ver.revision, ver.build_num, pad
IMAGE_HEADER_FORMAT = "<IIHHIIBBHII"

TLV_INFO_MAGIC = 0x6907
TLV_PROT_INFO_MAGIC = 0x6908
TLV_INFO_FORMAT = "<HH"
TLV_INFO_SIZE = 4
TLV_ENTRY_FORMAT = "<HH"
TLV_ENTRY_SIZE = 4
TLV_SHA256 = 0x10
SHA256_SIZE = 32

logger = logging.getLogger("mcu_updater.verification")


def has_image_magic(content: bytes) -> bool:
    """Check whether content starts with the MCUboot header magic."""
    if len(content) < 4:
        return False
    (magic,) = struct.unpack_from("<I", content, 0)
    return magic == IMAGE_MAGIC


def parse_image(content: bytes) -> ImageInfo:
    """Parse an MCUboot image header and locate its SHA-256 TLV.

    Args:
        content: Complete image bytes

    Returns:
        ImageInfo with header fields and the embedded hash

    Raises:
        ValueError: If the header or TLV area is malformed
    """
    if not content:
        raise ValueError("EMPTY_IMAGE: image has no content")
    if len(content) < IMAGE_HEADER_SIZE:
        raise ValueError(
            f"TRUNCATED_HEADER: {len(content)} bytes, need at least {IMAGE_HEADER_SIZE}"
        )

    (
        magic,
        load_addr,
        hdr_size,
        protect_tlv_size,
        img_size,
        flags,
        major,
        minor,
        revision,
        build_num,
        _pad,
    ) = struct.unpack_from(IMAGE_HEADER_FORMAT, content, 0)

    if magic != IMAGE_MAGIC:
        raise ValueError(f"BAD_MAGIC: expected 0x{IMAGE_MAGIC:08X}, got 0x{magic:08X}")
    if hdr_size < IMAGE_HEADER_SIZE:
        raise ValueError(f"BAD_HEADER_SIZE: {hdr_size}")

    tlv_offset = hdr_size + img_size
    if len(content) < tlv_offset + TLV_INFO_SIZE:
        raise ValueError(
            f"TRUNCATED_IMAGE: header declares {tlv_offset} bytes before TLVs, "
            f"image has {len(content)}"
        )

    # Protected TLVs (if any) precede the unprotected area and are covered by the hash
    if protect_tlv_size > 0:
        prot_magic, prot_total = struct.unpack_from(TLV_INFO_FORMAT, content, tlv_offset)
        if prot_magic != TLV_PROT_INFO_MAGIC or prot_total != protect_tlv_size:
            raise ValueError("BAD_TLV_INFO: protected TLV area does not match header")
        tlv_offset += protect_tlv_size
        if len(content) < tlv_offset + TLV_INFO_SIZE:
            raise ValueError("TRUNCATED_IMAGE: missing TLV info after protected area")

    tlv_magic, tlv_total = struct.unpack_from(TLV_INFO_FORMAT, content, tlv_offset)
    if tlv_magic != TLV_INFO_MAGIC:
        raise ValueError(f"BAD_TLV_INFO: magic 0x{tlv_magic:04X}")
    tlv_end = tlv_offset + tlv_total
    if tlv_total < TLV_INFO_SIZE or len(content) < tlv_end:
        raise ValueError(f"TRUNCATED_TLV: TLV area declares {tlv_total} bytes")

    image_hash = None
    pos = tlv_offset + TLV_INFO_SIZE
    while pos + TLV_ENTRY_SIZE <= tlv_end:
        tlv_type, tlv_len = struct.unpack_from(TLV_ENTRY_FORMAT, content, pos)
        pos += TLV_ENTRY_SIZE
        if pos + tlv_len > tlv_end:
            raise ValueError(f"TRUNCATED_TLV: entry 0x{tlv_type:02X} overruns TLV area")
        if tlv_type == TLV_SHA256:
            if tlv_len != SHA256_SIZE:
                raise ValueError(f"BAD_HASH_TLV: length {tlv_len}")
            image_hash = bytes(content[pos : pos + tlv_len])
        pos += tlv_len

    if image_hash is None:
        raise ValueError("MISSING_HASH: no SHA-256 TLV in image")

    return ImageInfo(
        load_address=load_addr,
        header_size=hdr_size,
        protected_tlv_size=protect_tlv_size,
        image_size=img_size,
        flags=flags,
        version=f"{major}.{minor}.{revision}+{build_num}",
        hash=image_hash,
    )


def compute_digest(content: bytes) -> bytes:
    """Compute the identifying digest of an image.

    The digest is the image's SHA-256 TLV, checked against SHA-256 over
    header, body and protected TLVs.

    Args:
        content: Complete image bytes

    Returns:
        32-byte digest

    Raises:
        ValueError: If the image is malformed or the hash does not match
    """
    info = parse_image(content)
    hashed_len = info.header_size + info.image_size + info.protected_tlv_size
    actual = hashlib.sha256(content[:hashed_len]).digest()
    if actual != info.hash:
        logger.error(
            f"Hash mismatch: TLV {info.hash.hex()}, computed {actual.hex()}"
        )
        raise ValueError(
            f"HASH_MISMATCH: expected {info.hash.hex()}, got {actual.hex()}"
        )
    logger.debug(f"Computed digest {actual.hex()} for {len(content)}-byte image")
    return actual


def format_digest_prefix(digest: bytes, length: int = 3) -> str:
    """Upper-hex of the first ``length`` digest bytes, for display only."""
    return digest[:length].hex().upper()


def format_size(size: int) -> str:
    return f"{size} bytes"
