"""Validation and hashing of extracted firmware images."""

import logging
from typing import Sequence

from mcu_updater.errors import EmptyImageSetError, InvalidImageError
from mcu_updater.models.image import FirmwareImage, ValidatedImage
from mcu_updater.utils.verification import (
    compute_digest,
    format_digest_prefix,
    format_size,
    parse_image,
)

logger = logging.getLogger("mcu_updater.validator")


def validate_image(candidate: FirmwareImage, index: int = 0) -> ValidatedImage:
    """Validate one image and populate its digest.

    Args:
        candidate: Image returned by the extractor
        index: Position of the image in its set, reported on failure

    Returns:
        ValidatedImage with digest and display strings

    Raises:
        InvalidImageError: If the header is malformed or the hash is wrong
    """
    try:
        info = parse_image(candidate.content)
        digest = compute_digest(candidate.content)
    except ValueError as e:
        logger.error(f"Image {index} ({candidate.name or candidate.core.value}) invalid: {e}")
        raise InvalidImageError(index, str(e)) from e

    image = candidate.model_copy(update={"digest": digest})
    label = candidate.core.label
    size_text = f"{format_size(image.size)} {label}".rstrip()
    hash_text = f"{format_digest_prefix(digest)} {label}".rstrip()
    return ValidatedImage(image=image, info=info, size_text=size_text, hash_text=hash_text)


def validate_images(candidates: Sequence[FirmwareImage]) -> list[ValidatedImage]:
    """Validate a whole candidate set, all-or-nothing.

    Args:
        candidates: Images from one archive, in display order

    Returns:
        Validated images in the same order

    Raises:
        EmptyImageSetError: If ``candidates`` is empty
        InvalidImageError: On the first malformed image; nothing is returned
    """
    if not candidates:
        raise EmptyImageSetError()

    validated = [validate_image(c, index=i) for i, c in enumerate(candidates)]
    summary = ", ".join(
        f"{v.image.core.value}={format_digest_prefix(v.image.digest)}" for v in validated
    )
    logger.info(f"Validated {len(validated)} image(s): {summary}")
    return validated


def images_of(validated: Sequence[ValidatedImage]) -> list[FirmwareImage]:
    """Unwrap validated images for the orchestrator."""
    return [v.image for v in validated]
