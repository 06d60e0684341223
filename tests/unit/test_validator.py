"""Unit tests for image validation."""

import pytest

from mcu_updater.errors import EmptyImageSetError, InvalidImageError
from mcu_updater.models.image import CoreId, FirmwareImage
from mcu_updater.services.validator import images_of, validate_image, validate_images
from mcu_updater.utils.verification import compute_digest


@pytest.mark.unit
class TestValidateImages:
    """Test all-or-nothing validation of a candidate set."""

    def test_validate_two_images(self, app_image, net_image):
        """Test digests and display strings are populated."""
        # Act
        validated = validate_images([app_image, net_image])

        # Assert
        assert len(validated) == 2
        app, net = validated
        assert app.image.digest == compute_digest(app_image.content)
        assert net.image.digest == compute_digest(net_image.content)
        assert app.size_text == "1000 bytes (app core)"
        assert net.size_text == "500 bytes (net core)"
        assert app.hash_text == f"{app.image.digest[:3].hex().upper()} (app core)"
        assert net.hash_text.endswith(" (net core)")

    def test_candidates_are_not_modified(self, app_image):
        """Test the input image keeps its unset digest."""
        validated = validate_images([app_image])

        assert app_image.digest is None
        assert validated[0].image is not app_image
        assert validated[0].image.content == app_image.content

    def test_unknown_core_has_no_label(self, sized_image_factory):
        """Test unknown cores are displayed without a label."""
        candidate = FirmwareImage(core=CoreId.UNKNOWN, image=2, content=sized_image_factory(200))

        validated = validate_image(candidate)

        assert validated.size_text == "200 bytes"
        assert len(validated.hash_text) == 6

    def test_invalid_image_fails_whole_set(self, app_image, image_factory):
        """Test one corrupt image rejects the set and names its index."""
        bad = FirmwareImage(
            core=CoreId.NET, image=1, content=image_factory(b"\x00" * 50, corrupt_hash=True)
        )

        with pytest.raises(InvalidImageError) as exc_info:
            validate_images([app_image, bad])

        assert exc_info.value.index == 1
        assert "HASH_MISMATCH" in exc_info.value.reason
        assert str(exc_info.value).startswith("INVALID_IMAGE: image 1:")

    def test_malformed_header(self):
        """Test non-image bytes are rejected as invalid."""
        candidate = FirmwareImage(core=CoreId.APP, content=b"\x00" * 64)

        with pytest.raises(InvalidImageError, match="BAD_MAGIC"):
            validate_images([candidate])

    def test_empty_set(self):
        """Test an empty set is rejected."""
        with pytest.raises(EmptyImageSetError):
            validate_images([])

    def test_images_of(self, app_image, net_image):
        """Test validated images unwrap in order with digests."""
        images = images_of(validate_images([app_image, net_image]))

        assert [img.core for img in images] == [CoreId.APP, CoreId.NET]
        assert all(img.digest is not None for img in images)

    def test_info_version(self, image_factory):
        candidate = FirmwareImage(
            core=CoreId.APP, content=image_factory(b"\x01" * 10, version=(3, 0, 1, 9))
        )

        assert validate_image(candidate).info.version == "3.0.1+9"
