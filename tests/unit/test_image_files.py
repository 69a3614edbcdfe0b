"""
Unit tests for image intake.

Run: pytest tests/unit/test_image_files.py -v
"""

import pytest

from exceptions import ImageValidationError
from parsers.image_files import ImageFileInput, collect_images, validate_image

JPEG = b"\xff\xd8\xff\xe0" + b"0" * 32


class TestValidateImage:
    """Tests for validate_image()"""

    def test_accepts_jpeg(self):
        asset = validate_image(ImageFileInput("Plato-Azul-2.JPG", JPEG, "image/jpeg"))

        assert asset.clean_name == "plato azul"
        assert asset.index_suffix == 2
        assert asset.size == len(JPEG)
        assert asset.extension == "jpg"

    def test_extension_used_without_content_type(self):
        asset = validate_image(ImageFileInput("vaso.webp", JPEG))

        assert asset.clean_name == "vaso"

    @pytest.mark.parametrize("file", [
        ImageFileInput("doc.pdf", JPEG, "application/pdf"),
        ImageFileInput("anim.gif", JPEG),
        ImageFileInput("empty.png", b"", "image/png"),
    ])
    def test_rejects(self, file):
        with pytest.raises(ImageValidationError):
            validate_image(file)

    def test_rejects_too_large(self):
        with pytest.raises(ImageValidationError) as exc:
            validate_image(ImageFileInput("big.jpg", b"0" * 2_000_001, "image/jpeg"), max_bytes=2_000_000)

        assert "2 MB" in exc.value.error


class TestCollectImages:
    """Tests for collect_images()"""

    def test_partitions_accepted_and_rejected(self):
        # Arrange
        files = [
            ImageFileInput("a1.jpg", JPEG, "image/jpeg"),
            ImageFileInput("notes.txt", b"hello", "text/plain"),
            ImageFileInput("b2.png", JPEG, "image/png"),
        ]

        # Act
        result = collect_images(files)

        # Assert
        assert [i.filename for i in result.images] == ["a1.jpg", "b2.png"]
        assert [r.filename for r in result.rejected] == ["notes.txt"]
        assert result.has_images

    def test_limit_rejects_extra_files(self):
        files = [ImageFileInput(f"img{i}.jpg", JPEG, "image/jpeg") for i in range(4)]

        result = collect_images(files, max_images=3)

        assert len(result.images) == 3
        assert result.rejected[0].filename == "img3.jpg"
