"""
Preprocessing tests: normalization, filters, hashing, compression, metadata.
"""
import io
from datetime import datetime

import pytest
from PIL import Image

from conftest import make_image
from vault.services.curation import color_temperature
from vault.services.preprocessor import (
    FALLBACK_ACCENT,
    ConversionError,
    FilterOptions,
    NormalizedFile,
    UnsupportedImageError,
    classify_orientation,
    compress_image,
    content_hash,
    dominant_color,
    exif_metadata,
    filter_reason,
    finalize,
    image_dimensions,
    is_heic,
    is_screenshot_name,
    normalize_format,
)


def normalized(name: str, data: bytes) -> NormalizedFile:
    return NormalizedFile(file_name=name, content_type="image/jpeg", data=data)


class TestNormalizeFormat:
    def test_jpeg_passes_through(self):
        data = make_image()
        result = normalize_format(data, "photo.jpg", "image/jpeg")
        assert result.data is data
        assert result.converted is False
        assert result.file_name == "photo.jpg"

    @pytest.mark.parametrize(
        "name,content_type,expected",
        [
            ("IMG_0001.HEIC", None, True),
            ("IMG_0001.heif", "application/octet-stream", True),
            ("upload", "image/heic", True),
            ("IMG_0001.jpg", "image/jpeg", False),
        ],
    )
    def test_heic_detection(self, name, content_type, expected):
        assert is_heic(name, content_type) is expected

    def test_broken_heic_raises(self):
        with pytest.raises(ConversionError):
            normalize_format(b"definitely not heic", "IMG_0001.heic", "image/heic")

    def test_heic_is_converted_to_jpeg(self):
        out = io.BytesIO()
        Image.new("RGB", (64, 48), (30, 160, 90)).save(out, format="HEIF")

        result = normalize_format(out.getvalue(), "IMG_0001.HEIC", "image/heic")

        assert result.converted is True
        assert result.file_name == "IMG_0001.jpg"
        assert result.content_type == "image/jpeg"
        with Image.open(io.BytesIO(result.data)) as img:
            assert img.format == "JPEG"
            assert img.size == (64, 48)


class TestFilters:
    def test_size_checked_first(self):
        options = FilterOptions(min_file_size=10_000)
        file = normalized("Screenshot 1.png", b"x" * 100)
        assert filter_reason(file, options) == "too_small"

    def test_screenshot_names(self):
        options = FilterOptions(skip_small_files=False)
        assert filter_reason(normalized("Screen Shot 2024-01-01.png", b"x"), options) == "screenshot"
        assert filter_reason(normalized("holiday.jpg", b"x"), options) is None

    def test_filters_can_be_disabled(self):
        options = FilterOptions(skip_small_files=False, skip_screenshots=False)
        assert filter_reason(normalized("screenshot.png", b"x"), options) is None

    @pytest.mark.parametrize("name", ["Screenshot_2024.png", "SCREEN_SHOT.jpg", "my screenshot.jpeg"])
    def test_screenshot_markers(self, name):
        assert is_screenshot_name(name)


def test_content_hash_is_sha256_hex():
    assert content_hash(b"vault") == content_hash(b"vault")
    assert content_hash(b"vault") != content_hash(b"vault!")
    assert len(content_hash(b"vault")) == 64


class TestCompression:
    def test_bounds_dimensions(self):
        data = make_image(size=(3000, 1500))
        compressed = compress_image(data, max_dimension=1920, max_bytes=10 * 1024 * 1024, quality=85)
        assert image_dimensions(compressed) == (1920, 960)

    def test_invalid_bytes_fall_back_to_original(self):
        data = b"not an image"
        assert compress_image(data) is data

    def test_output_is_jpeg(self):
        compressed = compress_image(make_image(fmt="PNG", size=(200, 100)))
        with Image.open(io.BytesIO(compressed)) as img:
            assert img.format == "JPEG"


class TestMetadata:
    def test_dimensions_honour_exif_rotation(self):
        exif = Image.Exif()
        exif[0x0112] = 6
        data = make_image(size=(80, 40), exif=exif)
        assert image_dimensions(data) == (40, 80)

    def test_dimensions_of_garbage(self):
        with pytest.raises(UnsupportedImageError):
            image_dimensions(b"garbage")

    @pytest.mark.parametrize(
        "width,height,expected",
        [(1920, 1080, "landscape"), (1080, 1920, "portrait"), (1000, 1000, "square"), (1000, 980, "square")],
    )
    def test_orientation(self, width, height, expected):
        assert classify_orientation(width, height) == expected

    def test_exif_camera_and_date(self):
        exif = Image.Exif()
        exif[0x010F] = "Canon"
        exif[0x0110] = "EOS R5"
        exif[0x0132] = "2023:05:01 10:20:30"
        camera, taken_at = exif_metadata(make_image(exif=exif))
        assert camera == {"make": "Canon", "model": "EOS R5"}
        assert taken_at == datetime(2023, 5, 1, 10, 20, 30)

    def test_no_exif(self):
        assert exif_metadata(make_image()) == (None, None)
        assert exif_metadata(b"garbage") == (None, None)

    def test_dominant_color(self):
        accent = dominant_color(make_image(color=(200, 30, 30), fmt="PNG"))
        assert color_temperature(accent) == "warm"
        assert dominant_color(b"garbage") == FALLBACK_ACCENT

    def test_finalize(self):
        data = make_image(size=(300, 200))
        prepared = finalize(normalized("a.jpg", data), content_hash(data))
        assert prepared.content_hash == content_hash(data)
        assert (prepared.width, prepared.height) == (300, 200)
        assert prepared.orientation == "landscape"
        assert prepared.source_size == len(data)
        assert prepared.content_type == "image/jpeg"
