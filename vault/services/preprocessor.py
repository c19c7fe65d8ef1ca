"""
Per-file preprocessing for the upload pipeline.

Steps, in the order the pipeline applies them:
1. format normalization (HEIC/HEIF -> JPEG)
2. filters (minimum size, screenshot-like names)
3. content hash over the normalized bytes
4. duplicate check (done by the caller against the store)
5. compression with fallback to the normalized bytes
6. dimensions, orientation, EXIF camera data and dominant colour

Images are decoded with Pillow; HEIC support comes from pillow-heif.
"""
import colorsys
import hashlib
import io
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePath
from typing import Any, Optional

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from vault.config import get_settings

register_heif_opener()

logger = logging.getLogger("vault.preprocessor")

HEIC_EXTENSIONS = {".heic", ".heif"}
HEIC_CONTENT_TYPES = {"image/heic", "image/heif", "image/heic-sequence", "image/heif-sequence"}

SCREENSHOT_MARKERS = ("screenshot", "screen shot", "screen_shot")

LANDSCAPE_RATIO = 1.05
PORTRAIT_RATIO = 0.95

# Quality floor for the size-bounded JPEG re-encode
MIN_COMPRESS_QUALITY = 40

FALLBACK_ACCENT = "45 100% 51%"

# EXIF tag name -> camera_data key
EXIF_CAMERA_TAGS = {
    "Make": "make",
    "Model": "model",
    "LensModel": "lens",
    "FNumber": "f_number",
    "ExposureTime": "exposure_time",
    "ISOSpeedRatings": "iso",
    "FocalLength": "focal_length",
}
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


class PreprocessError(Exception):
    """Terminal failure for one file; never retried."""


class ConversionError(PreprocessError):
    """Proprietary format could not be converted."""


class UnsupportedImageError(PreprocessError):
    """Bytes could not be decoded as an image."""


@dataclass(frozen=True)
class FilterOptions:
    """Caller-supplied filters. Each one is independently toggleable."""
    skip_small_files: bool = True
    min_file_size: int = 100 * 1024
    skip_screenshots: bool = True
    skip_existing: bool = True

    @classmethod
    def from_settings(cls, **overrides) -> "FilterOptions":
        settings = get_settings()
        values = {"min_file_size": settings.upload_min_file_size_kb * 1024}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class NormalizedFile:
    """Format-normalized source: the bytes every later step works on."""
    file_name: str
    content_type: str
    data: bytes
    converted: bool = False


@dataclass(frozen=True)
class PreparedFile:
    """Analysis-ready payload for one upload task."""
    file_name: str
    content_type: str
    content_hash: str
    payload: bytes
    width: int
    height: int
    orientation: str
    source_size: int
    camera: Optional[dict[str, Any]] = None
    taken_at: Optional[datetime] = None
    accent: str = FALLBACK_ACCENT


def is_heic(file_name: str, content_type: Optional[str] = None) -> bool:
    suffix = PurePath(file_name).suffix.lower()
    return suffix in HEIC_EXTENSIONS or (content_type or "").lower() in HEIC_CONTENT_TYPES


def _jpeg_name(file_name: str) -> str:
    path = PurePath(file_name)
    return str(path.with_suffix(".jpg")) if path.suffix else f"{file_name}.jpg"


def normalize_format(
    data: bytes,
    file_name: str,
    content_type: Optional[str] = None,
    quality: Optional[int] = None,
) -> NormalizedFile:
    """
    Convert HEIC/HEIF input to JPEG; other formats pass through unchanged.

    Raises:
        ConversionError: the HEIC container could not be decoded or re-encoded
    """
    if not is_heic(file_name, content_type):
        return NormalizedFile(
            file_name=file_name,
            content_type=content_type or "application/octet-stream",
            data=data,
        )

    if quality is None:
        quality = get_settings().heic_jpeg_quality
    try:
        with Image.open(io.BytesIO(data)) as img:
            rgb = img.convert("RGB")
            out = io.BytesIO()
            # Keep EXIF so orientation and camera data survive the conversion
            exif = img.info.get("exif")
            if exif:
                rgb.save(out, format="JPEG", quality=quality, exif=exif)
            else:
                rgb.save(out, format="JPEG", quality=quality)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(
            "HEIC conversion failed",
            extra={"event": "upload", "file_name": file_name, "error_type": type(e).__name__},
        )
        raise ConversionError(f"Failed to convert {file_name}") from e

    return NormalizedFile(
        file_name=_jpeg_name(file_name),
        content_type="image/jpeg",
        data=out.getvalue(),
        converted=True,
    )


def is_screenshot_name(file_name: str) -> bool:
    lowered = file_name.lower()
    return any(marker in lowered for marker in SCREENSHOT_MARKERS)


def filter_reason(file: NormalizedFile, options: FilterOptions) -> Optional[str]:
    """Return why the file should be skipped, or None. Size is checked first."""
    if options.skip_small_files and len(file.data) < options.min_file_size:
        return "too_small"
    if options.skip_screenshots and is_screenshot_name(file.file_name):
        return "screenshot"
    return None


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest over the full byte content."""
    return hashlib.sha256(data).hexdigest()


def compress_image(
    data: bytes,
    max_dimension: Optional[int] = None,
    max_bytes: Optional[int] = None,
    quality: Optional[int] = None,
) -> bytes:
    """
    Re-encode as JPEG bounded by ``max_dimension`` and ``max_bytes``.

    Quality steps down by 10 until the size bound holds or the floor is
    reached. Any decode/encode failure returns ``data`` unchanged.
    """
    settings = get_settings()
    max_dimension = max_dimension or settings.compress_max_dimension
    max_bytes = max_bytes or settings.compress_max_bytes
    quality = quality or settings.compress_quality

    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((max_dimension, max_dimension))

            current = quality
            while True:
                out = io.BytesIO()
                img.save(out, format="JPEG", quality=current, optimize=True)
                encoded = out.getvalue()
                if len(encoded) <= max_bytes or current <= MIN_COMPRESS_QUALITY:
                    return encoded
                current -= 10
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(
            "Compression failed, using original bytes",
            extra={"event": "upload", "error_type": type(e).__name__},
        )
        return data


def image_dimensions(data: bytes) -> tuple[int, int]:
    """Decode width and height, honouring EXIF orientation."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            orientation = img.getexif().get(0x0112)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise UnsupportedImageError("File is not a decodable image") from e
    # EXIF orientations 5-8 are rotated by 90 degrees
    if orientation in (5, 6, 7, 8):
        return height, width
    return width, height


def classify_orientation(width: int, height: int) -> str:
    if height <= 0:
        return "square"
    ratio = width / height
    if ratio > LANDSCAPE_RATIO:
        return "landscape"
    if ratio < PORTRAIT_RATIO:
        return "portrait"
    return "square"


def _exif_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("ascii", errors="ignore").strip("\x00 ")
    if isinstance(value, str):
        return value.strip("\x00 ")
    if isinstance(value, (tuple, list)):
        return _exif_value(value[0]) if value else None
    if isinstance(value, int):
        return value
    try:
        return round(float(value), 4)
    except (TypeError, ValueError, ZeroDivisionError):
        return str(value)


def exif_metadata(data: bytes) -> tuple[Optional[dict[str, Any]], Optional[datetime]]:
    """
    Camera fields and capture time from EXIF.

    Returns ``(None, None)`` when the image has no readable EXIF.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            exif = img.getexif()
            tags = {ExifTags.TAGS.get(k, k): v for k, v in exif.items()}
            tags.update(
                {ExifTags.TAGS.get(k, k): v for k, v in exif.get_ifd(ExifTags.IFD.Exif).items()}
            )
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None

    camera = {}
    for tag, key in EXIF_CAMERA_TAGS.items():
        if tags.get(tag) is not None:
            value = _exif_value(tags[tag])
            if value not in (None, ""):
                camera[key] = value

    taken_at = None
    raw_date = tags.get("DateTimeOriginal") or tags.get("DateTime")
    if isinstance(raw_date, str):
        try:
            taken_at = datetime.strptime(raw_date.strip("\x00 "), EXIF_DATE_FORMAT)
        except ValueError:
            taken_at = None
    return camera or None, taken_at


def finalize(file: NormalizedFile, digest: str) -> PreparedFile:
    """Compress and measure a file that passed filters and duplicate checks."""
    # EXIF is read before compression, which drops it
    camera, taken_at = exif_metadata(file.data)
    payload = compress_image(file.data)
    width, height = image_dimensions(payload)
    return PreparedFile(
        file_name=file.file_name,
        content_type="image/jpeg" if payload is not file.data else file.content_type,
        content_hash=digest,
        payload=payload,
        width=width,
        height=height,
        orientation=classify_orientation(width, height),
        source_size=len(file.data),
        camera=camera,
        taken_at=taken_at,
        accent=dominant_color(payload),
    )


def dominant_color(data: bytes) -> str:
    """
    Most frequent colour as an HSL triple ``"h s% l%"``.

    The image is sampled at 50x50; transparent, near-black and near-white
    pixels are ignored and channels are bucketed to the nearest 10.
    Saturation is boosted by 1.3 and capped at 80.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            sample = img.convert("RGBA").resize((50, 50))
            pixels = list(sample.getdata())
    except (OSError, ValueError, Image.DecompressionBombError):
        return FALLBACK_ACCENT

    counts: Counter = Counter()
    for r, g, b, a in pixels:
        if a < 128:
            continue
        brightness = (r + g + b) / 3
        if brightness < 30 or brightness > 225:
            continue
        key = (round(r / 10) * 10, round(g / 10) * 10, round(b / 10) * 10)
        counts[key] += 1

    if not counts:
        r, g, b = 0, 0, 0
    else:
        (r, g, b), _ = counts.most_common(1)[0]

    h, lightness, s = colorsys.rgb_to_hls(min(r, 255) / 255, min(g, 255) / 255, min(b, 255) / 255)
    hue = round(h * 360)
    saturation = min(round(s * 100) * 1.3, 80)
    return f"{hue} {saturation:g}% {round(lightness * 100)}%"
