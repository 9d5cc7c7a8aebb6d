"""Size-bounded JPEG re-encoding for uploaded and captured images.

Images are decoded, downscaled when either side exceeds the maximum
dimension, then re-encoded with decreasing JPEG quality until they fit the
byte budget. If the lowest quality is still too large, the image is shrunk
once more by a fixed ratio and encoded a final time. The result can still
exceed the budget; this is a best-effort cap.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from examroom.config import settings

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"


class ImageDecodeError(ValueError):
    """The input could not be decoded as an image."""


@dataclass
class CompressedImage:
    data: bytes
    width: int
    height: int
    quality: int

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        return to_data_url(self.data)


def to_data_url(data: bytes, mime: str = JPEG_MIME) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def from_data_url(data_url: str) -> bytes:
    """Decode the payload of a ``data:...;base64,`` URL."""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ImageDecodeError("Not a base64 data URL")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Invalid base64 image data: {exc}") from exc


def _decode(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc
    img = ImageOps.exif_transpose(img)
    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _encode(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def _scaled(img: Image.Image, ratio: float) -> Image.Image:
    width = max(1, int(img.width * ratio))
    height = max(1, int(img.height * ratio))
    return img.resize((width, height), Image.LANCZOS)


def compress_image(
    data: bytes,
    max_bytes: int = None,
    max_dimension: int = None,
    start_quality: int = None,
    min_quality: int = None,
    quality_step: int = None,
    fallback_scale: float = None,
    fallback_quality: int = None,
) -> CompressedImage:
    """Re-encode ``data`` as a JPEG that fits ``max_bytes`` where possible.

    Unset parameters fall back to the values in settings.

    Raises:
        ImageDecodeError: if ``data`` is not a decodable image.
    """
    max_bytes = max_bytes or settings.image_max_bytes
    max_dimension = max_dimension or settings.image_max_dimension
    start_quality = start_quality or settings.image_start_quality
    min_quality = min_quality or settings.image_min_quality
    quality_step = quality_step or settings.image_quality_step
    fallback_scale = fallback_scale or settings.image_fallback_scale
    fallback_quality = fallback_quality or settings.image_fallback_quality

    img = _decode(data)

    if img.width > max_dimension or img.height > max_dimension:
        img = _scaled(img, min(max_dimension / img.width, max_dimension / img.height))

    quality = start_quality
    encoded = _encode(img, quality)
    while len(encoded) > max_bytes and quality - quality_step >= min_quality:
        quality -= quality_step
        encoded = _encode(img, quality)

    if len(encoded) > max_bytes:
        img = _scaled(img, fallback_scale)
        quality = fallback_quality
        encoded = _encode(img, quality)

    logger.debug(
        "Compressed image %d -> %d bytes (%dx%d, quality %d)",
        len(data), len(encoded), img.width, img.height, quality,
    )
    return CompressedImage(data=encoded, width=img.width, height=img.height, quality=quality)
