"""
Image probing and resizing for the upload pipeline and the resize worker.
"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from photo_api.core.errors import UnsupportedImageFormat, ValidationFailure

log = logging.getLogger(__name__)

# Content type -> Pillow encoder
FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    # Camera JPEGs with an MPF segment open as MPO
    "image/mpo": "JPEG",
}


@dataclass
class ImageProbe:
    width: int
    height: int
    content_type: str


def _content_type(fmt: str) -> str:
    if fmt == "MPO":
        return "image/jpeg"
    return Image.MIME.get(fmt, "")


def probe(image_bytes: bytes, verify: bool = False) -> ImageProbe:
    """
    Read width, height and format from the header.

    With ``verify`` the raster is decoded too, so truncated or corrupt
    bodies are rejected here rather than in the resize worker.
    """
    try:
        with Image.open(BytesIO(image_bytes)) as im:
            width, height = im.size
            content_type = _content_type(im.format or "")
            if verify and content_type in FORMATS:
                im.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationFailure(f"Not a readable image: {e}") from e
    if content_type not in FORMATS:
        raise UnsupportedImageFormat(f"Unsupported image format {content_type or 'unknown'}")
    return ImageProbe(width=width, height=height, content_type=content_type)


def target_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Portrait images are bound by max height, landscape and square ones by max width."""
    if width <= 0 or height <= 0:
        raise ValidationFailure(f"Invalid image dimensions {width}x{height}")
    if height > width:
        return max(1, round(max_height * width / height)), max_height
    return max_width, max(1, round(max_width * height / width))


def resize_image(image_bytes: bytes, content_type: str, max_width: int, max_height: int, quality: int = 85) -> bytes:
    """
    Rescale an image to the configured bounds and re-encode it in its original format.

    Args:
        image_bytes: Raw JPEG, PNG or GIF bytes
        content_type: MIME type of the source, selects the encoder
        max_width: Bound for landscape and square images
        max_height: Bound for portrait images
        quality: JPEG quality (1-100)

    Returns:
        Encoded bytes. Images already at the target size are returned unchanged.
    """
    fmt = FORMATS.get((content_type or "").split(";")[0].strip().lower())
    if fmt is None:
        raise UnsupportedImageFormat(f"Unsupported image format {content_type or 'unknown'}")

    try:
        with Image.open(BytesIO(image_bytes)) as im:
            size = target_size(im.width, im.height, max_width, max_height)
            if im.size == size:
                log.info("Image already %sx%s, skipping re-encode", *size)
                return image_bytes

            log.info("Resizing image from %sx%s to %sx%s", im.width, im.height, *size)
            exif = im.info.get("exif")
            resized = im.resize(size, Image.Resampling.LANCZOS)
    except OSError as e:
        # UnidentifiedImageError and truncated rasters both land here
        raise ValidationFailure(f"Cannot decode image: {e}") from e

    buf = BytesIO()
    if fmt == "JPEG":
        if resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")
        kwargs = {"quality": quality, "optimize": True}
        if exif:
            kwargs["exif"] = exif
        resized.save(buf, format=fmt, **kwargs)
    else:
        resized.save(buf, format=fmt, optimize=True)
    return buf.getvalue()
