import json
import logging
from io import BytesIO
from typing import Any, Dict, Optional

from PIL import ExifTags, Image as PILImage

log = logging.getLogger(__name__)

# Metadata values travel as HTTP headers, keep the document small
MAX_EXIF_JSON = 4096
MAX_EXIF_VALUE = 256
ESSENTIAL_TAGS = (
    "Make", "Model", "LensModel", "DateTimeOriginal", "DateTime", "ExposureTime",
    "FNumber", "ISOSpeedRatings", "FocalLength", "Orientation",
)


def _readable(value: Any) -> Optional[Any]:
    if isinstance(value, (bytes, bytearray)):
        return None
    if isinstance(value, bool) or isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return round(value, 6)
    if isinstance(value, str):
        text = value.strip("\x00 ").strip()
        return text[:MAX_EXIF_VALUE] if text else None
    # IFDRational and friends
    try:
        return round(float(value), 6)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def extract_exif(image_bytes: bytes) -> Dict[str, Any]:
    """Scalar EXIF values keyed by tag name, including the Exif sub-IFD."""
    with PILImage.open(BytesIO(image_bytes)) as im:
        exif = im.getexif()
        raw: Dict[int, Any] = dict(exif.items())
        raw.update(exif.get_ifd(ExifTags.IFD.Exif).items())

    readable: Dict[str, Any] = {}
    for k, v in raw.items():
        value = _readable(v)
        if value is None:
            continue
        readable[ExifTags.TAGS.get(k, str(k))] = value
    return readable


def exif_json(exif: Dict[str, Any]) -> str:
    """Compact ASCII JSON, falling back to the essential keys when too large."""
    if not exif:
        return ""
    doc = json.dumps(exif, ensure_ascii=True, separators=(",", ":"), sort_keys=True)
    if len(doc) <= MAX_EXIF_JSON:
        return doc
    essential = {k: exif[k] for k in ESSENTIAL_TAGS if k in exif}
    return json.dumps(essential, ensure_ascii=True, separators=(",", ":"), sort_keys=True)


def exif_orientation(exif: Dict[str, Any]) -> int:
    try:
        return int(exif.get("Orientation", 0))
    except (TypeError, ValueError):
        return 0
