"""
Tag codec: maps a photo's semantic attributes to the flat tag set stored on the
blob and back.

Tags are queryable, metadata is not. Booleans are always written as the
literal strings ``"true"``/``"false"`` because filter expressions compare
exact strings.
"""

import json
import logging
import os
import re
from datetime import datetime
from typing import Dict, Mapping, Optional

from slugify import slugify

from photo_api.core.errors import ValidationFailure
from photo_api.schemas.photo import Photo, PhotoIntent

log = logging.getLogger(__name__)

# Tag keys
NAME = "name"
COLLECTION = "collection"
ALBUM = "album"
DESCRIPTION = "description"
IS_DELETED = "isDeleted"
COLLECTION_IMAGE = "collectionImage"
ALBUM_IMAGE = "albumImage"
ORIENTATION = "orientation"
URL = "url"

TAG_KEYS = (NAME, COLLECTION, ALBUM, DESCRIPTION, IS_DELETED, COLLECTION_IMAGE, ALBUM_IMAGE, ORIENTATION, URL)
BOOL_TAGS = (IS_DELETED, COLLECTION_IMAGE, ALBUM_IMAGE)
# Written by the resize worker only
SERVER_TAGS = (URL,)

# Metadata keys
WIDTH = "width"
HEIGHT = "height"
SIZE = "size"
EXIF_DATA = "exifData"
PEOPLE = "people"
FACES = "faces"

TRUE = "true"
FALSE = "false"

MAX_TAG_VALUE_LEN = 256
# Blob index tags allow alphanumerics, space and + - . / : = _
_DISALLOWED_TAG_CHARS = re.compile(r"[^A-Za-z0-9 +\-./:=_]")
_FILENAME_STEM_PATTERN = r"[^-A-Za-z0-9_]+"
_UNDEFINED = ("", "undefined", "null")


def format_bool(value: bool) -> str:
    return TRUE if value else FALSE


def parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() == TRUE


def parse_int(value: Optional[str]) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def sanitize_tag_value(value) -> str:
    """Strip characters the tag grammar rejects and cap the length."""
    text = "" if value is None else str(value)
    text = _DISALLOWED_TAG_CHARS.sub("", text).strip()
    return text[:MAX_TAG_VALUE_LEN]


def sanitize_segment(value, field: str) -> str:
    """Collection and album names are tag values *and* path segments."""
    text = sanitize_tag_value(value).replace("/", "").strip()
    if text.lower() in _UNDEFINED:
        raise ValidationFailure(f"'{field}' is required")
    return text


def safe_filename(filename: Optional[str]) -> str:
    """Normalise an uploaded filename for use in a blob path and the ``name`` tag."""
    stem, ext = os.path.splitext(os.path.basename(filename or ""))
    clean_stem = slugify(stem, lowercase=False, regex_pattern=_FILENAME_STEM_PATTERN)
    clean_ext = slugify(ext, lowercase=True)
    if not clean_stem:
        raise ValidationFailure("File name is empty after sanitising")
    return f"{clean_stem}.{clean_ext}" if clean_ext else clean_stem


def photo_path(collection: str, album: str, filename: str) -> str:
    return f"{collection}/{album}/{filename}"


def encode_tags(intent: PhotoIntent, path: str) -> Dict[str, str]:
    collection = sanitize_segment(intent.collection, COLLECTION)
    album = sanitize_segment(intent.album, ALBUM)
    return {
        NAME: sanitize_tag_value(path),
        COLLECTION: collection,
        ALBUM: album,
        DESCRIPTION: sanitize_tag_value(intent.description),
        IS_DELETED: format_bool(intent.is_deleted),
        COLLECTION_IMAGE: format_bool(intent.collection_image),
        ALBUM_IMAGE: format_bool(intent.album_image),
        ORIENTATION: str(int(intent.orientation or 0)),
    }


def decode_intent(tags: Mapping[str, str], metadata: Optional[Mapping[str, str]] = None) -> PhotoIntent:
    md = lower_keys(metadata)
    return PhotoIntent(
        collection=tags.get(COLLECTION, ""),
        album=tags.get(ALBUM, ""),
        description=tags.get(DESCRIPTION, ""),
        collection_image=parse_bool(tags.get(COLLECTION_IMAGE)),
        album_image=parse_bool(tags.get(ALBUM_IMAGE)),
        is_deleted=parse_bool(tags.get(IS_DELETED)),
        orientation=stored_orientation(tags, md),
    )


def lower_keys(metadata: Optional[Mapping[str, str]]) -> Dict[str, str]:
    # Metadata keys are case-insensitive on the store side
    return {str(k).lower(): v for k, v in (metadata or {}).items()}


def stored_orientation(tags: Mapping[str, str], metadata: Optional[Mapping[str, str]] = None) -> int:
    """Orientation lives in tags; metadata is only read for objects written before that."""
    if tags.get(ORIENTATION) not in (None, ""):
        return parse_int(tags.get(ORIENTATION))
    return parse_int(lower_keys(metadata).get(ORIENTATION))


def date_taken(exif_json: str) -> Optional[datetime]:
    if not exif_json:
        return None
    try:
        exif = json.loads(exif_json)
    except ValueError:
        return None
    if not isinstance(exif, dict):
        return None
    for key in ("DateTimeOriginal", "DateTimeDigitized", "DateTime"):
        raw = exif.get(key)
        if not raw:
            continue
        try:
            return datetime.strptime(str(raw).strip(), "%Y:%m:%d %H:%M:%S")
        except ValueError:
            continue
    return None


def decode_photo(path: str, tags: Mapping[str, str], metadata: Optional[Mapping[str, str]], src: str) -> Photo:
    """Rebuild a Photo from a blob's tags and metadata. Bad fields fall back to zero values."""
    md = lower_keys(metadata)
    exif_json = md.get(EXIF_DATA.lower(), "") or ""
    people = [p for p in (md.get(PEOPLE, "") or "").split(",") if p]
    return Photo(
        src=tags.get(URL) or src,
        name=path,
        width=parse_int(md.get(WIDTH)),
        height=parse_int(md.get(HEIGHT)),
        album=tags.get(ALBUM, ""),
        collection=tags.get(COLLECTION, ""),
        description=tags.get(DESCRIPTION, ""),
        date_taken=date_taken(exif_json),
        exif_data=exif_json,
        is_deleted=parse_bool(tags.get(IS_DELETED)),
        orientation=stored_orientation(tags, md),
        album_image=parse_bool(tags.get(ALBUM_IMAGE)),
        collection_image=parse_bool(tags.get(COLLECTION_IMAGE)),
        people=people,
    )


def normalize_submitted(submitted: Mapping[str, object]) -> Dict[str, str]:
    """Coerce a client-submitted tag map (JSON values) into the stored string form."""
    unknown = sorted(k for k in submitted if k not in TAG_KEYS)
    if unknown:
        raise ValidationFailure(f"Unknown tag keys: {', '.join(unknown)}")
    out: Dict[str, str] = {}
    for key, value in submitted.items():
        if key in SERVER_TAGS:
            continue
        if key in BOOL_TAGS:
            out[key] = format_bool(value if isinstance(value, bool) else parse_bool(value))
        elif key == ORIENTATION:
            out[key] = str(parse_int(value))
        else:
            out[key] = sanitize_tag_value(value)
    return out
