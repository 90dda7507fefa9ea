"""
Upload pipeline: intent decoding, image probing, EXIF extraction, tag and
metadata building, and the single write to the incoming container.

Authorisation and multipart parsing happen in the router before any of this
runs.
"""

import asyncio
import json
import logging
from typing import Dict, Tuple

from fastapi import UploadFile
from pydantic import ValidationError

from photo_api.config import Settings
from photo_api.core.errors import ValidationFailure
from photo_api.schemas.photo import Photo, PhotoIntent
from photo_api.services import images, metrics, tags as tagcodec
from photo_api.services.blob_store import BlobStore
from photo_api.utils.exif import exif_json, exif_orientation, extract_exif

log = logging.getLogger(__name__)


async def read_upload(file: UploadFile, max_size: int) -> bytes:
    # Never hold more than max_size + 1 bytes
    content = await file.read(max_size + 1)
    if len(content) > max_size:
        raise ValidationFailure(f"File too large, limit is {max_size} bytes")
    if not content:
        raise ValidationFailure("Empty file")
    return content


def decode_intent(raw: str) -> PhotoIntent:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValidationFailure(f"'metadata' is not valid JSON: {e}")
    # Older clients send a one-element list
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        raise ValidationFailure("'metadata' must be a JSON object")
    try:
        return PhotoIntent.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid metadata: {e.errors()[0].get('msg', 'invalid value')}")


class UploadPipeline:
    def __init__(self, store: BlobStore, settings: Settings):
        self.store = store
        self.uploads_container = settings.UPLOADS_CONTAINER_NAME
        self.images_container = settings.IMAGES_CONTAINER_NAME

    def build(self, filename: str, data: bytes, intent: PhotoIntent) -> Tuple[str, Dict[str, str], Dict[str, str], str]:
        """Probe the image and derive path, tags, metadata and content type."""
        collection = tagcodec.sanitize_segment(intent.collection, tagcodec.COLLECTION)
        album = tagcodec.sanitize_segment(intent.album, tagcodec.ALBUM)
        path = tagcodec.photo_path(collection, album, tagcodec.safe_filename(filename))

        probe = images.probe(data, verify=True)

        exif = {}
        try:
            exif = extract_exif(data)
        except Exception as e:
            log.warning("EXIF extraction failed for %s: %s", path, e)

        if not intent.orientation:
            intent = intent.model_copy(update={"orientation": exif_orientation(exif)})

        tags = tagcodec.encode_tags(intent, path)
        metadata = {
            tagcodec.WIDTH: str(probe.width),
            tagcodec.HEIGHT: str(probe.height),
            tagcodec.SIZE: str(len(data)),
            tagcodec.EXIF_DATA: exif_json(exif),
        }
        return path, tags, metadata, probe.content_type

    async def upload(self, filename: str, data: bytes, intent: PhotoIntent) -> Photo:
        try:
            path, tags, metadata, content_type = await asyncio.to_thread(self.build, filename, data, intent)
        except ValidationFailure:
            metrics.record_upload("rejected")
            raise

        if intent.type and intent.type != content_type:
            log.info("Client declared %s for %s, stored as %s", intent.type, path, content_type)

        try:
            await self.store.upload(
                self.uploads_container,
                path,
                data,
                tags=tags,
                metadata=metadata,
                content_type=content_type,
            )
        except Exception:
            metrics.record_upload("failed")
            raise
        metrics.record_upload("ok")
        log.info("Stored upload %s/%s (%sx%s, %s bytes)", self.uploads_container, path,
                 metadata[tagcodec.WIDTH], metadata[tagcodec.HEIGHT], metadata[tagcodec.SIZE])

        src = self.store.url_for(self.images_container, path)
        return tagcodec.decode_photo(path, tags, metadata, src)
