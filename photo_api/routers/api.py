# photo_api/routers/api.py
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Request, status
from starlette.datastructures import UploadFile

from photo_api.config import Settings
from photo_api.core.errors import ValidationFailure
from photo_api.dependencies import get_app_settings, get_photos, get_updates, get_uploads
from photo_api.schemas.photo import Photo
from photo_api.services.photos import PhotoQueryService
from photo_api.services.security import AuthUser, require_uploader
from photo_api.services.updates import PhotoUpdateService
from photo_api.services.upload import UploadPipeline, decode_intent, read_upload

log = logging.getLogger(__name__)

api = APIRouter(prefix="/api", tags=["photos"])


@api.get("", response_model=List[Photo])
async def list_collections(photos: PhotoQueryService = Depends(get_photos)):
    """One cover photo per collection."""
    return await photos.list_collection_covers()


# Declared before /{collection} so "tags" is not taken for a collection name
@api.get("/tags", response_model=Dict[str, List[str]])
async def tag_list(photos: PhotoQueryService = Depends(get_photos)):
    return await photos.tag_list()


@api.get("/{collection}", response_model=List[Photo])
async def list_albums(collection: str, photos: PhotoQueryService = Depends(get_photos)):
    """One cover photo per album of the collection."""
    return await photos.list_album_covers(collection)


@api.get("/{collection}/{album}", response_model=List[Photo])
async def list_album_photos(collection: str, album: str, photos: PhotoQueryService = Depends(get_photos)):
    return await photos.list_album_photos(collection, album)


@api.post("/upload", response_model=Photo, status_code=status.HTTP_201_CREATED)
async def upload_photo(
    request: Request,
    user: AuthUser = Depends(require_uploader),
    uploads: UploadPipeline = Depends(get_uploads),
    settings: Settings = Depends(get_app_settings),
):
    """
    Multipart upload with a ``photo`` file part and a ``metadata`` JSON part.

    The form is parsed here rather than declared as parameters so that an
    unauthorised caller is rejected before any of the body is read.
    """
    async with request.form() as form:
        photo = form.get("photo")
        metadata = form.get("metadata")
        if not isinstance(photo, UploadFile):
            raise ValidationFailure("Missing 'photo' file part")
        if not isinstance(metadata, str) or not metadata.strip():
            raise ValidationFailure("Missing 'metadata' part")

        intent = decode_intent(metadata)
        data = await read_upload(photo, settings.MAX_UPLOAD_SIZE)
        log.info("Upload of %s by %s into %s/%s", photo.filename, user.subject, intent.collection, intent.album)
        return await uploads.upload(photo.filename or "", data, intent)


@api.put("/update/{collection}/{album}/{id}", response_model=Photo)
async def update_photo(
    collection: str,
    album: str,
    id: str,
    request: Request,
    user: AuthUser = Depends(require_uploader),
    updates: PhotoUpdateService = Depends(get_updates),
):
    """Replace the photo's tag set. Unchanged tags answer 304."""
    try:
        submitted = await request.json()
    except ValueError:
        raise ValidationFailure("Body is not valid JSON")
    if not isinstance(submitted, dict):
        raise ValidationFailure("Body must be a JSON object of tags")
    log.info("Update of %s/%s/%s by %s", collection, album, id, user.subject)
    return await updates.update(collection, album, id, submitted)
