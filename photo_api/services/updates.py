import logging
from typing import Dict, Mapping

from photo_api.config import Settings
from photo_api.core.errors import BlobNotFound, ConflictError, NotFound, NotModified, ValidationFailure
from photo_api.schemas.photo import Photo
from photo_api.services import metrics, tags as tagcodec
from photo_api.services.blob_store import BlobStore
from photo_api.services.covers import CoverImageRule

log = logging.getLogger(__name__)


def comparable(tags: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in tags.items() if k not in tagcodec.SERVER_TAGS}


class PhotoUpdateService:
    """Replaces a published photo's tag set."""

    def __init__(self, store: BlobStore, settings: Settings, rule: CoverImageRule):
        self.store = store
        self.container = settings.IMAGES_CONTAINER_NAME
        self.rule = rule
        self.retries = max(1, settings.COVER_UPDATE_RETRIES)

    def merge(self, path: str, stored: Mapping[str, str], metadata: Mapping[str, str], submitted: Mapping[str, object]) -> Dict[str, str]:
        """The complete tag set to write: submitted values over stored ones, path-derived keys fixed."""
        collection, album, _ = path.split("/", 2)
        incoming = tagcodec.normalize_submitted(submitted)
        for key, expected in ((tagcodec.COLLECTION, collection), (tagcodec.ALBUM, album)):
            if key in incoming and incoming[key] != expected:
                raise ValidationFailure(f"'{key}' cannot be changed by an update")

        merged = {k: v for k, v in stored.items() if k in tagcodec.TAG_KEYS}
        merged.update(incoming)
        merged[tagcodec.NAME] = path
        merged[tagcodec.COLLECTION] = collection
        merged[tagcodec.ALBUM] = album
        for key in tagcodec.BOOL_TAGS:
            merged[key] = tagcodec.format_bool(tagcodec.parse_bool(merged.get(key)))
        if tagcodec.ORIENTATION not in incoming:
            merged[tagcodec.ORIENTATION] = str(tagcodec.stored_orientation(stored, metadata))
        return merged

    async def update(self, collection: str, album: str, filename: str, submitted: Mapping[str, object]) -> Photo:
        path = tagcodec.photo_path(collection, album, filename)
        for attempt in range(1, self.retries + 1):
            try:
                info = await self.store.get_info(self.container, path)
            except BlobNotFound:
                raise NotFound(f"Photo {path} not found")

            new_tags = self.merge(path, info.tags, info.metadata, submitted)
            # The stored tags run through the same normalisation, so legacy encodings compare equal
            baseline = self.merge(path, info.tags, info.metadata, {})
            if comparable(new_tags) == comparable(baseline):
                log.info("Update of %s carries no changes", path)
                raise NotModified()

            if tagcodec.URL in info.tags:
                new_tags[tagcodec.URL] = info.tags[tagcodec.URL]

            await self.rule.release_others(path, new_tags)
            try:
                await self.store.set_tags(self.container, path, new_tags, if_tags=info.tags)
            except ConflictError:
                metrics.record_cover_conflict()
                log.info("Tags of %s changed during update (attempt %s/%s)", path, attempt, self.retries)
                continue
            # A concurrent promoter may have claimed the flag between our release and write
            await self.rule.release_others(path, new_tags)

            log.info("Updated tags of %s/%s", self.container, path)
            src = self.store.url_for(self.container, path)
            return tagcodec.decode_photo(path, new_tags, info.metadata, src)
        raise ConflictError(f"Photo {path} is being modified concurrently, try again")
