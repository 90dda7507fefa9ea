import asyncio
import logging
from typing import Dict, Optional

from photo_api.config import Settings
from photo_api.core.errors import BlobNotFound, ConflictError, PhotoApiError
from photo_api.schemas.photo import BlobEvent, Photo
from photo_api.services import images, metrics, tags as tagcodec
from photo_api.services.blob_store import BlobInfo, BlobStore
from photo_api.services.covers import CoverImageRule
from photo_api.workers.events import split_blob_url

log = logging.getLogger(__name__)


class ResizeWorker:
    """Publishes an incoming upload: rescale, refresh dimensions, set its url, hand over covers."""

    def __init__(self, store: BlobStore, settings: Settings, rule: Optional[CoverImageRule] = None):
        self.store = store
        self.images_container = settings.IMAGES_CONTAINER_NAME
        self.max_width = settings.MAX_IMAGE_WIDTH
        self.max_height = settings.MAX_IMAGE_HEIGHT
        self.quality = settings.IMAGE_QUALITY
        self.retries = max(1, settings.COVER_UPDATE_RETRIES)
        self.rule = rule or CoverImageRule(store, self.images_container, settings.COVER_UPDATE_RETRIES)

    async def handle(self, event: BlobEvent) -> Photo:
        try:
            photo = await self._publish(event)
        except PhotoApiError:
            metrics.record_resize("failed")
            raise
        metrics.record_resize("ok")
        return photo

    async def _publish(self, event: BlobEvent) -> Photo:
        container, path = split_blob_url(event.data.url)
        log.info("Resize event %s for %s/%s", event.id, container, path)

        data, info = await asyncio.gather(
            self.store.download(container, path),
            self.store.get_info(container, path),
        )
        content_type = event.data.content_type or info.content_type
        resized = await asyncio.to_thread(
            images.resize_image, data, content_type, self.max_width, self.max_height, self.quality
        )
        probe = await asyncio.to_thread(images.probe, resized)
        src = self.store.url_for(self.images_container, path)

        for _ in range(self.retries):
            published = await self._published_info(path)
            if published is None:
                return await self._first_publish(path, resized, probe, info, src)
            # Redelivery: the published tags and metadata may carry later
            # updates, only the bytes and derived fields are refreshed
            tags = dict(published.tags)
            tags[tagcodec.URL] = src
            metadata = self._sized(published.metadata, probe, resized)
            try:
                await self.store.upload(
                    self.images_container,
                    path,
                    resized,
                    tags=tags,
                    metadata=metadata,
                    content_type=probe.content_type,
                    if_tags=published.tags,
                )
            except (BlobNotFound, ConflictError):
                log.info("Published copy of %s changed during redelivery, retrying", path)
                continue
            log.info("Refreshed %s/%s at %sx%s", self.images_container, path, probe.width, probe.height)
            return tagcodec.decode_photo(path, tags, metadata, src)
        raise ConflictError(f"Could not republish {path}")

    async def _first_publish(self, path: str, resized: bytes, probe: images.ImageProbe, info: BlobInfo, src: str) -> Photo:
        tags = dict(info.tags)
        tags[tagcodec.URL] = src
        metadata = self._sized(info.metadata, probe, resized)

        await self.rule.release_others(path, tags)
        await self.store.upload(
            self.images_container,
            path,
            resized,
            tags=tags,
            metadata=metadata,
            content_type=probe.content_type,
        )
        # Another publisher may have claimed the flag while we were writing
        await self.rule.release_others(path, tags)
        log.info("Published %s/%s at %sx%s", self.images_container, path, probe.width, probe.height)
        return tagcodec.decode_photo(path, tags, metadata, src)

    async def _published_info(self, path: str) -> Optional[BlobInfo]:
        try:
            return await self.store.get_info(self.images_container, path)
        except BlobNotFound:
            return None

    @staticmethod
    def _sized(metadata, probe: images.ImageProbe, resized: bytes) -> Dict[str, str]:
        sized = dict(metadata)
        sized[tagcodec.WIDTH] = str(probe.width)
        sized[tagcodec.HEIGHT] = str(probe.height)
        sized[tagcodec.SIZE] = str(len(resized))
        return sized
