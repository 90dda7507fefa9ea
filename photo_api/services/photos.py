"""
Photo query engine.

Semantic filters become tag filter expressions; every hit is then hydrated
with a point read of its full tags and metadata, because metadata is not
searchable. Those reads run concurrently under a semaphore.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from photo_api.config import Settings
from photo_api.core.errors import BlobNotFound
from photo_api.schemas.photo import Photo
from photo_api.services import tags as tagcodec
from photo_api.services.blob_store import BlobItem, BlobStore
from photo_api.services.covers import CoverRepair
from photo_api.services.tag_query import build_filter

log = logging.getLogger(__name__)


class PhotoQueryService:
    def __init__(self, store: BlobStore, settings: Settings, repair: Optional[CoverRepair] = None):
        self.store = store
        self.container = settings.IMAGES_CONTAINER_NAME
        self.repair = repair
        self._concurrency = max(1, settings.HYDRATE_CONCURRENCY)

    async def query(self, **predicates: str) -> List[Photo]:
        """Photos in the published container whose tags equal every predicate."""
        # Stored tags are sanitised, so a value that sanitising would change matches nothing
        if any(tagcodec.sanitize_tag_value(v) != v for v in predicates.values()):
            log.info("Tag query %s cannot match any stored photo", predicates)
            return []
        expression = build_filter(self.container, predicates)
        blobs = await self.store.find_by_tags(expression)
        log.info("Tag query %s matched %s blobs", expression, len(blobs))
        return await self.hydrate(blobs)

    async def hydrate(self, blobs: List[BlobItem]) -> List[Photo]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def one(blob: BlobItem) -> Optional[Photo]:
            async with semaphore:
                try:
                    info = await self.store.get_info(blob.container, blob.name)
                except BlobNotFound:
                    log.warning("Blob %s/%s vanished before hydration, skipping", blob.container, blob.name)
                    return None
            src = self.store.url_for(blob.container, blob.name)
            return tagcodec.decode_photo(blob.name, info.tags, info.metadata, src)

        photos = await asyncio.gather(*(one(b) for b in blobs))
        return [p for p in photos if p is not None]

    async def list_album_photos(self, collection: str, album: str) -> List[Photo]:
        return await self.query(
            **{
                tagcodec.COLLECTION: collection,
                tagcodec.ALBUM: album,
                tagcodec.IS_DELETED: tagcodec.FALSE,
            }
        )

    async def tag_list(self) -> Dict[str, List[str]]:
        """Collection name -> album names, from a flat listing of the published container."""
        albums: Dict[str, set] = {}
        for blob in await self.store.list_blobs(self.container):
            collection = blob.tags.get(tagcodec.COLLECTION, "")
            album = blob.tags.get(tagcodec.ALBUM, "")
            if not collection:
                continue
            albums.setdefault(collection, set())
            if album:
                albums[collection].add(album)
        return {c: sorted(a) for c, a in sorted(albums.items())}

    async def list_collection_covers(self) -> List[Photo]:
        covers = await self.query(**{tagcodec.COLLECTION_IMAGE: tagcodec.TRUE})
        if self.repair is None:
            return covers
        covered = {p.collection for p in covers}
        for collection in await self.tag_list():
            if collection in covered:
                continue
            promoted = await self.repair.promote_collection_cover(collection)
            if promoted is not None:
                covers.extend(await self.hydrate([promoted]))
        return covers

    async def list_album_covers(self, collection: str) -> List[Photo]:
        covers = await self.query(**{tagcodec.COLLECTION: collection, tagcodec.ALBUM_IMAGE: tagcodec.TRUE})
        if self.repair is None:
            return covers
        covered = {p.album for p in covers}
        known = (await self.tag_list()).get(collection, [])
        for album in known:
            if album in covered:
                continue
            promoted = await self.repair.promote_album_cover(collection, album)
            if promoted is not None:
                covers.extend(await self.hydrate([promoted]))
        return covers
