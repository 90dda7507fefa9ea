"""
Cover image consistency.

A collection has at most one photo tagged ``collectionImage=true`` and an
album at most one tagged ``albumImage=true``. The store has no cross-object
transactions, so both operations here are a query followed by conditional
(``if_tags``) writes: a conditional write fails when another writer touched
the blob's tags since we read them, and we re-read and retry.

Concurrent promotions in the same scope can still leave two holders for a
moment; each promoter clears every other holder after its own write, so at
quiescence at most one remains (possibly none, which the read-path repair
fixes).
"""

import logging
from typing import Dict, List, Mapping, Optional

from photo_api.core.errors import BlobNotFound, ConflictError
from photo_api.services import metrics, tags as tagcodec
from photo_api.services.blob_store import BlobItem, BlobStore
from photo_api.services.tag_query import build_filter

log = logging.getLogger(__name__)


def cover_scopes(tags: Mapping[str, str]) -> List[Dict[str, str]]:
    """The (flag, scope predicates) pairs a tag set claims a cover for."""
    scopes = []
    collection = tags.get(tagcodec.COLLECTION, "")
    album = tags.get(tagcodec.ALBUM, "")
    if tagcodec.parse_bool(tags.get(tagcodec.COLLECTION_IMAGE)):
        scopes.append({tagcodec.COLLECTION: collection, tagcodec.COLLECTION_IMAGE: tagcodec.TRUE})
    if tagcodec.parse_bool(tags.get(tagcodec.ALBUM_IMAGE)):
        scopes.append({tagcodec.COLLECTION: collection, tagcodec.ALBUM: album, tagcodec.ALBUM_IMAGE: tagcodec.TRUE})
    return scopes


class CoverImageRule:
    def __init__(self, store: BlobStore, container: str, retries: int = 3):
        self.store = store
        self.container = container
        self.retries = max(1, retries)

    async def release_others(self, path: str, tags: Mapping[str, str]) -> List[str]:
        """Clear the cover flags ``tags`` claims on every other holder. Returns the cleared paths."""
        cleared = []
        for scope in cover_scopes(tags):
            flag = next(k for k in scope if k in (tagcodec.COLLECTION_IMAGE, tagcodec.ALBUM_IMAGE))
            holders = await self.store.find_by_tags(build_filter(self.container, scope))
            for holder in holders:
                if holder.name == path:
                    continue
                if await self._clear_flag(holder.name, flag):
                    cleared.append(holder.name)
        return cleared

    async def _clear_flag(self, name: str, flag: str) -> bool:
        for _ in range(self.retries):
            try:
                current = (await self.store.get_info(self.container, name)).tags
            except BlobNotFound:
                return False
            if not tagcodec.parse_bool(current.get(flag)):
                return False
            updated = dict(current)
            updated[flag] = tagcodec.FALSE
            try:
                await self.store.set_tags(self.container, name, updated, if_tags=current)
            except ConflictError:
                metrics.record_cover_conflict()
                log.info("Tags of %s changed while clearing %s, retrying", name, flag)
                continue
            log.info("Cleared %s on %s/%s", flag, self.container, name)
            return True
        raise ConflictError(f"Could not clear {flag} on {name}")


class CoverRepair:
    """
    Promotes a photo to cover when a collection or album has none.

    This is the write performed on the read path; the query engine only
    calls it when constructed with a repair collaborator.
    """

    def __init__(self, store: BlobStore, container: str):
        self.store = store
        self.container = container

    async def promote_collection_cover(self, collection: str) -> Optional[BlobItem]:
        return await self._promote(
            {tagcodec.COLLECTION: collection},
            tagcodec.COLLECTION_IMAGE,
        )

    async def promote_album_cover(self, collection: str, album: str) -> Optional[BlobItem]:
        return await self._promote(
            {tagcodec.COLLECTION: collection, tagcodec.ALBUM: album},
            tagcodec.ALBUM_IMAGE,
        )

    async def _promote(self, scope: Dict[str, str], flag: str) -> Optional[BlobItem]:
        candidates = await self.store.find_by_tags(build_filter(self.container, scope))
        if not candidates:
            return None
        live = [c for c in candidates if not tagcodec.parse_bool(c.tags.get(tagcodec.IS_DELETED))]
        chosen = (live or candidates)[0]

        info = await self.store.get_info(self.container, chosen.name)
        updated = dict(info.tags)
        updated[flag] = tagcodec.TRUE
        try:
            await self.store.set_tags(self.container, chosen.name, updated, if_tags=info.tags)
        except ConflictError:
            # Someone else wrote first; whatever holds the flag now wins
            metrics.record_cover_conflict()
            holders = await self.store.find_by_tags(build_filter(self.container, {**scope, flag: tagcodec.TRUE}))
            return holders[0] if holders else None
        metrics.record_cover_repair(flag)
        log.info("Promoted %s/%s to %s", self.container, chosen.name, flag)
        return BlobItem(container=self.container, name=chosen.name, tags=updated)
