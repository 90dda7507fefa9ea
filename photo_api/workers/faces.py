import asyncio
import json
import logging
from typing import Dict, List, Optional

from photo_api.config import Settings
from photo_api.schemas.photo import BlobEvent
from photo_api.services import tags as tagcodec
from photo_api.services.blob_store import BlobStore
from photo_api.services.vision import FaceRecogniser, detect_faces
from photo_api.workers.events import split_blob_url

log = logging.getLogger(__name__)


class FaceWorker:
    """Annotates a published photo with detected face boxes and recognised people."""

    def __init__(self, store: BlobStore, settings: Settings, recogniser: Optional[FaceRecogniser] = None):
        self.store = store
        self.recogniser = recogniser or FaceRecogniser(settings.SAMPLES_DIR, settings.FACE_TOLERANCE)

    def analyse(self, data: bytes) -> Dict[str, str]:
        boxes = detect_faces(data)
        people: List[str] = self.recogniser.classify(data) if boxes else []
        return {
            tagcodec.FACES: json.dumps([[round(v, 4) for v in box] for box in boxes], separators=(",", ":")),
            tagcodec.PEOPLE: ",".join(people),
        }

    async def handle(self, event: BlobEvent) -> Dict[str, str]:
        container, path = split_blob_url(event.data.url)
        data, info = await asyncio.gather(
            self.store.download(container, path),
            self.store.get_info(container, path),
        )
        found = await asyncio.to_thread(self.analyse, data)

        metadata = dict(info.metadata)
        metadata.update(found)
        await self.store.set_metadata(container, path, metadata)
        log.info("Annotated %s/%s with people=%s", container, path, found[tagcodec.PEOPLE] or "-")
        return found
