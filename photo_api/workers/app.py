"""
HTTP surface of the workers.

Queue messages arrive through Dapr input bindings: the sidecar probes
``OPTIONS /{binding}`` at startup and then POSTs each message body to
``/{binding}``. A 2xx reply acknowledges the message; anything else leaves
it on the queue for redelivery.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response

from photo_api import __version__
from photo_api.config import Settings, get_settings
from photo_api.core.handlers import register_error_handlers
from photo_api.core.logging import configure_logging
from photo_api.core.middleware import ErrorEnvelopeMiddleware
from photo_api.services import metrics
from photo_api.services.blob_store import BlobStore, create_blob_store
from photo_api.services.observability import init_observability
from photo_api.workers.events import decode_event
from photo_api.workers.faces import FaceWorker
from photo_api.workers.resize import ResizeWorker

log = logging.getLogger(__name__)


def create_worker_app(settings: Optional[Settings] = None, store: Optional[BlobStore] = None) -> FastAPI:
    settings = settings or get_settings()
    store = store or create_blob_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Starting %s worker (bindings: %s)", settings.SERVICE_NAME, ", ".join(bindings))
        yield
        log.info("Shutting down %s worker", settings.SERVICE_NAME)
        await store.close()

    app = FastAPI(title=f"{settings.SERVICE_NAME} worker", version=__version__, lifespan=lifespan)
    register_error_handlers(app)
    app.add_middleware(ErrorEnvelopeMiddleware)
    metrics.init_metrics(settings.METRICS_ENABLED)
    metrics.metrics_middleware(app)
    app.add_api_route("/metrics", metrics.metrics_endpoint, methods=["GET"], include_in_schema=False)

    resizer = ResizeWorker(store, settings)
    app.state.store = store
    app.state.resize_worker = resizer
    bindings = [settings.UPLOADS_QUEUE_BINDING]

    async def binding_probe():
        return Response(status_code=200)

    async def on_upload(request: Request):
        event = decode_event(await request.body())
        photo = await resizer.handle(event)
        return {"name": photo.name, "width": photo.width, "height": photo.height}

    app.add_api_route(f"/{settings.UPLOADS_QUEUE_BINDING}", binding_probe, methods=["OPTIONS"])
    app.add_api_route(f"/{settings.UPLOADS_QUEUE_BINDING}", on_upload, methods=["POST"])

    if settings.FACE_RECOGNITION_ENABLED:
        face_worker = FaceWorker(store, settings)
        app.state.face_worker = face_worker
        bindings.append(settings.FACES_QUEUE_BINDING)

        async def on_published(request: Request):
            event = decode_event(await request.body())
            return await face_worker.handle(event)

        app.add_api_route(f"/{settings.FACES_QUEUE_BINDING}", binding_probe, methods=["OPTIONS"])
        app.add_api_route(f"/{settings.FACES_QUEUE_BINDING}", on_published, methods=["POST"])

    @app.get("/health")
    async def health():
        return {"status": "healthy", "bindings": bindings}

    return app


def run():
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    init_observability(settings)
    uvicorn.run(create_worker_app(settings), host="0.0.0.0", port=settings.SERVICE_PORT)


if __name__ == "__main__":
    run()
