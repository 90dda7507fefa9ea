# Top imports
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from photo_api import __version__
from photo_api.config import Settings, get_settings
from photo_api.core.handlers import register_error_handlers
from photo_api.core.logging import configure_logging
from photo_api.core.middleware import ErrorEnvelopeMiddleware, SecurityHeadersMiddleware
from photo_api.routers import build_router
from photo_api.services import metrics
from photo_api.services.blob_store import BlobStore, create_blob_store
from photo_api.services.covers import CoverImageRule, CoverRepair
from photo_api.services.observability import init_observability
from photo_api.services.photos import PhotoQueryService
from photo_api.services.security import TokenVerifier
from photo_api.services.updates import PhotoUpdateService
from photo_api.services.upload import UploadPipeline

log = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BlobStore] = None,
    verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or create_blob_store(settings)
    verifier = verifier or TokenVerifier(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Starting %s (storage=%s, images=%s)", settings.SERVICE_NAME,
                 settings.STORAGE_DRIVER, settings.IMAGES_CONTAINER_NAME)
        yield
        log.info("Shutting down %s...", settings.SERVICE_NAME)
        await store.close()

    app = FastAPI(
        title="Photo API",
        description="Tag-indexed photo gallery backed by blob storage",
        version=__version__,
        lifespan=lifespan,
    )

    rule = CoverImageRule(store, settings.IMAGES_CONTAINER_NAME, settings.COVER_UPDATE_RETRIES)
    repair = CoverRepair(store, settings.IMAGES_CONTAINER_NAME) if settings.COVER_REPAIR_ENABLED else None
    app.state.settings = settings
    app.state.store = store
    app.state.verifier = verifier
    app.state.photos = PhotoQueryService(store, settings, repair=repair)
    app.state.uploads = UploadPipeline(store, settings)
    app.state.updates = PhotoUpdateService(store, settings, rule)

    register_error_handlers(app)
    app.include_router(build_router())

    # Middleware setup
    app.add_middleware(ErrorEnvelopeMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware, production=settings.is_production)

    # Enable Prometheus metrics if METRICS_ENABLED=1
    metrics.init_metrics(settings.METRICS_ENABLED)
    metrics.metrics_middleware(app)
    app.add_api_route("/metrics", metrics.metrics_endpoint, methods=["GET"], include_in_schema=False)

    # Correlation ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request.state.rid = rid
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        return response

    return app


def run():
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    init_observability(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.SERVICE_PORT)


if __name__ == "__main__":
    run()
