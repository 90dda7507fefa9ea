from fastapi import APIRouter
import logging


def build_router() -> APIRouter:
    router = APIRouter()
    log = logging.getLogger("routers")

    from .api import api as api_router
    router.include_router(api_router)
    log.info("Loaded router: api")

    from .health import router as health_router
    router.include_router(health_router)
    log.info("Loaded router: health")

    return router
