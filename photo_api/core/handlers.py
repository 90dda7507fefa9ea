import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from photo_api.core.errors import NotModified, PhotoApiError

log = logging.getLogger(__name__)


async def photo_api_error_handler(request: Request, exc: PhotoApiError):
    if isinstance(exc, NotModified):
        return Response(status_code=exc.status_code)
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        log.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PhotoApiError, photo_api_error_handler)
