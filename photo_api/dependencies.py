"""
Request-scoped access to the components built by ``create_app``.
"""
from fastapi import Request

from photo_api.config import Settings
from photo_api.services.photos import PhotoQueryService
from photo_api.services.updates import PhotoUpdateService
from photo_api.services.upload import UploadPipeline


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_photos(request: Request) -> PhotoQueryService:
    return request.app.state.photos


def get_uploads(request: Request) -> UploadPipeline:
    return request.app.state.uploads


def get_updates(request: Request) -> PhotoUpdateService:
    return request.app.state.updates
