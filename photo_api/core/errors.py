"""
Error taxonomy for the photo API.

Services raise these; the exception handler in ``photo_api.core.handlers``
turns them into HTTP responses.
"""


class PhotoApiError(Exception):
    status_code = 500
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuthFailure(PhotoApiError):
    status_code = 401
    default_detail = "Not authenticated"


class ValidationFailure(PhotoApiError):
    status_code = 400
    default_detail = "Invalid request"


class UnsupportedImageFormat(ValidationFailure):
    default_detail = "Unsupported image format"


class EventDecodeError(ValidationFailure):
    default_detail = "Invalid event payload"


class NotFound(PhotoApiError):
    status_code = 404
    default_detail = "Not found"


class BlobNotFound(NotFound):
    default_detail = "Blob not found"


class NotModified(PhotoApiError):
    status_code = 304
    default_detail = "Not modified"


class ConflictError(PhotoApiError):
    status_code = 409
    default_detail = "Concurrent modification"


class UpstreamUnavailable(PhotoApiError):
    status_code = 500
    default_detail = "Upstream service unavailable"
