"""
Decoding of queue-delivered blob events.

The queue binding hands us the raw queue message: a base64 string wrapping an
Event Grid ``BlobCreated`` event. Only ``data.url`` and ``data.contentType``
matter to the workers.
"""

import base64
import binascii
import json
from typing import Tuple
from urllib.parse import unquote, urlsplit

from pydantic import ValidationError

from photo_api.core.errors import EventDecodeError
from photo_api.schemas.photo import BlobEvent


def decode_event(payload: bytes) -> BlobEvent:
    raw = payload.strip()
    # Some bindings deliver the message as a JSON string literal
    if raw.startswith(b'"') and raw.endswith(b'"'):
        try:
            raw = json.loads(raw).encode("ascii")
        except (ValueError, UnicodeEncodeError) as e:
            raise EventDecodeError(f"Event is not a base64 string: {e}")
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EventDecodeError(f"Event is not valid base64: {e}")
    try:
        data = json.loads(decoded)
    except ValueError as e:
        raise EventDecodeError(f"Event is not valid JSON: {e}")
    # Event Grid may batch events in an array; the queue subscription sends one
    if isinstance(data, list):
        if len(data) != 1:
            raise EventDecodeError(f"Expected a single event, got {len(data)}")
        data = data[0]
    try:
        return BlobEvent.model_validate(data)
    except ValidationError as e:
        raise EventDecodeError(f"Event is missing required fields: {e.errors()[0].get('loc')}")


def split_blob_url(url: str) -> Tuple[str, str]:
    """``https://acct/.../{container}/{collection}/{album}/{file}`` -> (container, 'collection/album/file')."""
    parts = [unquote(p) for p in urlsplit(url).path.split("/") if p]
    if len(parts) < 4:
        raise EventDecodeError(f"Blob url {url} does not name container/collection/album/file")
    container, collection, album, filename = parts[-4:]
    return container, f"{collection}/{album}/{filename}"
