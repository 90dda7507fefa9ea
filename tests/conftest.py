"""
Pytest configuration and fixtures for photo API tests
"""

import asyncio
import io
import time

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jose import jwk, jwt
from PIL import Image

from photo_api.config import Settings
from photo_api.main import create_app
from photo_api.services import tags as tagcodec
from photo_api.services.blob_store import MemoryBlobStore
from photo_api.services.security import AuthUser, JwksClient, TokenVerifier, require_uploader

JWKS_URL = "https://login.test/discovery/keys"
AUDIENCE = "api://photos"
ISSUER = "https://login.test/tenant/v2.0"
KID = "test-key"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        STORAGE_DRIVER="memory",
        STORAGE_ACCOUNT_NAME="photos",
        JWKS_URL=JWKS_URL,
        JWT_AUDIENCE=AUDIENCE,
        JWT_ISSUER=ISSUER,
        MAX_IMAGE_WIDTH=160,
        MAX_IMAGE_HEIGHT=120,
        METRICS_ENABLED=True,
    )


@pytest.fixture
def store(settings):
    return MemoryBlobStore(settings.storage_url)


def make_image(width, height, fmt="JPEG", orientation=None, taken=None, noise=False):
    mode = "P" if fmt == "GIF" else "RGB"
    if noise:
        # Noise does not compress, so the scan data dominates the file
        im = Image.effect_noise((width, height), 64).convert(mode)
    else:
        im = Image.new(mode, (width, height), color=1 if mode == "P" else (200, 120, 40))
    kwargs = {}
    if fmt == "MPO":
        # Two frames, as camera JPEGs with an MPF segment carry
        kwargs.update(save_all=True, append_images=[im.copy()])
    if fmt == "JPEG" and (orientation or taken):
        exif = Image.Exif()
        if orientation:
            exif[0x0112] = orientation
        if taken:
            exif[0x0132] = taken
        kwargs["exif"] = exif.tobytes()
    buf = io.BytesIO()
    im.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def seed(store, settings):
    """Put a published photo straight into the images container."""

    async def _seed(path, collection_image=False, album_image=False, is_deleted=False,
                    width=160, height=120, description="", orientation=None):
        collection, album, _ = path.split("/", 2)
        tags = {
            tagcodec.NAME: path,
            tagcodec.COLLECTION: collection,
            tagcodec.ALBUM: album,
            tagcodec.DESCRIPTION: description,
            tagcodec.IS_DELETED: tagcodec.format_bool(is_deleted),
            tagcodec.COLLECTION_IMAGE: tagcodec.format_bool(collection_image),
            tagcodec.ALBUM_IMAGE: tagcodec.format_bool(album_image),
            tagcodec.URL: store.url_for(settings.IMAGES_CONTAINER_NAME, path),
        }
        if orientation is not None:
            tags[tagcodec.ORIENTATION] = str(orientation)
        metadata = {tagcodec.WIDTH: str(width), tagcodec.HEIGHT: str(height), tagcodec.SIZE: "3"}
        await store.upload(settings.IMAGES_CONTAINER_NAME, path, b"img", tags=tags,
                           metadata=metadata, content_type="image/jpeg")
        return tags

    return _seed


@pytest.fixture
def seed_sync(seed):
    def _seed_sync(path, **kwargs):
        return asyncio.run(seed(path, **kwargs))

    return _seed_sync


@pytest.fixture(scope="session")
def rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk.update({"kid": KID, "use": "sig"})
    return private_pem, public_jwk


@pytest.fixture
def jwks_calls():
    return []


@pytest.fixture
def verifier(settings, rsa_key, jwks_calls):
    _, public_jwk = rsa_key

    def handler(request: httpx.Request):
        jwks_calls.append(str(request.url))
        return httpx.Response(200, json={"keys": [public_jwk]})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenVerifier(settings, JwksClient(settings.JWKS_URL, settings.JWKS_CACHE_TTL, http_client=http))


@pytest.fixture
def make_token(rsa_key):
    private_pem, _ = rsa_key

    def _make_token(roles=("photo.upload",), audience=AUDIENCE, issuer=ISSUER, expires_in=600, kid=KID, **claims):
        now = int(time.time())
        payload = {"sub": "user-1", "aud": audience, "iss": issuer, "iat": now, "exp": now + expires_in}
        if roles is not None:
            payload["roles"] = roles if isinstance(roles, str) else list(roles)
        payload.update(claims)
        return jwt.encode(payload, private_pem, algorithm="RS256", headers={"kid": kid})

    return _make_token


@pytest.fixture
def app(settings, store, verifier):
    return create_app(settings, store=store, verifier=verifier)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def authed_client(app):
    """Client whose requests pass the uploader check without a token."""
    app.dependency_overrides[require_uploader] = lambda: AuthUser("tester", ["photo.upload"])
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
