"""Bearer token verification against a mocked JWKS endpoint"""

import httpx
import pytest

from photo_api.core.errors import AuthFailure, UpstreamUnavailable
from photo_api.services.security import JwksClient


async def test_valid_token_with_role(verifier, make_token):
    user = await verifier.authorize(make_token())
    assert user.subject == "user-1"
    assert "photo.upload" in user.roles


async def test_space_separated_role_claim(verifier, make_token):
    user = await verifier.authorize(make_token(roles="reader photo.upload"))
    assert user.roles == ["reader", "photo.upload"]


async def test_missing_role(verifier, make_token):
    with pytest.raises(AuthFailure):
        await verifier.authorize(make_token(roles=["reader"]))


async def test_expired_token(verifier, make_token):
    with pytest.raises(AuthFailure):
        await verifier.authorize(make_token(expires_in=-3600))


async def test_wrong_audience(verifier, make_token):
    with pytest.raises(AuthFailure):
        await verifier.authorize(make_token(audience="api://other"))


async def test_wrong_issuer(verifier, make_token):
    with pytest.raises(AuthFailure):
        await verifier.authorize(make_token(issuer="https://evil.test/"))


async def test_garbage_token(verifier):
    with pytest.raises(AuthFailure):
        await verifier.authorize("not-a-jwt")


async def test_unknown_kid_refetches_then_fails(verifier, make_token, jwks_calls):
    await verifier.authorize(make_token())
    assert len(jwks_calls) == 1
    with pytest.raises(AuthFailure):
        await verifier.authorize(make_token(kid="rotated"))
    assert len(jwks_calls) == 2


async def test_keys_are_cached(verifier, make_token, jwks_calls):
    await verifier.authorize(make_token())
    await verifier.authorize(make_token())
    assert len(jwks_calls) == 1


async def test_jwks_outage_is_upstream_error():
    def handler(request):
        return httpx.Response(503)

    client = JwksClient("https://login.test/keys", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(UpstreamUnavailable):
        await client.get_key("k")
