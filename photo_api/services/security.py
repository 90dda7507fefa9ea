import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt

from photo_api.config import Settings
from photo_api.core.errors import AuthFailure, UpstreamUnavailable

log = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


class AuthUser:
    def __init__(self, subject: str, roles: List[str]):
        self.subject = subject
        self.roles = roles


class JwksClient:
    """Fetches the signing keys and caches them for ``ttl`` seconds."""

    def __init__(self, url: str, ttl: int = 300, http_client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.ttl = ttl
        self._http = http_client
        self._keys: List[Dict[str, Any]] = []
        self._fetched_at = 0.0

    async def _fetch(self) -> List[Dict[str, Any]]:
        try:
            if self._http is not None:
                r = await self._http.get(self.url)
            else:
                async with httpx.AsyncClient(timeout=10) as client:
                    r = await client.get(self.url)
            r.raise_for_status()
            keys = r.json().get("keys") or []
        except (httpx.HTTPError, ValueError) as e:
            log.error("JWKS fetch failed url=%s: %s", self.url, e)
            raise UpstreamUnavailable("Unable to fetch signing keys") from e
        self._keys = keys
        self._fetched_at = time.monotonic()
        log.info("Loaded %s signing keys from %s", len(keys), self.url)
        return keys

    async def get_key(self, kid: Optional[str]) -> Dict[str, Any]:
        stale = time.monotonic() - self._fetched_at > self.ttl
        keys = await self._fetch() if stale or not self._keys else self._keys
        key = _find_key(keys, kid)
        if key is None and not stale:
            # Keys may have rotated since the last fetch
            key = _find_key(await self._fetch(), kid)
        if key is None:
            raise AuthFailure("Unknown signing key")
        return key


def _find_key(keys: List[Dict[str, Any]], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    for key in keys:
        if kid is None or key.get("kid") == kid:
            return key
    return None


class TokenVerifier:
    def __init__(self, settings: Settings, jwks: Optional[JwksClient] = None):
        self.algorithms = list(settings.JWT_ALGORITHMS)
        self.audience = settings.JWT_AUDIENCE
        self.issuer = settings.JWT_ISSUER
        self.role_name = settings.ROLE_NAME
        self.role_claim = settings.ROLE_CLAIM
        self.jwks = jwks or JwksClient(settings.JWKS_URL, settings.JWKS_CACHE_TTL)

    async def verify(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.JWTError:
            raise AuthFailure("Invalid token")
        key = await self.jwks.get_key(header.get("kid"))
        try:
            return jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None, "leeway": 30},
            )
        except jwt.ExpiredSignatureError:
            raise AuthFailure("Token expired")
        except jwt.JWTError:
            raise AuthFailure("Invalid token")

    async def authorize(self, token: str) -> AuthUser:
        claims = await self.verify(token)
        roles = claims.get(self.role_claim) or []
        if isinstance(roles, str):
            roles = roles.split()
        if self.role_name not in roles:
            log.warning("Token for %s lacks role %s", claims.get("sub"), self.role_name)
            raise AuthFailure(f"Missing required role '{self.role_name}'")
        return AuthUser(str(claims.get("sub", "")), list(roles))


async def require_uploader(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> AuthUser:
    if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise AuthFailure("Missing bearer token")
    verifier: TokenVerifier = request.app.state.verifier
    return await verifier.authorize(creds.credentials)
