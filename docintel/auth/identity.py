"""
Identity Providers — who is calling the project endpoints

One narrow interface, two implementations selected by AUTH_PROVIDER:

  jwt     OIDC bearer tokens (Cognito, Auth0, ...) signed with RS256.
          We fetch the public JWKS once and cache it (TTL: 1 hour). If a
          kid is missing we force-refresh, which handles key rotation.
  header  Development only: trusts an X-User-ID header.

Both yield an Identity whose user_id is the stable `sub` of the caller.
Only project endpoints consume identity; document retrieval is gated by
document-scoped API keys instead.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Annotated

import httpx
from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from pydantic import BaseModel

from docintel.core.config import settings
from docintel.core.errors import AuthError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-ID"


class Identity(BaseModel):
    """Verified caller identity — passed to route handlers."""
    user_id:  str
    email:    str | None = None
    provider: str


class IdentityProvider(ABC):

    name: str = "abstract"

    @abstractmethod
    async def authenticate(self, request: Request) -> Identity:
        """Return the caller's identity or raise AuthError."""


# ---------------------------------------------------------------------------
# Header provider (development)
# ---------------------------------------------------------------------------

class HeaderIdentityProvider(IdentityProvider):

    name = "header"

    async def authenticate(self, request: Request) -> Identity:
        user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
        if not user_id:
            raise AuthError(f"Missing {USER_ID_HEADER} header", error_code="UNAUTHENTICATED")
        return Identity(user_id=user_id, provider=self.name)


# ---------------------------------------------------------------------------
# JWT provider (OIDC)
# ---------------------------------------------------------------------------

class JWKSCache:
    """In-memory JWKS cache keyed by issuer, TTL-based."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)

    def clear(self) -> None:
        self._entries.clear()

    async def _fetch(self, issuer: str) -> dict:
        jwks_uri = f"{issuer.rstrip('/')}/.well-known/jwks.json"
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(jwks_uri)
            resp.raise_for_status()
            return resp.json()

    async def get(self, issuer: str, *, force: bool = False) -> dict:
        now = time.monotonic()
        cached = self._entries.get(issuer)
        if cached and not force and (now - cached[1]) < self._ttl:
            return cached[0]

        try:
            jwks = await self._fetch(issuer)
        except httpx.HTTPError as exc:
            logger.error("JWKS fetch failed | issuer=%s error=%s", issuer, exc)
            raise AuthError("Unable to verify token: identity provider unreachable") from exc

        self._entries[issuer] = (jwks, now)
        logger.debug("JWKS refreshed for issuer: %s", issuer)
        return jwks

    async def get_signing_key(self, token: str, issuer: str):
        """
        Extract kid from token header, fetch matching public key from JWKS.
        Force-refreshes the cache if the kid is not found.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthError("Invalid token header") from exc

        kid = header.get("kid")
        for attempt in range(2):   # 0 = cached, 1 = force refresh
            jwks = await self.get(issuer, force=attempt == 1)
            for key_data in jwks.get("keys", []):
                if key_data.get("kid") == kid:
                    return jwk.construct(key_data).public_key()

        raise AuthError(f"Unable to find signing key for kid={kid}")


class JWTIdentityProvider(IdentityProvider):

    name = "jwt"

    def __init__(
        self,
        issuer: str | None = None,
        audience: str | None = None,
        cache: JWKSCache | None = None,
    ) -> None:
        self._issuer = issuer or settings.auth_issuer
        self._audience = audience or settings.auth_audience
        self._cache = cache or JWKSCache()

    async def authenticate(self, request: Request) -> Identity:
        auth = request.headers.get("Authorization") or ""
        scheme, _, token = auth.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthError("Missing bearer token", error_code="UNAUTHENTICATED")
        return await self.verify_token(token.strip())

    async def verify_token(self, token: str) -> Identity:
        """
        Verify a JWT token:
          1. Fetch matching public key from JWKS (cached).
          2. Verify signature, expiry, issuer, audience.
          3. Return the caller's sub as user_id.
        """
        signing_key = await self._cache.get_signing_key(token, self._issuer)

        try:
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": True},
            )
        except ExpiredSignatureError as exc:
            raise AuthError("Token has expired", error_code="TOKEN_EXPIRED") from exc
        except JWTError as exc:
            raise AuthError(f"Invalid token: {exc}") from exc

        sub = claims.get("sub")
        if not sub:
            raise AuthError("Token missing sub claim")
        return Identity(user_id=str(sub), email=claims.get("email"), provider=self.name)


# ---------------------------------------------------------------------------
# Factory + FastAPI dependency
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_identity_provider() -> IdentityProvider:
    provider = settings.auth_provider.lower()

    if provider == "header":
        return HeaderIdentityProvider()
    if provider == "jwt":
        return JWTIdentityProvider()

    raise ValueError(
        f"Unknown auth provider: '{provider}'. "
        f"Valid options: 'header', 'jwt'"
    )


async def get_current_identity(
    request: Request,
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> Identity:
    """
    FastAPI dependency for routes that need a caller identity:

        @router.get("/projects")
        async def list_projects(identity: CurrentIdentity): ...
    """
    return await provider.authenticate(request)


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
