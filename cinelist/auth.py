import logging
from typing import Protocol

import httpx
from fastapi import Request
from jose import JWTError, jwt

from .errors import AuthError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def extract_bearer(header: str | None) -> str:
    if not header or not header.strip():
        raise AuthError("Not authenticated")
    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise AuthError("Malformed authorization header")
    return token


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> str: ...


class IdentityServiceVerifier:
    """Asks the identity service who owns ``token``. Nothing is cached."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: str = ""):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    async def verify(self, token: str) -> str:
        if not self.base_url:
            raise AuthError("Identity service is not configured")
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            resp = await self.client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Identity service unreachable: %s", exc.__class__.__name__)
            raise AuthError("Identity service unavailable") from exc
        if not resp.is_success:
            logger.info("Identity service rejected credential (status=%s)", resp.status_code)
            raise AuthError("Invalid or expired token")
        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError("Invalid identity service response") from exc
        owner_id = str(data.get("id") or "").strip() if isinstance(data, dict) else ""
        if not owner_id:
            raise AuthError("Invalid identity service response")
        return owner_id


class JwtVerifier:
    """Verifies identity-service access tokens locally with the shared signing secret."""

    def __init__(self, secret: str, audience: str | None = "authenticated"):
        self.secret = secret
        self.audience = audience or None

    async def verify(self, token: str) -> str:
        if not self.secret:
            raise AuthError("Token verification is not configured")
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            logger.info("Rejected access token: %s", exc.__class__.__name__)
            raise AuthError("Invalid or expired token") from exc
        owner_id = str(payload.get("sub") or "").strip()
        if not owner_id:
            raise AuthError("Invalid token")
        return owner_id


class OwnershipGate:
    """Resolves the acting owner for a request. Bypassed in legacy single-owner mode."""

    def __init__(self, verifier: TokenVerifier | None, scoped_by_owner: bool = True):
        self.verifier = verifier
        self.scoped_by_owner = scoped_by_owner

    async def resolve_owner(self, credential: str | None) -> str | None:
        if not self.scoped_by_owner:
            return None
        token = extract_bearer(credential)
        if self.verifier is None:
            raise AuthError("Token verification is not configured")
        return await self.verifier.verify(token)


async def get_owner(request: Request) -> str | None:
    gate: OwnershipGate = request.app.state.gate
    return await gate.resolve_owner(request.headers.get("authorization"))
