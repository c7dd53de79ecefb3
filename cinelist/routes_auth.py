import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field

from .auth import extract_bearer, get_owner
from .rate_limit import AUTH_RATE_LIMIT, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class CredentialsRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


async def _identity_call(request: Request, method: str, path: str, **kwargs) -> httpx.Response:
    settings = request.app.state.settings
    if not settings.identity_url:
        raise HTTPException(status_code=503, detail="Identity service is not configured")
    headers = kwargs.pop("headers", {})
    if settings.identity_api_key:
        headers["apikey"] = settings.identity_api_key
    client: httpx.AsyncClient = request.app.state.identity_client
    try:
        return await client.request(method, f"{settings.identity_url}{path}", headers=headers, **kwargs)
    except httpx.HTTPError:
        logger.warning("Identity service unreachable during %s %s", method, path)
        raise HTTPException(status_code=502, detail="Identity service unavailable")


def _session_payload(data: dict) -> dict:
    user = data.get("user") or {}
    return {
        "access_token": data.get("access_token"),
        "refresh_token": data.get("refresh_token"),
        "expires_in": data.get("expires_in"),
        "user": {"id": user.get("id"), "email": user.get("email")},
    }


@router.post("/signup")
@limiter.limit(AUTH_RATE_LIMIT)
async def signup(body: CredentialsRequest, request: Request):
    resp = await _identity_call(
        request, "POST", "/auth/v1/signup",
        json={"email": body.email.lower(), "password": body.password},
    )
    if resp.status_code >= 400:
        raise HTTPException(status_code=400, detail="Signup failed")
    return {"success": True, **_session_payload(resp.json())}


@router.post("/login")
@limiter.limit(AUTH_RATE_LIMIT)
async def login(body: CredentialsRequest, request: Request):
    resp = await _identity_call(
        request, "POST", "/auth/v1/token",
        params={"grant_type": "password"},
        json={"email": body.email.lower(), "password": body.password},
    )
    if resp.status_code >= 400:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"success": True, **_session_payload(resp.json())}


@router.post("/logout")
async def logout(request: Request):
    token = extract_bearer(request.headers.get("authorization"))
    await _identity_call(
        request, "POST", "/auth/v1/logout",
        headers={"Authorization": f"Bearer {token}"},
    )
    return {"success": True}


@router.get("/me")
async def me(owner_id: str | None = Depends(get_owner)):
    return {"id": owner_id, "authenticated": owner_id is not None}
