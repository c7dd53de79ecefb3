"""Shared async client for the TMDB v3 API.

The client is created on first use and reused for every catalog request until
``close_client`` runs at shutdown. ``TMDB_API_KEY`` is a v4 read-access token.
"""
import logging
import os

import httpx

logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"
DEFAULT_TIMEOUT = 10.0
_catalog_client: httpx.AsyncClient | None = None


def _read_token() -> str:
    token = os.environ.get("TMDB_API_KEY", "").strip()
    if not token:
        raise RuntimeError("TMDB_API_KEY is not configured")
    return token


def _read_timeout() -> float:
    raw = os.environ.get("TMDB_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return max(1.0, float(raw))
    except ValueError:
        logger.warning("Ignoring invalid TMDB_TIMEOUT=%r", raw)
        return DEFAULT_TIMEOUT


async def _get_client() -> httpx.AsyncClient:
    global _catalog_client
    if _catalog_client is None:
        _catalog_client = httpx.AsyncClient(base_url=TMDB_BASE_URL, timeout=_read_timeout())
    return _catalog_client


async def close_client() -> None:
    global _catalog_client
    if _catalog_client is not None:
        await _catalog_client.aclose()
        _catalog_client = None


async def _get(path: str, params: dict | None = None) -> dict:
    # TMDB v4 read-access tokens go in the Authorization header, not the query string.
    headers = {
        "Authorization": f"Bearer {_read_token()}",
        "Content-Type": "application/json",
    }
    client = await _get_client()
    resp = await client.get(path, params=params or {}, headers=headers)
    resp.raise_for_status()
    return resp.json()


async def search_movie(query: str, page: int = 1) -> dict:
    return await _get("/search/movie", {"query": query, "page": page})


async def get_movie_details(movie_id: int) -> dict:
    return await _get(f"/movie/{movie_id}")


async def get_movie_credits(movie_id: int) -> dict:
    return await _get(f"/movie/{movie_id}/credits")


async def get_movie_images(movie_id: int) -> dict:
    return await _get(f"/movie/{movie_id}/images")


async def get_person_details(person_id: int) -> dict:
    return await _get(f"/person/{person_id}")


async def get_person_movie_credits(person_id: int) -> dict:
    data = await _get(f"/person/{person_id}/movie_credits")
    cast = data.get("cast") or []
    # Newest first; undated credits sink to the bottom.
    data["cast"] = sorted(cast, key=lambda item: item.get("release_date") or "", reverse=True)
    return data
