from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from . import tmdb
from .rate_limit import CATALOG_RATE_LIMIT, limiter

router = APIRouter(tags=["catalog"])


@router.get("/api/movies/search")
@limiter.limit(CATALOG_RATE_LIMIT)
async def search_movies(request: Request, query: str | None = None, page: int = 1):
    if not query or not query.strip():
        return JSONResponse(status_code=400, content={"error": "Query parameter is required"})
    return await tmdb.search_movie(query.strip(), page=max(1, page))


@router.get("/api/movies/{movie_id}")
@limiter.limit(CATALOG_RATE_LIMIT)
async def movie_details(request: Request, movie_id: int):
    return await tmdb.get_movie_details(movie_id)


@router.get("/api/movies/{movie_id}/credits")
@limiter.limit(CATALOG_RATE_LIMIT)
async def movie_credits(request: Request, movie_id: int):
    return await tmdb.get_movie_credits(movie_id)


@router.get("/api/movies/{movie_id}/images")
@limiter.limit(CATALOG_RATE_LIMIT)
async def movie_images(request: Request, movie_id: int):
    return await tmdb.get_movie_images(movie_id)


@router.get("/api/people/{person_id}")
@limiter.limit(CATALOG_RATE_LIMIT)
async def person_details(request: Request, person_id: int):
    return await tmdb.get_person_details(person_id)


@router.get("/api/people/{person_id}/movie_credits")
@limiter.limit(CATALOG_RATE_LIMIT)
async def person_movie_credits(request: Request, person_id: int):
    return await tmdb.get_person_movie_credits(person_id)
