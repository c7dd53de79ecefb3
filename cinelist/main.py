import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded

from . import tmdb
from .auth import IdentityServiceVerifier, JwtVerifier, OwnershipGate, TokenVerifier
from .config import Settings, load_settings, setup_logging
from .database import close_db, create_engine, create_sessionmaker
from .errors import WatchlistError
from .rate_limit import limiter
from .routes_auth import router as auth_router
from .routes_catalog import router as catalog_router
from .routes_watchlist import router as watchlist_router
from .schema import ensure_schema

logger = logging.getLogger(__name__)


def _build_verifier(settings: Settings, client: httpx.AsyncClient) -> TokenVerifier:
    if settings.auth_mode == "jwt":
        return JwtVerifier(settings.identity_jwt_secret, settings.identity_jwt_audience)
    return IdentityServiceVerifier(client, settings.identity_url, settings.identity_api_key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    try:
        # No traffic is accepted until the table shape is verified.
        await ensure_schema(engine, settings.scoped_by_owner)
    except Exception:
        await close_db(engine)
        raise
    app.state.engine = engine
    app.state.sessionmaker = create_sessionmaker(engine)

    identity_client = httpx.AsyncClient(timeout=settings.identity_timeout)
    app.state.identity_client = identity_client
    if app.state.gate is None:
        app.state.gate = OwnershipGate(
            _build_verifier(settings, identity_client),
            scoped_by_owner=settings.scoped_by_owner,
        )
    logger.info(
        "Watchlist service ready (scoped_by_owner=%s, auth_mode=%s)",
        settings.scoped_by_owner,
        settings.auth_mode,
    )
    yield
    await identity_client.aclose()
    await tmdb.close_client()
    await close_db(engine)


async def watchlist_error_handler(request: Request, exc: WatchlistError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Too many requests. Please try again later."})


async def catalog_error_handler(request: Request, exc: httpx.HTTPError):
    logger.warning("Catalog request failed for %s: %s", request.url.path, exc.__class__.__name__)
    return JSONResponse(status_code=502, content={"error": "Failed to fetch from movie catalog"})


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


def create_app(settings: Settings | None = None, gate: OwnershipGate | None = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.gate = gate
    app.state.limiter = limiter

    app.add_exception_handler(WatchlistError, watchlist_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(httpx.HTTPError, catalog_error_handler)
    app.middleware("http")(security_headers)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
            expose_headers=["Content-Length"],
            max_age=600,
        )

    app.include_router(auth_router)
    app.include_router(watchlist_router)
    app.include_router(catalog_router)

    if settings.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.static_dir), html=True), name="frontend")
    return app


app = create_app()
