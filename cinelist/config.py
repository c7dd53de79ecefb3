import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./movies.db"
DEFAULT_STATIC_DIR = Path(__file__).parent.parent / "public"
TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUE_VALUES


def _env_list(env: Mapping[str, str], name: str) -> list[str]:
    return [item.strip() for item in env.get(name, "").split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    # False selects legacy single-owner mode: no identity check, movie_id alone is unique.
    scoped_by_owner: bool = True
    auth_mode: Literal["identity", "jwt"] = "identity"
    identity_url: str = ""
    identity_api_key: str = ""
    identity_jwt_secret: str = ""
    identity_jwt_audience: str = "authenticated"
    identity_timeout: float = 10.0
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    static_dir: Path = DEFAULT_STATIC_DIR


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env

    auth_mode = env.get("AUTH_MODE", "identity").strip().lower() or "identity"
    if auth_mode not in ("identity", "jwt"):
        raise ValueError(f"AUTH_MODE must be 'identity' or 'jwt', got {auth_mode!r}")

    return Settings(
        database_url=env.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL,
        scoped_by_owner=_env_bool(env, "WATCHLIST_SCOPED_BY_OWNER", True),
        auth_mode=auth_mode,
        identity_url=env.get("IDENTITY_URL", "").strip().rstrip("/"),
        identity_api_key=env.get("IDENTITY_API_KEY", "").strip(),
        identity_jwt_secret=env.get("IDENTITY_JWT_SECRET", ""),
        identity_jwt_audience=env.get("IDENTITY_JWT_AUDIENCE", "authenticated").strip(),
        identity_timeout=max(1.0, float(env.get("IDENTITY_TIMEOUT", "10"))),
        cors_origins=_env_list(env, "CORS_ORIGINS"),
        log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        static_dir=Path(env["STATIC_DIR"]) if env.get("STATIC_DIR") else DEFAULT_STATIC_DIR,
    )


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Transport internals are noisy at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
