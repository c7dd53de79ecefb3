from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .errors import ValidationError

DESCRIPTIVE_FIELDS = ("title", "poster_path", "release_date", "overview", "vote_average")


class Base(DeclarativeBase):
    pass


class WatchlistEntry(Base):
    __tablename__ = "watchlist"
    # AUTOINCREMENT keeps SQLite from reusing the id of a deleted row.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str | None] = mapped_column(String, nullable=True)
    movie_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    poster_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=True,
    )


class MoviePayload(BaseModel):
    """Catalog item as posted by the frontend. Only ``id`` and ``title`` are required."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(ge=1, validation_alias=AliasChoices("id", "movie_id"))
    title: str = Field(min_length=1)
    poster_path: str | None = None
    release_date: str | None = None
    overview: str | None = None
    vote_average: float | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("poster_path", "release_date", "overview", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value


@dataclass(frozen=True)
class WatchlistRecord:
    movie_id: int
    title: str
    poster_path: str | None = None
    release_date: str | None = None
    overview: str | None = None
    vote_average: float | None = None

    def descriptive_values(self) -> dict:
        return {name: getattr(self, name) for name in DESCRIPTIVE_FIELDS}


def _describe_errors(exc: PydanticValidationError) -> str:
    fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
    if not fields:
        return "Invalid movie payload"
    return f"Invalid or missing field(s): {', '.join(fields)}"


def parse_movie_payload(raw: Any) -> WatchlistRecord:
    if not isinstance(raw, dict):
        raise ValidationError("Movie payload must be a JSON object")
    if raw.get("id") in (None, "") and raw.get("movie_id") in (None, ""):
        raise ValidationError("Movie ID and title are required")
    if not str(raw.get("title") or "").strip():
        raise ValidationError("Movie ID and title are required")
    try:
        payload = MoviePayload.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_errors(exc)) from exc
    return WatchlistRecord(
        movie_id=payload.id,
        title=payload.title,
        poster_path=payload.poster_path,
        release_date=payload.release_date,
        overview=payload.overview,
        vote_average=payload.vote_average,
    )


def serialize_entry(entry: WatchlistEntry) -> dict:
    return {
        "id": int(entry.id),
        "movie_id": int(entry.movie_id),
        "title": entry.title,
        "poster_path": entry.poster_path,
        "release_date": entry.release_date,
        "overview": entry.overview,
        "vote_average": entry.vote_average,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
