from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_owner
from .database import get_db
from .errors import ValidationError
from .models import serialize_entry
from .store import WatchlistStore

router = APIRouter(prefix="/api/watchlist", tags=["watchlist"])


def get_store(request: Request, db: AsyncSession = Depends(get_db)) -> WatchlistStore:
    return WatchlistStore(db, scoped_by_owner=request.app.state.settings.scoped_by_owner)


@router.get("")
async def list_watchlist(
    owner_id: str | None = Depends(get_owner),
    store: WatchlistStore = Depends(get_store),
):
    rows = await store.list(owner_id)
    return [serialize_entry(row) for row in rows]


@router.post("")
async def add_watchlist_item(
    payload: Any = Body(None),
    owner_id: str | None = Depends(get_owner),
    store: WatchlistStore = Depends(get_store),
):
    entry_id = await store.add(owner_id, payload)
    return {"success": True, "message": "Movie added to watchlist", "id": entry_id}


@router.delete("/{movie_id}")
async def remove_watchlist_item(
    movie_id: str,
    owner_id: str | None = Depends(get_owner),
    store: WatchlistStore = Depends(get_store),
):
    if not (movie_id.isascii() and movie_id.isdecimal()) or int(movie_id) <= 0:
        raise ValidationError("Invalid movie ID")
    removed = await store.remove(owner_id, int(movie_id))
    return {"success": True, "message": "Movie removed from watchlist", "removed": removed > 0}
