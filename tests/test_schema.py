from datetime import datetime

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from cinelist.database import create_engine, create_sessionmaker
from cinelist.errors import SchemaError
from cinelist.models import WatchlistRecord
from cinelist.schema import ensure_schema
from cinelist.store import WatchlistStore

# Shape written by the first single-user release, before ratings and owners.
LEGACY_INLINE_TABLE = """
CREATE TABLE watchlist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_id INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    poster_path TEXT,
    release_date TEXT,
    overview TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

# Same table, with uniqueness kept in a separate named index.
LEGACY_INDEXED_TABLE = """
CREATE TABLE watchlist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    poster_path TEXT,
    release_date TEXT,
    overview TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""

# Shape written by the migration script, which stored created_at as epoch seconds.
EPOCH_TIMESTAMP_TABLE = """
CREATE TABLE IF NOT EXISTS watchlist (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    movie_id INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    poster_path TEXT,
    release_date TEXT,
    overview TEXT,
    vote_average REAL,
    created_at INTEGER DEFAULT (unixepoch('now'))
)
"""


async def _create_legacy_table(engine: AsyncEngine, ddl: str, with_index: bool = False) -> None:
    async with engine.begin() as conn:
        await conn.execute(text(ddl))
        if with_index:
            await conn.execute(text("CREATE UNIQUE INDEX movie_id_idx ON watchlist (movie_id)"))
        await conn.execute(
            text("INSERT INTO watchlist (movie_id, title) VALUES (:movie_id, :title)"),
            [{"movie_id": 42, "title": "X"}, {"movie_id": 43, "title": "Y"}],
        )


async def _columns(engine: AsyncEngine) -> list[str]:
    async with engine.connect() as conn:
        return await conn.run_sync(
            lambda sync_conn: [c["name"] for c in inspect(sync_conn).get_columns("watchlist")]
        )


async def _unique_indexes(engine: AsyncEngine) -> dict[str, list[str]]:
    async with engine.connect() as conn:
        indexes = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_indexes("watchlist"))
    return {index["name"]: index["column_names"] for index in indexes if index.get("unique")}


async def _row_count(engine: AsyncEngine) -> int:
    async with engine.connect() as conn:
        return await conn.scalar(text("SELECT COUNT(*) FROM watchlist"))


async def test_creates_table_with_owner_scoped_index(engine):
    changes = await ensure_schema(engine, scoped_by_owner=True)

    assert changes == ["create table watchlist", "create unique index watchlist_owner_movie_idx"]
    assert set(await _columns(engine)) == {
        "id", "owner_id", "movie_id", "title", "poster_path",
        "release_date", "overview", "vote_average", "created_at",
    }
    assert await _unique_indexes(engine) == {"watchlist_owner_movie_idx": ["owner_id", "movie_id"]}


async def test_creates_table_with_legacy_index(engine):
    await ensure_schema(engine, scoped_by_owner=False)
    assert await _unique_indexes(engine) == {"movie_id_idx": ["movie_id"]}


@pytest.mark.parametrize("scoped_by_owner", [True, False])
async def test_second_run_is_a_no_op(engine, scoped_by_owner):
    await ensure_schema(engine, scoped_by_owner=scoped_by_owner)
    columns = await _columns(engine)
    indexes = await _unique_indexes(engine)

    assert await ensure_schema(engine, scoped_by_owner=scoped_by_owner) == []
    assert await _columns(engine) == columns
    assert await _unique_indexes(engine) == indexes


async def test_adds_missing_columns_without_losing_rows(engine):
    await _create_legacy_table(engine, LEGACY_INLINE_TABLE)

    changes = await ensure_schema(engine, scoped_by_owner=False)

    assert changes == ["add column owner_id", "add column vote_average"]
    assert "vote_average" in await _columns(engine)
    assert await _row_count(engine) == 2
    assert await ensure_schema(engine, scoped_by_owner=False) == []
    assert await _row_count(engine) == 2


async def test_upgraded_legacy_table_serves_legacy_store(engine):
    await _create_legacy_table(engine, LEGACY_INLINE_TABLE)
    await ensure_schema(engine, scoped_by_owner=False)

    async with create_sessionmaker(engine)() as session:
        store = WatchlistStore(session, scoped_by_owner=False)
        entry_id = await store.upsert(None, WatchlistRecord(movie_id=42, title="X", vote_average=7.5))
        rows = await store.list(None)

    assert len(rows) == 2
    refreshed = next(row for row in rows if row.movie_id == 42)
    assert refreshed.id == entry_id
    assert refreshed.vote_average == 7.5


async def test_inline_legacy_uniqueness_cannot_switch_to_owner_scope(engine):
    await _create_legacy_table(engine, LEGACY_INLINE_TABLE)
    columns = await _columns(engine)

    with pytest.raises(SchemaError):
        await ensure_schema(engine, scoped_by_owner=True)

    assert await _columns(engine) == columns
    assert await _row_count(engine) == 2


async def test_switching_to_owner_scope_replaces_legacy_index(engine):
    await _create_legacy_table(engine, LEGACY_INDEXED_TABLE, with_index=True)

    changes = await ensure_schema(engine, scoped_by_owner=True)

    assert changes == [
        "add column owner_id",
        "add column vote_average",
        "drop legacy unique index movie_id_idx",
        "create unique index watchlist_owner_movie_idx",
    ]
    assert await _unique_indexes(engine) == {"watchlist_owner_movie_idx": ["owner_id", "movie_id"]}
    assert await _row_count(engine) == 2
    assert await ensure_schema(engine, scoped_by_owner=True) == []


async def test_legacy_rows_stay_ownerless_after_switch(engine):
    await _create_legacy_table(engine, LEGACY_INDEXED_TABLE, with_index=True)
    await ensure_schema(engine, scoped_by_owner=True)

    async with create_sessionmaker(engine)() as session:
        store = WatchlistStore(session, scoped_by_owner=True)
        assert await store.list("u1") == []
        await store.upsert("u1", WatchlistRecord(movie_id=42, title="X"))
        await store.upsert("u2", WatchlistRecord(movie_id=42, title="X"))
        assert [row.movie_id for row in await store.list("u1")] == [42]

    async with engine.connect() as conn:
        ownerless = await conn.scalar(text("SELECT COUNT(*) FROM watchlist WHERE owner_id IS NULL"))
    assert ownerless == 2
    assert await _row_count(engine) == 4


async def test_unreachable_storage_raises_schema_error(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'watchlist.db'}")
    try:
        with pytest.raises(SchemaError):
            await ensure_schema(engine, scoped_by_owner=True)
    finally:
        await engine.dispose()


async def test_epoch_created_at_values_are_backfilled(engine):
    async with engine.begin() as conn:
        await conn.execute(text(EPOCH_TIMESTAMP_TABLE))
        await conn.execute(
            text("INSERT INTO watchlist (movie_id, title, created_at) VALUES (42, 'X', 1700000000)")
        )

    changes = await ensure_schema(engine, scoped_by_owner=False)

    assert changes == ["backfill created_at epoch values", "add column owner_id"]
    assert await ensure_schema(engine, scoped_by_owner=False) == []

    async with create_sessionmaker(engine)() as session:
        store = WatchlistStore(session, scoped_by_owner=False)
        await store.upsert(None, WatchlistRecord(movie_id=7, title="New"))
        rows = await store.list(None)

    assert [row.movie_id for row in rows] == [7, 42]
    assert all(isinstance(row.created_at, datetime) for row in rows)
    assert rows[1].created_at.replace(tzinfo=None) == datetime(2023, 11, 14, 22, 13, 20)
