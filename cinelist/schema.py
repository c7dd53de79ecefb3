"""Startup schema setup for the watchlist table.

Upgrades are additive: missing columns are added as nullable columns and no
column is ever dropped or renamed, so rows written by older versions survive.
The uniqueness index is owned here rather than by the table definition because
it depends on the deployment mode:

* owner-scoped: ``watchlist_owner_movie_idx`` on ``(owner_id, movie_id)``
* legacy single-owner: ``movie_id_idx`` on ``(movie_id)``

Switching a legacy table to owner-scoped mode drops the single-column unique
index so two owners can save the same movie. Existing legacy rows keep
``owner_id = NULL`` and are not assigned to anyone.
"""
import logging

from sqlalchemy import Integer, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .errors import SchemaError
from .models import Base, WatchlistEntry

logger = logging.getLogger(__name__)

TABLE_NAME = WatchlistEntry.__tablename__
SCOPED_INDEX = ("watchlist_owner_movie_idx", ("owner_id", "movie_id"))
LEGACY_INDEX = ("movie_id_idx", ("movie_id",))


def conflict_columns(scoped_by_owner: bool) -> tuple[str, ...]:
    return SCOPED_INDEX[1] if scoped_by_owner else LEGACY_INDEX[1]


def _unique_keys(inspector) -> dict[frozenset[str], tuple[str, str | None]]:
    """Map each unique column set to how it is enforced: ("index" | "constraint", name)."""
    keys: dict[frozenset[str], tuple[str, str | None]] = {}
    for constraint in inspector.get_unique_constraints(TABLE_NAME):
        columns = [c for c in constraint.get("column_names") or [] if c]
        if columns:
            keys[frozenset(columns)] = ("constraint", constraint.get("name"))
    for index in inspector.get_indexes(TABLE_NAME):
        if not index.get("unique"):
            continue
        columns = [c for c in index.get("column_names") or [] if c]
        if not columns or index.get("duplicates_constraint"):
            continue
        keys.setdefault(frozenset(columns), ("index", index["name"]))
    return keys


def _created_at_steps(conn: Connection, table: str, column: dict) -> list[tuple[str, str]]:
    """Rewrite epoch-second ``created_at`` values as timestamps.

    Older tables declared ``created_at INTEGER DEFAULT (unixepoch('now'))``.
    SQLite keeps those integers alongside the text timestamps written now, so
    they are converted in place. Other backends cannot mix the two in one
    column, and an integer column there is rejected.
    """
    if conn.dialect.name != "sqlite":
        if isinstance(column["type"], Integer):
            raise SchemaError(
                f"Table {TABLE_NAME} stores created_at as an integer and cannot be "
                "converted in place"
            )
        return []

    epoch_rows = conn.execute(text(
        f"SELECT COUNT(*) FROM {table} WHERE typeof(created_at) IN ('integer', 'real')"
    )).scalar()
    if not epoch_rows:
        return []
    return [(
        "backfill created_at epoch values",
        f"UPDATE {table} "
        "SET created_at = strftime('%Y-%m-%d %H:%M:%S', created_at, 'unixepoch') || '.000000' "
        "WHERE typeof(created_at) IN ('integer', 'real')",
    )]


def _plan(conn: Connection, scoped_by_owner: bool) -> list[tuple[str, str]]:
    inspector = inspect(conn)
    preparer = conn.dialect.identifier_preparer
    table = preparer.quote(TABLE_NAME)
    steps: list[tuple[str, str]] = []

    if not inspector.has_table(TABLE_NAME):
        steps.append((f"create table {TABLE_NAME}", ""))
        existing_columns = {column.name for column in WatchlistEntry.__table__.columns}
        unique_keys: dict[frozenset[str], tuple[str, str | None]] = {}
    else:
        reflected = {column["name"]: column for column in inspector.get_columns(TABLE_NAME)}
        existing_columns = set(reflected)
        unique_keys = _unique_keys(inspector)
        if "created_at" in reflected:
            steps.extend(_created_at_steps(conn, table, reflected["created_at"]))

    for column in WatchlistEntry.__table__.columns:
        if column.name in existing_columns:
            continue
        if column.primary_key or not column.nullable:
            raise SchemaError(
                f"Table {TABLE_NAME} is missing required column {column.name!r}; "
                "it cannot be added in place"
            )
        col_type = column.type.compile(dialect=conn.dialect)
        steps.append((
            f"add column {column.name}",
            f"ALTER TABLE {table} ADD COLUMN {preparer.quote(column.name)} {col_type}",
        ))

    index_name, index_columns = SCOPED_INDEX if scoped_by_owner else LEGACY_INDEX
    legacy_key = frozenset(LEGACY_INDEX[1])
    if scoped_by_owner and legacy_key in unique_keys:
        kind, name = unique_keys[legacy_key]
        if kind == "index" and name:
            steps.append((f"drop legacy unique index {name}", f"DROP INDEX {preparer.quote(name)}"))
        elif name and conn.dialect.name != "sqlite":
            steps.append((
                f"drop legacy unique constraint {name}",
                f"ALTER TABLE {table} DROP CONSTRAINT {preparer.quote(name)}",
            ))
        else:
            raise SchemaError(
                f"Table {TABLE_NAME} enforces movie_id uniqueness inline and cannot be "
                "switched to owner-scoped mode in place"
            )

    if frozenset(index_columns) not in unique_keys:
        columns = ", ".join(preparer.quote(c) for c in index_columns)
        steps.append((
            f"create unique index {index_name}",
            f"CREATE UNIQUE INDEX {preparer.quote(index_name)} ON {table} ({columns})",
        ))
    return steps


def _evolve(conn: Connection, scoped_by_owner: bool) -> list[str]:
    steps = _plan(conn, scoped_by_owner)
    for description, statement in steps:
        if not statement:
            Base.metadata.create_all(conn, tables=[WatchlistEntry.__table__])
        else:
            conn.execute(text(statement))
    return [description for description, _ in steps]


async def ensure_schema(engine: AsyncEngine, scoped_by_owner: bool = True) -> list[str]:
    """Bring the watchlist table up to the current model. Returns the applied changes."""
    try:
        async with engine.begin() as conn:
            changes = await conn.run_sync(_evolve, scoped_by_owner)
    except SchemaError:
        logger.error("Watchlist schema cannot be upgraded in place")
        raise
    except (SQLAlchemyError, OSError) as exc:
        raise SchemaError(f"Could not verify watchlist schema: {exc}") from exc

    for change in changes:
        logger.info("Schema change applied: %s", change)
    if not changes:
        logger.info("Watchlist schema is up to date (scoped_by_owner=%s)", scoped_by_owner)
    return changes
