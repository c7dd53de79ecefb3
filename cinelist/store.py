import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConstraintError, StorageError
from .models import DESCRIPTIVE_FIELDS, WatchlistEntry, WatchlistRecord, parse_movie_payload
from .schema import conflict_columns

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _is_conflict_target_error(exc: Exception) -> bool:
    if isinstance(exc, (IntegrityError, ProgrammingError)):
        return True
    # SQLite reports a conflict target without a matching index as an operational error.
    return isinstance(exc, OperationalError) and "on conflict" in str(exc.orig).lower()


class WatchlistStore:
    """Owner-scoped watchlist persistence over an injected session.

    Every operation is idempotent and commits its own unit of work, so callers
    may retry ``upsert`` and ``remove`` after a ``StorageError`` or a cancelled
    request without creating duplicates.
    """

    def __init__(self, session: AsyncSession, scoped_by_owner: bool = True):
        self.session = session
        self.scoped_by_owner = scoped_by_owner
        self.conflict_target = list(conflict_columns(scoped_by_owner))

    def _scope(self, owner_id: str | None) -> str | None:
        if not self.scoped_by_owner:
            return None
        if not owner_id:
            raise ValueError("owner_id is required for an owner-scoped watchlist")
        return owner_id

    def _owner_clause(self, owner_id: str | None):
        if owner_id is None:
            return WatchlistEntry.owner_id.is_(None)
        return WatchlistEntry.owner_id == owner_id

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        try:
            return _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise ConstraintError(f"No native upsert available for dialect {dialect!r}") from None

    async def add(self, owner_id: str | None, raw_payload: Any) -> int:
        record = parse_movie_payload(raw_payload)
        return await self.upsert(owner_id, record)

    async def upsert(self, owner_id: str | None, record: WatchlistRecord) -> int:
        owner_id = self._scope(owner_id)
        values = record.descriptive_values()
        insert = self._insert()
        stmt = insert(WatchlistEntry).values(
            owner_id=owner_id,
            movie_id=record.movie_id,
            created_at=datetime.now(timezone.utc),
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=self.conflict_target,
            set_={name: stmt.excluded[name] for name in DESCRIPTIVE_FIELDS},
        ).returning(WatchlistEntry.id)

        try:
            entry_id = (await self.session.execute(stmt)).scalar_one()
            await self.session.commit()
        except (SQLAlchemyError, OSError) as exc:
            await self.session.rollback()
            if _is_conflict_target_error(exc):
                logger.error(
                    "Upsert conflict target %s does not match the watchlist index",
                    self.conflict_target,
                )
                raise ConstraintError(
                    f"Watchlist uniqueness index does not match conflict target {self.conflict_target}"
                ) from exc
            logger.exception("Failed to upsert movie %s", record.movie_id)
            raise StorageError("Failed to add movie to watchlist") from exc
        return int(entry_id)

    async def list(self, owner_id: str | None) -> list[WatchlistEntry]:
        owner_id = self._scope(owner_id)
        try:
            rows = (
                await self.session.execute(
                    select(WatchlistEntry)
                    .where(self._owner_clause(owner_id))
                    .order_by(WatchlistEntry.created_at.desc().nulls_last(), WatchlistEntry.id.desc())
                    # Upserts bypass the identity map; reload rows already held by this session.
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            logger.exception("Failed to list watchlist")
            raise StorageError("Failed to fetch watchlist") from exc
        return list(rows)

    async def remove(self, owner_id: str | None, movie_id: int) -> int:
        """Delete the entry for ``movie_id``. Returns the number of rows removed (0 or 1)."""
        owner_id = self._scope(owner_id)
        try:
            result = await self.session.execute(
                delete(WatchlistEntry).where(
                    self._owner_clause(owner_id),
                    WatchlistEntry.movie_id == movie_id,
                )
            )
            await self.session.commit()
        except (SQLAlchemyError, OSError) as exc:
            await self.session.rollback()
            logger.exception("Failed to remove movie %s", movie_id)
            raise StorageError("Failed to remove movie from watchlist") from exc
        return int(result.rowcount or 0)
