"""Ingestion engine: merges observation batches into the registry and IP history.

Merge rules:
  - user identity fields are last-write-wins, ``last_seen`` only moves forward
  - (user, ip) rows keep the ``first_seen`` recorded at creation and advance
    ``last_seen`` to the maximum ever supplied

A batch is one transaction. Either every item lands or none does.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NoReturn

import structlog
from sqlalchemy import case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from puipr.database import write_serialized
from puipr.db.models import PlexUser, UserIPHistory
from puipr.ingest.schemas import RawObservation

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class IngestFailure(Exception):
    """A batch was rolled back because one of its items could not be stored.

    ``index`` is the zero-based position of the failing item, or ``None`` when
    the commit itself failed.
    """

    def __init__(self, index: int | None, cause: BaseException) -> None:
        self.index = index
        self.cause = cause
        where = "commit" if index is None else f"item {index}"
        super().__init__(f"ingest failed at {where}: {cause}")


def effective_timestamp(item: RawObservation, now: datetime) -> datetime:
    """Observation time: the supplied epoch if positive, else ``now``."""
    if item.date is not None and item.date > 0:
        return datetime.fromtimestamp(item.date, tz=timezone.utc)
    return now


def _greatest(existing: Any, incoming: Any) -> Any:  # noqa: ANN401
    """Portable max() of two timestamp expressions for upsert SET clauses."""
    return case((existing > incoming, existing), else_=incoming)


def _insert_for(session: AsyncSession) -> Callable[..., Any]:
    """Pick the dialect insert construct that supports ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def _abort(session: AsyncSession, source: str, index: int | None, cause: Exception) -> NoReturn:
    await session.rollback()
    logger.warning("ingest_failed", source=source, index=index, error=str(cause))
    raise IngestFailure(index, cause) from cause


async def _merge_item(
    session: AsyncSession,
    insert: Callable[..., Any],
    item: RawObservation,
    seen_at: datetime,
) -> None:
    user_stmt = insert(PlexUser).values(
        id=item.user_id,
        username=item.user,
        friendly_name=item.friendly_name,
        user_thumb=item.user_thumb,
        last_seen=seen_at,
    )
    user_stmt = user_stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "username": user_stmt.excluded.username,
            "friendly_name": user_stmt.excluded.friendly_name,
            "user_thumb": user_stmt.excluded.user_thumb,
            "last_seen": _greatest(PlexUser.last_seen, user_stmt.excluded.last_seen),
        },
    )
    await session.execute(user_stmt)

    if not item.ip_address:
        return

    ip_stmt = insert(UserIPHistory).values(
        user_id=item.user_id,
        ip=item.ip_address,
        first_seen=seen_at,
        last_seen=seen_at,
    )
    ip_stmt = ip_stmt.on_conflict_do_update(
        index_elements=["user_id", "ip"],
        set_={"last_seen": _greatest(UserIPHistory.last_seen, ip_stmt.excluded.last_seen)},
    )
    await session.execute(ip_stmt)


async def ingest(
    session: AsyncSession,
    batch: Sequence[RawObservation],
    *,
    now: datetime | None = None,
    source: str = "push",
) -> int:
    """Apply a batch of observations atomically.

    Args:
        session: Database session; must not have a transaction in flight.
        batch: Observations in arrival order.
        now: Fallback time for undated observations (defaults to current UTC).
        source: Label for logging (``push`` or ``poller``).

    Returns:
        Number of observations ingested (the batch length).

    Raises:
        IngestFailure: If any item fails to store; nothing from the batch is kept.
    """
    if not batch:
        return 0

    if now is None:
        now = datetime.now(timezone.utc)
    insert = _insert_for(session)

    async with write_serialized():
        for index, item in enumerate(batch):
            try:
                await _merge_item(session, insert, item, effective_timestamp(item, now))
            except (SQLAlchemyError, OverflowError, OSError, ValueError) as e:
                await _abort(session, source, index, e)
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await _abort(session, source, None, e)

    logger.info("batch_ingested", source=source, count=len(batch))
    return len(batch)
