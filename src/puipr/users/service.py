"""Query service over the user registry, IP history and last-IP projection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from puipr.db.models import PlexUser, UserIPHistory, as_utc
from puipr.db.projection import last_ip_select
from puipr.users.schemas import IPRow, SummaryRow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def placeholder_name(user_id: int) -> str:
    """Label shown for ids that have no registry row."""
    return f"User {user_id}"


async def summary(db: AsyncSession, query: str | None = None) -> list[SummaryRow]:
    """List every user with their last IP, ordered by username.

    A non-empty ``query`` keeps rows whose username, last IP or friendly name
    contains it, case-insensitively.
    """
    projection = last_ip_select().subquery("users_last_ip")
    stmt = select(projection).order_by(projection.c.username.asc(), projection.c.user_id.asc())

    needle = (query or "").strip().lower()
    if needle:
        stmt = stmt.where(
            or_(
                func.lower(projection.c.username).contains(needle, autoescape=True),
                func.lower(func.coalesce(projection.c.last_ip, "")).contains(needle, autoescape=True),
                func.lower(func.coalesce(projection.c.friendly_name, "")).contains(needle, autoescape=True),
            )
        )

    result = await db.execute(stmt)
    return [
        SummaryRow(
            user_id=row.user_id,
            username=row.username,
            friendly_name=row.friendly_name,
            last_ip=row.last_ip,
            updated_at=as_utc(row.updated_at),
        )
        for row in result
    ]


async def history(db: AsyncSession, user_id: int) -> list[IPRow]:
    """All addresses seen for a user, most recent first. Unknown ids yield []."""
    result = await db.execute(
        select(UserIPHistory.ip, UserIPHistory.first_seen, UserIPHistory.last_seen)
        .where(UserIPHistory.user_id == user_id)
        .order_by(UserIPHistory.last_seen.desc(), UserIPHistory.ip.asc())
    )
    return [
        IPRow(ip=row.ip, first_seen=as_utc(row.first_seen), last_seen=as_utc(row.last_seen))
        for row in result
    ]


async def display_name(db: AsyncSession, user_id: int) -> str:
    """Registry username for ``user_id``, or a placeholder if the user is unknown."""
    result = await db.execute(select(PlexUser.username).where(PlexUser.id == user_id))
    username = result.scalar_one_or_none()
    return username or placeholder_name(user_id)
