"""Last-IP projection: the most recently seen address per user.

Ties on ``last_seen`` go to the lexicographically smallest address so the
projection is deterministic.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Select, select

from puipr.db.models import PlexUser, UserIPHistory


def _latest_history_column(column: Any) -> Any:  # noqa: ANN401
    """Correlated scalar subquery picking ``column`` from the user's latest history row."""
    return (
        select(column)
        .where(UserIPHistory.user_id == PlexUser.id)
        .order_by(UserIPHistory.last_seen.desc(), UserIPHistory.ip.asc())
        .limit(1)
        .correlate(PlexUser)
        .scalar_subquery()
    )


def last_ip_select() -> Select[Any]:
    """Select one row per registered user with its last IP and when it was seen.

    Users without any history have NULL ``last_ip`` and ``updated_at``.
    """
    return select(
        PlexUser.id.label("user_id"),
        PlexUser.username.label("username"),
        PlexUser.friendly_name.label("friendly_name"),
        _latest_history_column(UserIPHistory.ip).label("last_ip"),
        _latest_history_column(UserIPHistory.last_seen).label("updated_at"),
    )
