"""ORM models for the user registry and IP history.

Datetimes are UTC. SQLite drops the offset on storage, so read paths
normalize through ``as_utc``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from puipr.db.base import Base


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# User registry
# ---------------------------------------------------------------------------


class PlexUser(Base):
    """A Plex account, keyed by its stable Plex user id."""

    __tablename__ = "plex_users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str] = mapped_column(Text, nullable=False)
    friendly_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_thumb: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    ips: Mapped[list[UserIPHistory]] = relationship(
        "UserIPHistory",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ---------------------------------------------------------------------------
# IP history
# ---------------------------------------------------------------------------


class UserIPHistory(Base):
    """First/last time a user was seen connecting from an address."""

    __tablename__ = "user_ip_history"
    __table_args__ = (
        UniqueConstraint("user_id", "ip", name="uq_user_ip"),
        Index("idx_user_ip_history_user_last", "user_id", "last_seen"),
    )

    # SQLite only autoincrements INTEGER primary keys.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("plex_users.id", ondelete="CASCADE"), nullable=False
    )
    ip: Mapped[str] = mapped_column(Text, nullable=False)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped[PlexUser] = relationship("PlexUser", back_populates="ips")
