"""Response schemas for user listing endpoints."""

from datetime import datetime

from pydantic import BaseModel


class SummaryRow(BaseModel):
    """A registered user with the address they were last seen on."""

    user_id: int
    username: str
    friendly_name: str | None = None
    last_ip: str | None = None
    updated_at: datetime | None = None


class IPRow(BaseModel):
    ip: str
    first_seen: datetime
    last_seen: datetime


class UserHistoryResponse(BaseModel):
    """All addresses for one user, newest first."""

    user_id: int
    username: str
    ips: list[IPRow]
