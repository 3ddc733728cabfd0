"""User listing router — all /api/v1/users/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from puipr.database import get_session
from puipr.users.schemas import SummaryRow, UserHistoryResponse
from puipr.users.service import display_name, history, summary

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("", response_model=list[SummaryRow])
async def list_users(
    q: str | None = Query(default=None, description="Filter on username, last IP or friendly name"),
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> list[SummaryRow]:
    """Every user with their most recent IP, ordered by username."""
    return await summary(db, q)


@router.get("/{user_id}/ips", response_model=UserHistoryResponse)
async def get_user_ips(
    user_id: int,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> UserHistoryResponse:
    """IP history for one user, newest first."""
    return UserHistoryResponse(
        user_id=user_id,
        username=await display_name(db, user_id),
        ips=await history(db, user_id),
    )
