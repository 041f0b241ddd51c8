"""Points balance, history, and leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.dependencies import get_current_user
from taskstake.config import get_settings
from taskstake.database import get_session
from taskstake.db.models import User
from taskstake.ledger.schemas import (
    BalanceResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
)
from taskstake.ledger.service import audit_balance, get_balance, get_history, get_leaderboard

router = APIRouter(prefix="/api/v1", tags=["Points"])


@router.get("/points", response_model=BalanceResponse)
async def read_balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Current balance for the authenticated user."""
    return BalanceResponse(user_id=user.id, points=await get_balance(db, user.id))


@router.get("/points/history", response_model=LedgerHistoryResponse)
async def read_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Ledger entries for the authenticated user, newest first."""
    entries, total = await get_history(db, user.id, page=page, per_page=per_page)
    return LedgerHistoryResponse(
        entries=[
            LedgerEntryResponse(
                id=e.id,
                amount=e.amount,
                reason=e.reason,
                source_id=e.source_id,
                description=e.description,
                balance_after=e.balance_after,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/points/audit")
async def read_audit(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Ledger totals vs stored balance for the authenticated user."""
    return await audit_balance(db, user.id)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def read_leaderboard(
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    """Top balances. Public."""
    users = await get_leaderboard(db, limit or get_settings().leaderboard_size)
    return LeaderboardResponse(
        entries=[
            LeaderboardEntry(rank=i, user_id=u.id, display_name=u.display_name, points=u.points)
            for i, u in enumerate(users, start=1)
        ]
    )
