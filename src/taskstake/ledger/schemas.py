"""Pydantic response models for ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BalanceResponse(BaseModel):
    user_id: str
    points: int


class LedgerEntryResponse(BaseModel):
    id: int
    amount: int
    reason: str
    source_id: str | None = None
    description: str | None = None
    balance_after: int
    created_at: datetime


class LedgerHistoryResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    page: int
    per_page: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: str | None = None
    points: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
