"""ORM models for the points economy.

Balances live on ``users.points`` and are only ever changed through the
conditional UPDATEs in ``taskstake.ledger.service``. Every successful change
is mirrored by one ``points_ledger`` row.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskstake.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users & Ledger
# ---------------------------------------------------------------------------


class User(Base):
    """Balance holder. ``id`` is the subject issued by the external auth service."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tasks: Mapped[list[Task]] = relationship("Task", back_populates="owner")


class PointsLedger(Base):
    """Immutable points transaction log. Positive amount = credit, negative = debit."""

    __tablename__ = "points_ledger"
    __table_args__ = (
        Index("ix_points_ledger_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(Base):
    """The subset of a task record that the points economy reads and writes."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("points > 0", name="ck_tasks_points_positive"),
        Index("ix_tasks_owner_completed_at", "owner_id", "completed", "completed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_complete_on_new_task: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    is_starter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    owner: Mapped[User] = relationship("User", back_populates="tasks")


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class DailyChallenge(Base):
    """Single-user wager: complete ``target_tasks`` before ``end_time``."""

    __tablename__ = "daily_challenges"
    __table_args__ = (
        Index("ix_daily_challenges_user_status", "user_id", "status"),
        # At most one open challenge per user.
        Index(
            "uq_daily_challenges_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    target_tasks: Mapped[int] = mapped_column(Integer, nullable=False)
    points_bet: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    payout: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PlayerChallenge(Base):
    """Two-user wager. Stakes are escrowed by debiting each party up front."""

    __tablename__ = "player_challenges"
    __table_args__ = (
        Index("ix_player_challenges_challenger", "challenger_id", "status"),
        Index("ix_player_challenges_challenged", "challenged_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    challenger_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenged_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points_bet: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    challenger_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    challenged_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    challenger_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    challenged_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    winner_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("users.id"), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
