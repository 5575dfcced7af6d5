"""ORM models for the competition engine.

Profiles and income records are owned by upstream services; the engine only
reads them. Everything under "Competitions" is owned here and created by
alembic revision 002_competition_tables.
"""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridecomp.db.base import Base


# ---------------------------------------------------------------------------
# Upstream: profiles and income records (read-only for the engine)
# ---------------------------------------------------------------------------


class Profile(Base):
    """Maps to the 'profiles' table (one row per authenticated user)."""

    __tablename__ = "profiles"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(32), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class IncomeDay(Base):
    """One driver's income record for a calendar day."""

    __tablename__ = "income_days"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="income_days_user_date_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    km_rodados: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    hours_worked: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)

    items: Mapped[list[IncomeDayItem]] = relationship(
        "IncomeDayItem", back_populates="income_day", cascade="all, delete-orphan",
    )


class IncomeDayItem(Base):
    """Per-platform earnings inside an income day."""

    __tablename__ = "income_day_items"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    income_day_id: Mapped[int] = mapped_column(Integer, ForeignKey("income_days.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    platform_label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    trips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    income_day: Mapped[IncomeDay] = relationship("IncomeDay", back_populates="items")


# ---------------------------------------------------------------------------
# Competitions
# ---------------------------------------------------------------------------


class Competition(Base):
    """A time-boxed income competition between drivers."""

    __tablename__ = "competitions"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    goal_type: Mapped[str] = mapped_column(String(32), nullable=False, default="income_goal")
    goal_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    prize_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    max_members: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allow_teams: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    team_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    host_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    host_participates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_listed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    members: Mapped[list[CompetitionMember]] = relationship(
        "CompetitionMember", back_populates="competition", order_by="CompetitionMember.id",
    )
    teams: Mapped[list[CompetitionTeam]] = relationship(
        "CompetitionTeam", back_populates="competition", order_by="CompetitionTeam.id",
    )


class CompetitionTeam(Base):
    """Named group of members inside a team-mode competition.

    The team score is never stored; it is summed from member income at read time.
    """

    __tablename__ = "competition_teams"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    competition: Mapped[Competition] = relationship("Competition", back_populates="teams")


# Same index as alembic 002: team names are unique per competition, ignoring case
Index(
    "idx_competition_teams_name",
    CompetitionTeam.competition_id,
    func.lower(CompetitionTeam.name),
    unique=True,
)


class CompetitionMember(Base):
    """A user's participation in one competition. The id doubles as join order."""

    __tablename__ = "competition_members"
    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="competition_members_comp_user_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    is_competitor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("competition_teams.id", ondelete="SET NULL"), nullable=True,
    )
    payout_key: Mapped[str | None] = mapped_column(String(140), nullable=True)
    payout_key_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    payout_key_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    competition: Mapped[Competition] = relationship("Competition", back_populates="members")


class CompetitionResult(Base):
    """The one-time finalized outcome. The primary key is the competition itself."""

    __tablename__ = "competition_results"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), primary_key=True,
    )
    meta_reached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    winner_type: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    winner_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    winner_team_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    winner_score: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    goal_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    prize_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CompetitionPayout(Base):
    """Per-competitor outcome written once at finalization."""

    __tablename__ = "competition_payouts"
    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="competition_payouts_comp_user_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    team_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    payout_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications with per-recipient read/dismissed state."""

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "competition_id", "type", name="notifications_user_comp_type_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    competition_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=True,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
