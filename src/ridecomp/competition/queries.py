"""Database readers shared by the dashboard, the finalizer and the ranking.

Nothing here writes. Standings are always rebuilt from membership rows and
income records; there is no stored score to read back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.aggregation import (
    Contribution,
    MemberInfo,
    MemberScore,
    TeamInfo,
    TeamScore,
    member_totals,
    rank_members,
    rank_teams,
)
from ridecomp.competition.codes import normalize_code
from ridecomp.db.models import (
    Competition,
    CompetitionMember,
    CompetitionPayout,
    CompetitionResult,
    CompetitionTeam,
    IncomeDay,
    IncomeDayItem,
    Profile,
)
from ridecomp.errors import NotFound


def display_name_for(profile: Profile | None, user_id: uuid.UUID) -> str:
    """First + last name, else display name, else a stable placeholder."""
    if profile is not None:
        if profile.first_name and profile.last_name:
            return f"{profile.first_name} {profile.last_name}"
        if profile.display_name:
            return profile.display_name
        if profile.first_name:
            return profile.first_name
    return f"Driver-{str(user_id)[:8]}"


async def resolve_competition_id(db: AsyncSession, code_or_id: str | uuid.UUID) -> uuid.UUID:
    """Accept a UUID or a join code and return the competition id.

    Raises NotFound if neither resolves to a live (not deleted) competition.
    """
    candidate: uuid.UUID | None = None
    if isinstance(code_or_id, uuid.UUID):
        candidate = code_or_id
    else:
        try:
            candidate = uuid.UUID(str(code_or_id).strip())
        except ValueError:
            candidate = None

    if candidate is not None:
        result = await db.execute(
            select(Competition.id).where(Competition.id == candidate, Competition.deleted_at.is_(None))
        )
        found = result.scalar_one_or_none()
        if found is not None:
            return found

    code = normalize_code(str(code_or_id))
    if code:
        result = await db.execute(
            select(Competition.id).where(
                func.upper(Competition.code) == code,
                Competition.deleted_at.is_(None),
            )
        )
        found = result.scalar_one_or_none()
        if found is not None:
            return found

    raise NotFound(f"Competition {code_or_id} not found")


async def get_competition(db: AsyncSession, competition_id: uuid.UUID) -> Competition:
    """Get a live competition by ID. Raises NotFound."""
    result = await db.execute(
        select(Competition).where(Competition.id == competition_id, Competition.deleted_at.is_(None))
    )
    competition = result.scalar_one_or_none()
    if competition is None:
        raise NotFound(f"Competition {competition_id} not found")
    return competition


async def get_membership(
    db: AsyncSession, competition_id: uuid.UUID, user_id: uuid.UUID,
) -> CompetitionMember | None:
    result = await db.execute(
        select(CompetitionMember).where(
            CompetitionMember.competition_id == competition_id,
            CompetitionMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_result(db: AsyncSession, competition_id: uuid.UUID) -> CompetitionResult | None:
    """The finalized result, or None if finalization has not run yet."""
    result = await db.execute(
        select(CompetitionResult).where(CompetitionResult.competition_id == competition_id)
    )
    return result.scalar_one_or_none()


async def count_members(db: AsyncSession, competition_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(CompetitionMember).where(CompetitionMember.competition_id == competition_id)
    )
    return result.scalar_one()


async def load_member_rows(
    db: AsyncSession, competition_id: uuid.UUID,
) -> list[tuple[CompetitionMember, Profile | None]]:
    """Members in join order with their profiles."""
    result = await db.execute(
        select(CompetitionMember, Profile)
        .outerjoin(Profile, Profile.id == CompetitionMember.user_id)
        .where(CompetitionMember.competition_id == competition_id)
        .order_by(CompetitionMember.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def load_members(db: AsyncSession, competition_id: uuid.UUID) -> list[MemberInfo]:
    return [
        MemberInfo(
            user_id=m.user_id,
            join_order=m.id,
            display_name=display_name_for(p, m.user_id),
            role=m.role,
            is_competitor=m.is_competitor,
            team_id=m.team_id,
        )
        for m, p in await load_member_rows(db, competition_id)
    ]


async def load_teams(db: AsyncSession, competition_id: uuid.UUID) -> list[CompetitionTeam]:
    result = await db.execute(
        select(CompetitionTeam)
        .where(CompetitionTeam.competition_id == competition_id)
        .order_by(CompetitionTeam.created_at, CompetitionTeam.id)
    )
    return list(result.scalars().all())


async def load_contributions(
    db: AsyncSession,
    user_ids: list[uuid.UUID],
    start: date,
    end: date,
) -> list[Contribution]:
    """Income records for the given users in [start, end], unfiltered.

    The platform filter is applied by the aggregation functions.
    """
    if not user_ids:
        return []
    result = await db.execute(
        select(
            IncomeDay.user_id,
            IncomeDay.date,
            IncomeDayItem.platform,
            IncomeDayItem.platform_label,
            IncomeDayItem.amount,
            IncomeDayItem.trips,
        )
        .join(IncomeDayItem, IncomeDayItem.income_day_id == IncomeDay.id)
        .where(
            IncomeDay.user_id.in_(user_ids),
            IncomeDay.date >= start,
            IncomeDay.date <= end,
        )
        .order_by(IncomeDay.date, IncomeDayItem.id)
    )
    return [
        Contribution(
            user_id=row.user_id,
            day=row.date,
            platform_key=row.platform,
            platform_label=row.platform_label,
            amount=Decimal(row.amount),
            trips=row.trips or 0,
        )
        for row in result.all()
    ]


@dataclass
class Standings:
    """Everything computed for one competition at one point in time."""

    members: list[MemberInfo]
    teams: list[TeamInfo]
    contributions: list[Contribution]
    totals: dict[uuid.UUID, Decimal]
    ranked_members: list[MemberScore]
    ranked_teams: list[TeamScore]

    @property
    def competitors(self) -> list[MemberInfo]:
        return [m for m in self.members if m.is_competitor]


async def load_standings(db: AsyncSession, competition: Competition) -> Standings:
    """Recompute member and team scores for a competition, using end_date as the cutoff."""
    members = await load_members(db, competition.id)
    team_rows = await load_teams(db, competition.id) if competition.allow_teams else []
    teams = [TeamInfo(team_id=t.id, name=t.name, created_order=i) for i, t in enumerate(team_rows)]

    competitor_ids = [m.user_id for m in members if m.is_competitor]
    contributions = await load_contributions(db, competitor_ids, competition.start_date, competition.end_date)
    totals = member_totals(contributions, competition.start_date, competition.end_date)

    ranked_members = rank_members(members, totals, competition.goal_value)
    ranked_teams = rank_teams(teams, ranked_members, competition.goal_value) if competition.allow_teams else []
    return Standings(
        members=members,
        teams=teams,
        contributions=contributions,
        totals=totals,
        ranked_members=ranked_members,
        ranked_teams=ranked_teams,
    )


async def get_payouts(db: AsyncSession, competition_id: uuid.UUID) -> list[CompetitionPayout]:
    """Per-competitor outcomes written at finalization, winners first."""
    result = await db.execute(
        select(CompetitionPayout)
        .where(CompetitionPayout.competition_id == competition_id)
        .order_by(CompetitionPayout.payout_value.desc(), CompetitionPayout.id)
    )
    return list(result.scalars().all())
