"""Global ranking — wins, prizes and participations across competitions.

The window filters on each competition's end date. Team prizes are split
over the members assigned to the winning team at query time, with the same
cent-exact split used for payouts (leftover cents to the earliest joiners).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.aggregation import split_prize
from ridecomp.competition.lifecycle import STATUS_LABELS, competition_today, compute_status
from ridecomp.competition.periods import ranking_window
from ridecomp.competition.queries import display_name_for
from ridecomp.db.models import (
    Competition,
    CompetitionMember,
    CompetitionPayout,
    CompetitionResult,
    Profile,
)

ZERO = Decimal("0")


@dataclass
class RankingEntry:
    user_id: uuid.UUID
    display_name: str
    avatar_url: str | None
    wins: int
    total_prizes: Decimal
    participations: int
    rank: int = 0


@dataclass
class RankingTotals:
    total_wins: int
    total_prizes: Decimal
    total_participations: int
    competitors: int
    finalized_competitions: int
    users_with_wins: int


@dataclass
class GlobalRanking:
    period: str
    entries: list[RankingEntry]
    totals: RankingTotals


@dataclass
class _Stats:
    wins: int = 0
    prizes: Decimal = ZERO
    participations: int = 0


def _window_conditions(period: str, today: date) -> list:
    window = ranking_window(period, today)
    if window is None:
        return []
    start, end = window
    return [Competition.end_date >= start, Competition.end_date <= end]


async def get_global_ranking(db: AsyncSession, period: str = "all_time", today: date | None = None) -> GlobalRanking:
    """Rank every user with at least one win or participation in the window.

    Sorted by wins, then total prizes, both descending. Fully tied users keep
    the order in which they were first seen (results by finish time, then
    memberships by join order), which is stable for identical input.
    """
    conditions = _window_conditions(period, today or competition_today())
    stats: dict[uuid.UUID, _Stats] = {}

    results = await db.execute(
        select(CompetitionResult, Competition.prize_value)
        .join(Competition, Competition.id == CompetitionResult.competition_id)
        .where(Competition.deleted_at.is_(None), *conditions)
        .order_by(CompetitionResult.finished_at, CompetitionResult.competition_id)
    )
    result_rows = results.all()

    team_ids = [r.winner_team_id for r, _ in result_rows if r.winner_type == "team" and r.winner_team_id is not None]
    team_members: dict[int, list[uuid.UUID]] = {}
    if team_ids:
        members_result = await db.execute(
            select(CompetitionMember.team_id, CompetitionMember.user_id)
            .where(CompetitionMember.team_id.in_(team_ids))
            .order_by(CompetitionMember.id)
        )
        for team_id, user_id in members_result.all():
            team_members.setdefault(team_id, []).append(user_id)

    for result, prize_value in result_rows:
        prize = Decimal(prize_value or 0)
        if result.winner_type == "individual" and result.winner_user_id is not None:
            entry = stats.setdefault(result.winner_user_id, _Stats())
            entry.wins += 1
            entry.prizes += prize
        elif result.winner_type == "team" and result.winner_team_id is not None:
            members = team_members.get(result.winner_team_id, [])
            for user_id, share in zip(members, split_prize(prize, len(members))):
                entry = stats.setdefault(user_id, _Stats())
                entry.wins += 1
                entry.prizes += share

    participations = await db.execute(
        select(CompetitionMember.user_id)
        .join(Competition, Competition.id == CompetitionMember.competition_id)
        .where(
            CompetitionMember.is_competitor.is_(True),
            Competition.deleted_at.is_(None),
            *conditions,
        )
        .order_by(CompetitionMember.id)
    )
    competitor_ids: set[uuid.UUID] = set()
    for (user_id,) in participations.all():
        stats.setdefault(user_id, _Stats()).participations += 1
        competitor_ids.add(user_id)

    user_ids = [uid for uid, s in stats.items() if s.wins > 0 or s.participations > 0]
    profiles: dict[uuid.UUID, Profile] = {}
    if user_ids:
        profile_result = await db.execute(select(Profile).where(Profile.id.in_(user_ids)))
        profiles = {p.id: p for p in profile_result.scalars().all()}

    entries = [
        RankingEntry(
            user_id=uid,
            display_name=display_name_for(profiles.get(uid), uid),
            avatar_url=profiles[uid].avatar_url if uid in profiles else None,
            wins=stats[uid].wins,
            total_prizes=stats[uid].prizes,
            participations=stats[uid].participations,
        )
        for uid in user_ids
    ]
    entries.sort(key=lambda e: (-e.wins, -e.total_prizes))
    for i, e in enumerate(entries, 1):
        e.rank = i

    return GlobalRanking(
        period=period,
        entries=entries,
        totals=RankingTotals(
            total_wins=sum(e.wins for e in entries),
            total_prizes=sum((e.total_prizes for e in entries), ZERO),
            total_participations=sum(e.participations for e in entries),
            competitors=len(competitor_ids),
            finalized_competitions=len(result_rows),
            users_with_wins=sum(1 for e in entries if e.wins > 0),
        ),
    )


@dataclass
class HistoryItem:
    competition: Competition
    status: str
    status_label: str
    role: str
    is_competitor: bool
    payout_status: str | None
    payout_value: Decimal | None


@dataclass
class CompetitionHistory:
    items: list[HistoryItem]
    wins: int
    total_prizes: Decimal
    participations: int


async def get_competition_history(
    db: AsyncSession, user_id: uuid.UUID, today: date | None = None,
) -> CompetitionHistory:
    """The user's competitions with their finalized outcome, newest first."""
    current = today or competition_today()
    rows = await db.execute(
        select(Competition, CompetitionMember, CompetitionPayout, CompetitionResult.competition_id)
        .join(CompetitionMember, CompetitionMember.competition_id == Competition.id)
        .outerjoin(
            CompetitionPayout,
            (CompetitionPayout.competition_id == Competition.id) & (CompetitionPayout.user_id == user_id),
        )
        .outerjoin(CompetitionResult, CompetitionResult.competition_id == Competition.id)
        .where(CompetitionMember.user_id == user_id, Competition.deleted_at.is_(None))
        .order_by(Competition.end_date.desc(), Competition.created_at.desc())
    )

    items = []
    for competition, member, payout, result_id in rows.all():
        status = compute_status(competition.start_date, competition.end_date, current, result_id is not None)
        items.append(HistoryItem(
            competition=competition,
            status=status,
            status_label=STATUS_LABELS[status],
            role=member.role,
            is_competitor=member.is_competitor,
            payout_status=payout.status if payout else None,
            payout_value=payout.payout_value if payout else None,
        ))

    won = [i for i in items if i.payout_status == "winner"]
    return CompetitionHistory(
        items=items,
        wins=len(won),
        total_prizes=sum((i.payout_value or ZERO for i in won), ZERO),
        participations=sum(1 for i in items if i.is_competitor),
    )
