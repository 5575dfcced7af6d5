"""Competition dashboard and leaderboard projections.

Read-only views over one competition. Every total, breakdown and ranking is
rebuilt from membership rows and qualifying income on each call. The only
write that can happen during a read is the one-time lazy finalization, which
lives in the lifecycle module.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.aggregation import (
    DailyScores,
    DailySummary,
    MemberScore,
    PlatformShare,
    TeamScore,
    daily_scores,
    daily_summary,
    dynamic_goal,
    platform_breakdown,
    progress_percent,
    rank_members,
    remaining,
)
from ridecomp.competition.lifecycle import (
    ACTIVE,
    FINISHED,
    competition_today,
    compute_status,
    finalize_competition_if_needed,
    is_joinable,
)
from ridecomp.competition.queries import (
    get_competition,
    get_membership,
    get_payouts,
    get_result,
    load_contributions,
    load_standings,
    resolve_competition_id,
)
from ridecomp.db.models import Competition, CompetitionMember, CompetitionPayout, CompetitionResult
from ridecomp.errors import Forbidden, NotFound


@dataclass
class ViewerInfo:
    user_id: uuid.UUID
    is_host: bool
    is_member: bool
    is_competitor: bool
    team_id: int | None
    payout_status: str | None = None
    payout_value: Decimal | None = None


@dataclass
class DashboardTotals:
    total_competition: Decimal
    total_user: Decimal
    total_user_team: Decimal | None
    goal_value: Decimal
    individual_goal: Decimal
    progress_percent: float
    remaining: Decimal


@dataclass
class ResultBlock:
    meta_reached: bool
    winner_type: str
    winner_user_id: uuid.UUID | None
    winner_team_id: int | None
    winner_name: str | None
    winner_score: Decimal | None
    finished_at: Any


@dataclass
class DashboardFlags:
    is_started: bool
    is_finalized: bool
    is_joinable: bool


@dataclass
class DashboardSnapshot:
    competition: Competition
    status: str
    viewer: ViewerInfo
    totals: DashboardTotals
    result: ResultBlock | None
    ranking: list[MemberScore]
    team_ranking: list[TeamScore]
    platform_breakdown: list[PlatformShare]
    user_platform_breakdown: list[PlatformShare]
    daily_summary: list[DailySummary]
    participants_count: int
    flags: DashboardFlags


@dataclass
class LeaderboardSnapshot:
    competition: Competition
    status: str
    members: list[MemberScore]
    all_members: list[MemberScore]
    teams: list[TeamScore] = field(default_factory=list)


async def check_access(db: AsyncSession, competition: Competition, viewer_id: uuid.UUID) -> CompetitionMember | None:
    """Return the viewer's membership. Non-members may only read listed competitions."""
    membership = await get_membership(db, competition.id, viewer_id)
    if membership is None and not competition.is_listed:
        raise Forbidden("You are not a member of this competition")
    return membership


def _result_block(result: CompetitionResult, ranking: list[MemberScore], teams: list[TeamScore]) -> ResultBlock:
    winner_name = None
    if result.winner_type == "individual":
        winner_name = next((m.display_name for m in ranking if m.user_id == result.winner_user_id), None)
    elif result.winner_type == "team":
        winner_name = next((t.name for t in teams if t.team_id == result.winner_team_id), None)
    return ResultBlock(
        meta_reached=result.meta_reached,
        winner_type=result.winner_type,
        winner_user_id=result.winner_user_id,
        winner_team_id=result.winner_team_id,
        winner_name=winner_name,
        winner_score=result.winner_score,
        finished_at=result.finished_at,
    )


async def _load_viewable(
    db: AsyncSession,
    code_or_id: str | uuid.UUID,
    viewer_id: uuid.UUID,
    today: date | None,
    redis: Any | None,
) -> tuple[Competition, CompetitionMember | None, CompetitionResult | None, str]:
    """Resolve, authorize, and finalize on first read after the end date."""
    competition_id = await resolve_competition_id(db, code_or_id)
    competition = await get_competition(db, competition_id)
    membership = await check_access(db, competition, viewer_id)
    current = today or competition_today()

    result = await get_result(db, competition_id)
    if result is None:
        outcome = await finalize_competition_if_needed(db, competition, today=current, redis=redis)
        if outcome is not None:
            result = outcome.result
            membership = await get_membership(db, competition_id, viewer_id)

    status = compute_status(competition.start_date, competition.end_date, current, result is not None)
    return competition, membership, result, status


async def get_competition_dashboard(
    db: AsyncSession,
    code_or_id: str | uuid.UUID,
    viewer_id: uuid.UUID,
    today: date | None = None,
    redis: Any | None = None,
) -> DashboardSnapshot:
    """Build the full dashboard for one competition as seen by `viewer_id`."""
    competition, membership, result, status = await _load_viewable(db, code_or_id, viewer_id, today, redis)
    standings = await load_standings(db, competition)

    competitor_count = len(standings.competitors)
    total_goal = dynamic_goal(competition.goal_value, competitor_count)
    total_competition = sum(standings.totals.values(), Decimal("0"))
    total_user = standings.totals.get(viewer_id, Decimal("0"))

    team_id = membership.team_id if membership else None
    total_user_team = None
    if competition.allow_teams and team_id is not None:
        total_user_team = next((t.score for t in standings.ranked_teams if t.team_id == team_id), Decimal("0"))

    viewer = ViewerInfo(
        user_id=viewer_id,
        is_host=competition.host_user_id == viewer_id,
        is_member=membership is not None,
        is_competitor=bool(membership and membership.is_competitor),
        team_id=team_id,
    )
    if result is not None and membership is not None:
        payout = await get_viewer_payout(db, competition.id, viewer_id)
        if payout is not None:
            viewer.payout_status = payout.status
            viewer.payout_value = payout.payout_value

    user_contributions = [c for c in standings.contributions if c.user_id == viewer_id]
    return DashboardSnapshot(
        competition=competition,
        status=status,
        viewer=viewer,
        totals=DashboardTotals(
            total_competition=total_competition,
            total_user=total_user,
            total_user_team=total_user_team,
            goal_value=total_goal,
            individual_goal=competition.goal_value,
            progress_percent=progress_percent(total_competition, total_goal),
            remaining=remaining(total_goal, total_competition),
        ),
        result=_result_block(result, standings.ranked_members, standings.ranked_teams) if result else None,
        ranking=standings.ranked_members,
        team_ranking=standings.ranked_teams,
        platform_breakdown=platform_breakdown(standings.contributions),
        user_platform_breakdown=platform_breakdown(user_contributions),
        daily_summary=daily_summary(standings.contributions, competition.start_date, competition.end_date),
        participants_count=len(standings.members),
        flags=DashboardFlags(
            is_started=status in (ACTIVE, FINISHED),
            is_finalized=result is not None,
            is_joinable=membership is None and is_joinable(status, len(standings.members), competition.max_members),
        ),
    )


async def get_competition_leaderboard(
    db: AsyncSession,
    code_or_id: str | uuid.UUID,
    viewer_id: uuid.UUID,
    today: date | None = None,
    redis: Any | None = None,
) -> LeaderboardSnapshot:
    """Competitors ranked by score, every member (observers included), and team standings."""
    competition, _, _, status = await _load_viewable(db, code_or_id, viewer_id, today, redis)
    standings = await load_standings(db, competition)
    return LeaderboardSnapshot(
        competition=competition,
        status=status,
        members=standings.ranked_members,
        all_members=rank_members(
            standings.members, standings.totals, competition.goal_value, include_non_competitors=True,
        ),
        teams=standings.ranked_teams,
    )


async def get_member_daily_scores(
    db: AsyncSession,
    code_or_id: str | uuid.UUID,
    viewer_id: uuid.UUID,
    member_user_id: uuid.UUID,
) -> DailyScores:
    """One member's qualifying amount and trips per day inside the competition window."""
    competition_id = await resolve_competition_id(db, code_or_id)
    competition = await get_competition(db, competition_id)
    await check_access(db, competition, viewer_id)
    if await get_membership(db, competition_id, member_user_id) is None:
        raise NotFound("Member not found in this competition")

    contributions = await load_contributions(db, [member_user_id], competition.start_date, competition.end_date)
    return daily_scores(contributions, member_user_id, competition.start_date, competition.end_date)


async def get_viewer_payout(
    db: AsyncSession, competition_id: uuid.UUID, viewer_id: uuid.UUID,
) -> CompetitionPayout | None:
    return next((p for p in await get_payouts(db, competition_id) if p.user_id == viewer_id), None)

