"""Competition API endpoints — 22 routes.

Competitions (15), Teams (5), Ranking (2).

Services raise typed CompetitionError subclasses; the global error handler
renders them with their status and kind. Routers commit after writes.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.auth.dependencies import get_current_user_id
from ridecomp.competition.aggregation import MemberScore, TeamScore
from ridecomp.competition.competition_service import (
    CompetitionListItem,
    create_competition,
    delete_competition,
    join_competition,
    leave_competition,
    list_listed_competitions,
    list_my_competitions,
    update_competition,
    update_payout_key,
)
from ridecomp.competition.dashboard_service import (
    DashboardSnapshot,
    check_access,
    get_competition_dashboard,
    get_competition_leaderboard,
    get_member_daily_scores,
)
from ridecomp.competition.lifecycle import (
    STATUS_LABELS,
    finalize_competition,
    get_winner_payouts,
    reset_finalization,
)
from ridecomp.competition.queries import get_competition, get_payouts, resolve_competition_id
from ridecomp.competition.ranking_service import get_competition_history, get_global_ranking
from ridecomp.competition.schemas import (
    CompetitionListItemResponse,
    CompetitionListResponse,
    CompetitionResponse,
    CreateCompetitionRequest,
    CreateCompetitionResponse,
    CreateTeamsRequest,
    DailyPlatformResponse,
    DailyScoreResponse,
    DailyScoresResponse,
    DailySummaryResponse,
    DashboardResponse,
    FinalizeResponse,
    FlagsResponse,
    GlobalRankingEntryResponse,
    GlobalRankingResponse,
    GlobalRankingTotalsResponse,
    HistoryItemResponse,
    HistoryResponse,
    HostPayoutsResponse,
    JoinCompetitionRequest,
    JoinCompetitionResponse,
    LeaderboardResponse,
    MembershipResponse,
    PayoutKeyRequest,
    PayoutWinnerResponse,
    PlatformBreakdownResponse,
    RankingEntryResponse,
    RenameTeamRequest,
    ResetFinalizationResponse,
    ResolveResponse,
    ResultResponse,
    TeamListResponse,
    TeamMemberResponse,
    TeamRankingResponse,
    TeamResponse,
    TotalsResponse,
    UpdateCompetitionRequest,
    ViewerResponse,
)
from ridecomp.competition.team_service import (
    assign_member_to_team,
    create_teams,
    list_teams,
    rename_team,
    unassign_member_from_team,
)
from ridecomp.database import get_session
from ridecomp.db.models import Competition, CompetitionMember
from ridecomp.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1", tags=["Competitions"])


# ── Helpers ──


def _competition_response(c: Competition, show_code: bool = True) -> CompetitionResponse:
    return CompetitionResponse(
        id=str(c.id),
        code=c.code if show_code else None,
        name=c.name,
        description=c.description,
        goal_type=c.goal_type,
        goal_value=float(c.goal_value),
        prize_value=float(c.prize_value),
        start_date=c.start_date,
        end_date=c.end_date,
        max_members=c.max_members,
        allow_teams=c.allow_teams,
        team_size=c.team_size,
        host_user_id=str(c.host_user_id),
        host_participates=c.host_participates,
        is_listed=c.is_listed,
        created_at=c.created_at,
    )


def _list_item_response(item: CompetitionListItem) -> CompetitionListItemResponse:
    return CompetitionListItemResponse(
        competition=_competition_response(item.competition, show_code=item.is_member),
        status=item.status,
        status_label=item.status_label,
        tab=item.tab,
        member_count=item.member_count,
        is_member=item.is_member,
        is_host=item.is_host,
        meta_reached=item.meta_reached,
    )


def _ranking_entry(m: MemberScore) -> RankingEntryResponse:
    return RankingEntryResponse(
        rank=m.rank,
        user_id=str(m.user_id),
        display_name=m.display_name,
        role=m.role,
        is_competitor=m.is_competitor,
        team_id=m.team_id,
        total_income=float(m.total),
        progress=m.progress,
    )


def _team_entry(t: TeamScore) -> TeamRankingResponse:
    return TeamRankingResponse(
        rank=t.rank,
        team_id=t.team_id,
        team_name=t.name,
        team_score=float(t.score),
        team_goal=float(t.goal),
        progress=t.progress,
        members=[
            TeamMemberResponse(user_id=str(m.user_id), display_name=m.display_name, total_income=float(m.total))
            for m in t.members
        ],
    )


def _dashboard_response(s: DashboardSnapshot) -> DashboardResponse:
    is_member = s.viewer.is_member
    return DashboardResponse(
        competition=_competition_response(s.competition, show_code=is_member),
        status=s.status,
        status_label=STATUS_LABELS[s.status],
        viewer=ViewerResponse(
            is_host=s.viewer.is_host,
            is_member=is_member,
            is_competitor=s.viewer.is_competitor,
            team_id=s.viewer.team_id,
            payout_status=s.viewer.payout_status,
            payout_value=float(s.viewer.payout_value) if s.viewer.payout_value is not None else None,
        ),
        totals=TotalsResponse(
            total_competition=float(s.totals.total_competition),
            total_user=float(s.totals.total_user),
            total_user_team=float(s.totals.total_user_team) if s.totals.total_user_team is not None else None,
            goal_value=float(s.totals.goal_value),
            individual_goal=float(s.totals.individual_goal),
            progress_percent=s.totals.progress_percent,
            remaining=float(s.totals.remaining),
        ),
        result=ResultResponse(
            meta_reached=s.result.meta_reached,
            winner_type=s.result.winner_type,
            winner_user_id=str(s.result.winner_user_id) if s.result.winner_user_id else None,
            winner_team_id=s.result.winner_team_id,
            winner_name=s.result.winner_name,
            winner_score=float(s.result.winner_score) if s.result.winner_score is not None else None,
            finished_at=s.result.finished_at,
        ) if s.result else None,
        ranking=[_ranking_entry(m) for m in s.ranking],
        team_ranking=[_team_entry(t) for t in s.team_ranking],
        platform_breakdown=[
            PlatformBreakdownResponse(
                platform_key=p.platform_key, platform_name=p.platform_name,
                total_value=float(p.total_value), percent=p.percent,
            )
            for p in s.platform_breakdown
        ],
        user_platform_breakdown=[
            PlatformBreakdownResponse(
                platform_key=p.platform_key, platform_name=p.platform_name,
                total_value=float(p.total_value), percent=p.percent,
            )
            for p in s.user_platform_breakdown
        ],
        daily_summary=[
            DailySummaryResponse(
                date=d.date,
                total_value=float(d.total_value),
                by_platform=[
                    DailyPlatformResponse(platform=p.platform, platform_label=p.platform_label, amount=float(p.amount))
                    for p in d.by_platform
                ],
            )
            for d in s.daily_summary
        ],
        participants_count=s.participants_count,
        flags=FlagsResponse(
            is_started=s.flags.is_started,
            is_finalized=s.flags.is_finalized,
            is_joinable=s.flags.is_joinable,
        ),
    )


def _membership_response(m: CompetitionMember) -> MembershipResponse:
    return MembershipResponse(
        user_id=str(m.user_id),
        role=m.role,
        is_competitor=m.is_competitor,
        team_id=m.team_id,
        payout_key=m.payout_key,
        payout_key_type=m.payout_key_type,
    )


async def _team_list_response(db: AsyncSession, competition_id: uuid.UUID) -> TeamListResponse:
    return TeamListResponse(teams=[
        TeamResponse(id=team.id, name=team.name, member_ids=[str(uid) for uid in member_ids])
        for team, member_ids in await list_teams(db, competition_id)
    ])


# ── Competition Endpoints (13) ──


@router.get("/competitions/resolve/{code_or_id}", response_model=ResolveResponse)
async def resolve_competition_endpoint(
    code_or_id: str,
    _user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Resolve a join code (or id) to the competition id."""
    competition_id = await resolve_competition_id(db, code_or_id)
    return ResolveResponse(id=str(competition_id))


@router.get("/competitions/listed", response_model=CompetitionListResponse)
async def list_listed_endpoint(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Publicly listed competitions that are still open."""
    items = await list_listed_competitions(db, user_id)
    return CompetitionListResponse(competitions=[_list_item_response(i) for i in items], total=len(items))


@router.get("/competitions/mine", response_model=CompetitionListResponse)
async def list_mine_endpoint(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Competitions the caller belongs to, with computed status."""
    items = await list_my_competitions(db, user_id)
    return CompetitionListResponse(competitions=[_list_item_response(i) for i in items], total=len(items))


@router.post("/competitions", response_model=CreateCompetitionResponse, status_code=201)
async def create_competition_endpoint(
    body: CreateCompetitionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Create a competition. The creator becomes the host."""
    competition = await create_competition(
        db,
        user_id,
        name=body.name,
        description=body.description,
        goal_value=body.goal_value,
        start_date=body.start_date,
        end_date=body.end_date,
        password=body.password,
        prize_value=body.prize_value,
        max_members=body.max_members,
        allow_teams=body.allow_teams,
        team_size=body.team_size,
        host_participates=body.host_participates,
        is_listed=body.is_listed,
    )
    await db.commit()
    return CreateCompetitionResponse(id=str(competition.id), code=competition.code)


@router.post("/competitions/join", response_model=JoinCompetitionResponse)
async def join_competition_endpoint(
    body: JoinCompetitionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Join via code and password. Rejoining reports "already_member"."""
    outcome = await join_competition(
        db, user_id, body.code, body.password,
        payout_key=body.payout_key, payout_key_type=body.payout_key_type,
    )
    await db.commit()
    return JoinCompetitionResponse(id=str(outcome.competition_id), name=outcome.name, status=outcome.status)


@router.get("/competitions/{code_or_id}/dashboard", response_model=DashboardResponse)
async def dashboard_endpoint(
    code_or_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Full dashboard snapshot. Finalizes the competition on first read after it ends."""
    snapshot = await get_competition_dashboard(db, code_or_id, user_id, redis=redis)
    return _dashboard_response(snapshot)


@router.get("/competitions/{code_or_id}/leaderboard", response_model=LeaderboardResponse)
async def leaderboard_endpoint(
    code_or_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Competitors ranked by qualifying income, all members, and team standings."""
    board = await get_competition_leaderboard(db, code_or_id, user_id, redis=redis)
    return LeaderboardResponse(
        competition_id=str(board.competition.id),
        status=board.status,
        members=[_ranking_entry(m) for m in board.members],
        all_members=[_ranking_entry(m) for m in board.all_members],
        teams=[_team_entry(t) for t in board.teams],
    )


@router.get("/competitions/{code_or_id}/members/{member_id}/daily", response_model=DailyScoresResponse)
async def member_daily_scores_endpoint(
    code_or_id: str,
    member_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """A member's qualifying income and trips per day."""
    scores = await get_member_daily_scores(db, code_or_id, user_id, member_id)
    return DailyScoresResponse(
        scores=[DailyScoreResponse(date=s.date, amount=float(s.amount), trips=s.trips) for s in scores.scores],
        total_amount=float(scores.total_amount),
        total_trips=scores.total_trips,
        days_worked=scores.days_worked,
        average_per_day=float(scores.average_per_day),
    )


@router.patch("/competitions/{competition_id}", response_model=CompetitionResponse)
async def update_competition_endpoint(
    competition_id: uuid.UUID,
    body: UpdateCompetitionRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Edit competition fields (host only, until it finishes)."""
    competition = await update_competition(db, competition_id, user_id, **body.model_dump(exclude_none=True))
    await db.commit()
    return _competition_response(competition)


@router.delete("/competitions/{competition_id}", status_code=204)
async def delete_competition_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Delete a competition and everything attached to it (host or administrator)."""
    await delete_competition(db, competition_id, user_id)
    await db.commit()


@router.post("/competitions/{competition_id}/leave", status_code=200)
async def leave_competition_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Leave a competition."""
    await leave_competition(db, competition_id, user_id)
    await db.commit()
    return {"detail": "Left competition successfully"}


@router.put("/competitions/{competition_id}/payout-key", response_model=MembershipResponse)
async def update_payout_key_endpoint(
    competition_id: uuid.UUID,
    body: PayoutKeyRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Set where the host should send the caller's prize."""
    membership = await update_payout_key(db, competition_id, user_id, body.payout_key, body.payout_key_type)
    await db.commit()
    return _membership_response(membership)


@router.post("/competitions/{competition_id}/finalize", response_model=FinalizeResponse)
async def finalize_competition_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Finalize a finished competition. Safe to call repeatedly."""
    competition = await get_competition(db, competition_id)
    await check_access(db, competition, user_id)
    outcome = await finalize_competition(db, competition, redis=redis)

    payout_per_winner = outcome.payout_per_winner
    if payout_per_winner is None and outcome.result.winner_type != "none":
        winners = [p for p in await get_payouts(db, competition_id) if p.status == "winner"]
        payout_per_winner = max((p.payout_value for p in winners), default=None)

    result = outcome.result
    return FinalizeResponse(
        finalized=outcome.finalized,
        already_finalized=outcome.already_finalized,
        meta_reached=result.meta_reached,
        winner_type=result.winner_type,
        winner_user_id=str(result.winner_user_id) if result.winner_user_id else None,
        winner_team_id=result.winner_team_id,
        winner_score=float(result.winner_score) if result.winner_score is not None else None,
        payout_per_winner=float(payout_per_winner) if payout_per_winner is not None else None,
    )


@router.get("/competitions/{competition_id}/payouts", response_model=HostPayoutsResponse)
async def winner_payouts_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Who to pay and how much (host or administrator). Available once the competition has finished."""
    payload = await get_winner_payouts(db, competition_id, user_id, redis=redis)
    return HostPayoutsResponse(
        competition_code=payload["competition_code"],
        competition_name=payload["competition_name"],
        meta_reached=payload["meta_reached"],
        goal_value=float(payload["goal_value"]),
        prize_value=float(payload["prize_value"]),
        winner_type=payload["winner_type"],
        winner_team_name=payload["winner_team_name"],
        winner_score=float(payload["winner_score"]) if payload["winner_score"] is not None else None,
        winners=[
            PayoutWinnerResponse(**{**w, "payout_value": float(w["payout_value"])})
            for w in payload["winners"]
        ],
        message=payload["message"],
    )


@router.post("/competitions/{competition_id}/reset-finalization", response_model=ResetFinalizationResponse)
async def reset_finalization_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Drop the stored result, payouts and finish notifications (administrator only)."""
    outcome = await reset_finalization(db, competition_id, user_id)
    await db.commit()
    return ResetFinalizationResponse(
        deleted_notifications=outcome.deleted_notifications,
        deleted_payouts=outcome.deleted_payouts,
        deleted_results=outcome.deleted_results,
    )


# ── Team Endpoints (5) ──


@router.get("/competitions/{competition_id}/teams", response_model=TeamListResponse)
async def list_teams_endpoint(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Teams with their member ids."""
    competition = await get_competition(db, competition_id)
    await check_access(db, competition, user_id)
    return await _team_list_response(db, competition_id)


@router.post("/competitions/{competition_id}/teams", response_model=TeamListResponse, status_code=201)
async def create_teams_endpoint(
    competition_id: uuid.UUID,
    body: CreateTeamsRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Replace the teams and spread competitors across them (host only)."""
    await create_teams(db, competition_id, user_id, body.team_count)
    await db.commit()
    return await _team_list_response(db, competition_id)


@router.put("/competitions/{competition_id}/teams/{team_id}/members/{member_id}", response_model=MembershipResponse)
async def assign_member_endpoint(
    competition_id: uuid.UUID,
    team_id: int,
    member_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Move a competitor into a team (host only)."""
    membership = await assign_member_to_team(db, competition_id, user_id, member_id, team_id)
    await db.commit()
    return _membership_response(membership)


@router.delete("/competitions/{competition_id}/teams/members/{member_id}", response_model=MembershipResponse)
async def unassign_member_endpoint(
    competition_id: uuid.UUID,
    member_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Take a member out of their team (host only)."""
    membership = await unassign_member_from_team(db, competition_id, user_id, member_id)
    await db.commit()
    return _membership_response(membership)


@router.patch("/competitions/{competition_id}/teams/{team_id}", response_model=TeamResponse)
async def rename_team_endpoint(
    competition_id: uuid.UUID,
    team_id: int,
    body: RenameTeamRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Rename a team (host only, unique per competition)."""
    team = await rename_team(db, competition_id, user_id, team_id, body.name)
    await db.commit()
    members = next((ids for t, ids in await list_teams(db, competition_id) if t.id == team.id), [])
    return TeamResponse(id=team.id, name=team.name, member_ids=[str(uid) for uid in members])


# ── Ranking Endpoints (2) ──


@router.get("/ranking/global", response_model=GlobalRankingResponse)
async def global_ranking_endpoint(
    period: str = Query("all_time"),
    _user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Cross-competition ranking by wins, then prizes."""
    ranking = await get_global_ranking(db, period)
    return GlobalRankingResponse(
        period=ranking.period,
        entries=[
            GlobalRankingEntryResponse(
                rank=e.rank,
                user_id=str(e.user_id),
                display_name=e.display_name,
                avatar_url=e.avatar_url,
                wins=e.wins,
                total_prizes=float(e.total_prizes),
                participations=e.participations,
            )
            for e in ranking.entries
        ],
        totals=GlobalRankingTotalsResponse(
            total_wins=ranking.totals.total_wins,
            total_prizes=float(ranking.totals.total_prizes),
            total_participations=ranking.totals.total_participations,
            competitors=ranking.totals.competitors,
            finalized_competitions=ranking.totals.finalized_competitions,
            users_with_wins=ranking.totals.users_with_wins,
        ),
    )


@router.get("/ranking/history", response_model=HistoryResponse)
async def history_endpoint(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """The caller's competition history and win stats."""
    history = await get_competition_history(db, user_id)
    return HistoryResponse(
        items=[
            HistoryItemResponse(
                competition=_competition_response(i.competition),
                status=i.status,
                status_label=i.status_label,
                role=i.role,
                is_competitor=i.is_competitor,
                payout_status=i.payout_status,
                payout_value=float(i.payout_value) if i.payout_value is not None else None,
            )
            for i in history.items
        ],
        wins=history.wins,
        total_prizes=float(history.total_prizes),
        participations=history.participations,
    )
