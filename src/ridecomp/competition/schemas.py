"""Pydantic request/response models for competition endpoints.

Shapes match the dashboard client's competition views.
"""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ── Requests ──


class CreateCompetitionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=2000)
    goal_value: Decimal = Field(..., gt=0)
    prize_value: Decimal = Field(..., gt=0)
    start_date: date
    end_date: date
    password: str = Field(..., min_length=1, max_length=128)
    max_members: int | None = Field(None, ge=2)
    allow_teams: bool = False
    team_size: int | None = Field(None, ge=1)
    host_participates: bool = True
    is_listed: bool = False


class UpdateCompetitionRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=128)
    description: str | None = Field(None, max_length=2000)
    goal_value: Decimal | None = Field(None, gt=0)
    prize_value: Decimal | None = Field(None, gt=0)
    start_date: date | None = None
    end_date: date | None = None
    max_members: int | None = Field(None, ge=2)
    is_listed: bool | None = None


class JoinCompetitionRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128)
    payout_key: str | None = Field(None, max_length=140)
    payout_key_type: str | None = None


class PayoutKeyRequest(BaseModel):
    payout_key: str = Field(..., min_length=1, max_length=140)
    payout_key_type: str | None = None


class CreateTeamsRequest(BaseModel):
    team_count: int = Field(..., ge=1)


class RenameTeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)


# ── Responses ──


class ResolveResponse(BaseModel):
    id: str


class CreateCompetitionResponse(BaseModel):
    id: str
    code: str


class JoinCompetitionResponse(BaseModel):
    id: str
    name: str
    status: str


class CompetitionResponse(BaseModel):
    id: str
    code: str | None = None
    name: str
    description: str | None
    goal_type: str
    goal_value: float
    prize_value: float
    start_date: date
    end_date: date
    max_members: int | None
    allow_teams: bool
    team_size: int | None
    host_user_id: str
    host_participates: bool
    is_listed: bool
    created_at: datetime | None


class CompetitionListItemResponse(BaseModel):
    competition: CompetitionResponse
    status: str
    status_label: str
    tab: str
    member_count: int
    is_member: bool
    is_host: bool
    meta_reached: bool


class CompetitionListResponse(BaseModel):
    competitions: list[CompetitionListItemResponse]
    total: int


class ViewerResponse(BaseModel):
    is_host: bool
    is_member: bool
    is_competitor: bool
    team_id: int | None
    payout_status: str | None = None
    payout_value: float | None = None


class TotalsResponse(BaseModel):
    total_competition: float
    total_user: float
    total_user_team: float | None
    goal_value: float
    individual_goal: float
    progress_percent: float
    remaining: float


class ResultResponse(BaseModel):
    meta_reached: bool
    winner_type: str
    winner_user_id: str | None
    winner_team_id: int | None
    winner_name: str | None
    winner_score: float | None
    finished_at: datetime | None


class RankingEntryResponse(BaseModel):
    rank: int
    user_id: str
    display_name: str
    role: str
    is_competitor: bool
    team_id: int | None
    total_income: float
    progress: float


class TeamMemberResponse(BaseModel):
    user_id: str
    display_name: str
    total_income: float


class TeamRankingResponse(BaseModel):
    rank: int
    team_id: int
    team_name: str
    team_score: float
    team_goal: float
    progress: float
    members: list[TeamMemberResponse]


class PlatformBreakdownResponse(BaseModel):
    platform_key: str
    platform_name: str
    total_value: float
    percent: float


class DailyPlatformResponse(BaseModel):
    platform: str
    platform_label: str
    amount: float


class DailySummaryResponse(BaseModel):
    date: dt.date
    total_value: float
    by_platform: list[DailyPlatformResponse]


class FlagsResponse(BaseModel):
    is_started: bool
    is_finalized: bool
    is_joinable: bool


class DashboardResponse(BaseModel):
    competition: CompetitionResponse
    status: str
    status_label: str
    viewer: ViewerResponse
    totals: TotalsResponse
    result: ResultResponse | None
    ranking: list[RankingEntryResponse]
    team_ranking: list[TeamRankingResponse]
    platform_breakdown: list[PlatformBreakdownResponse]
    user_platform_breakdown: list[PlatformBreakdownResponse]
    daily_summary: list[DailySummaryResponse]
    participants_count: int
    flags: FlagsResponse


class LeaderboardResponse(BaseModel):
    competition_id: str
    status: str
    members: list[RankingEntryResponse]
    all_members: list[RankingEntryResponse]
    teams: list[TeamRankingResponse]


class DailyScoreResponse(BaseModel):
    date: dt.date
    amount: float
    trips: int


class DailyScoresResponse(BaseModel):
    scores: list[DailyScoreResponse]
    total_amount: float
    total_trips: int
    days_worked: int
    average_per_day: float


class FinalizeResponse(BaseModel):
    finalized: bool
    already_finalized: bool
    meta_reached: bool
    winner_type: str
    winner_user_id: str | None
    winner_team_id: int | None
    winner_score: float | None
    payout_per_winner: float | None


class PayoutWinnerResponse(BaseModel):
    user_id: str
    name: str | None
    whatsapp: str | None
    payout_key: str | None
    payout_key_type: str | None
    payout_value: float


class HostPayoutsResponse(BaseModel):
    competition_code: str
    competition_name: str
    meta_reached: bool
    goal_value: float
    prize_value: float
    winner_type: str
    winner_team_name: str | None
    winner_score: float | None
    winners: list[PayoutWinnerResponse]
    message: str


class ResetFinalizationResponse(BaseModel):
    deleted_notifications: int
    deleted_payouts: int
    deleted_results: int


class TeamResponse(BaseModel):
    id: int
    name: str
    member_ids: list[str]


class TeamListResponse(BaseModel):
    teams: list[TeamResponse]


class MembershipResponse(BaseModel):
    user_id: str
    role: str
    is_competitor: bool
    team_id: int | None
    payout_key: str | None
    payout_key_type: str | None


# ── Global ranking ──


class GlobalRankingEntryResponse(BaseModel):
    rank: int
    user_id: str
    display_name: str
    avatar_url: str | None
    wins: int
    total_prizes: float
    participations: int


class GlobalRankingTotalsResponse(BaseModel):
    total_wins: int
    total_prizes: float
    total_participations: int
    competitors: int
    finalized_competitions: int
    users_with_wins: int


class GlobalRankingResponse(BaseModel):
    period: str
    entries: list[GlobalRankingEntryResponse]
    totals: GlobalRankingTotalsResponse


class HistoryItemResponse(BaseModel):
    competition: CompetitionResponse
    status: str
    status_label: str
    role: str
    is_competitor: bool
    payout_status: str | None
    payout_value: float | None


class HistoryResponse(BaseModel):
    items: list[HistoryItemResponse]
    wins: int
    total_prizes: float
    participations: int
