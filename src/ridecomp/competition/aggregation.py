"""Competition aggregation engine — pure scoring functions.

Everything here works on plain dataclasses so it can be reused by the
dashboard projection, the finalizer and the tests without a database.
All totals are recomputed from qualifying contributions on every call;
nothing is read back from a stored aggregate.

Money is handled as Decimal and quantized to cents only at the edges
(payout split, response serialization).
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ridecomp.competition.periods import in_range, iter_dates
from ridecomp.competition.platform_filter import filter_contributions, is_qualifying_platform, normalize_platform

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Display names for the allow-listed platforms, keyed by normalized key.
PLATFORM_NAMES: dict[str, str] = {
    "uber": "Uber",
    "99": "99",
    "indrive": "InDrive",
}


# ── Inputs ──


@dataclass(frozen=True)
class Contribution:
    """Amount earned by one user on one day from one platform."""

    user_id: uuid.UUID
    day: date
    platform_key: str
    platform_label: str | None
    amount: Decimal
    trips: int = 0


@dataclass(frozen=True)
class MemberInfo:
    """Membership fields the engine needs. `join_order` is the membership id."""

    user_id: uuid.UUID
    join_order: int
    display_name: str
    role: str = "member"
    is_competitor: bool = True
    team_id: int | None = None


@dataclass(frozen=True)
class TeamInfo:
    team_id: int
    name: str
    created_order: int


# ── Outputs ──


@dataclass
class MemberScore:
    user_id: uuid.UUID
    display_name: str
    role: str
    is_competitor: bool
    team_id: int | None
    join_order: int
    total: Decimal
    progress: float
    rank: int = 0


@dataclass
class TeamScore:
    team_id: int
    name: str
    created_order: int
    score: Decimal
    goal: Decimal
    progress: float
    members: list[MemberScore] = field(default_factory=list)
    rank: int = 0


@dataclass
class PlatformShare:
    platform_key: str
    platform_name: str
    total_value: Decimal
    percent: float


@dataclass
class PlatformAmount:
    platform: str
    platform_label: str
    amount: Decimal


@dataclass
class DailySummary:
    date: date
    total_value: Decimal
    by_platform: list[PlatformAmount]


@dataclass
class DailyScore:
    date: date
    amount: Decimal
    trips: int


@dataclass
class DailyScores:
    scores: list[DailyScore]
    total_amount: Decimal
    total_trips: int
    days_worked: int
    average_per_day: Decimal


@dataclass
class WinnerDecision:
    meta_reached: bool
    winner_type: str  # "individual" | "team" | "none"
    winner_user_id: uuid.UUID | None = None
    winner_team_id: int | None = None
    winner_score: Decimal | None = None
    winner_name: str | None = None


@dataclass
class PayoutShare:
    user_id: uuid.UUID
    team_id: int | None
    payout_value: Decimal


# ── Scalars ──


def to_cents(value: Decimal) -> Decimal:
    """Quantize to the smallest currency unit."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def dynamic_goal(goal_value: Decimal, competitor_count: int) -> Decimal:
    """Group target: the per-participant goal times the active competitors."""
    return goal_value * competitor_count


def progress_percent(total: Decimal, goal: Decimal) -> float:
    """Percent of goal reached. Not capped at 100; above 100 means exceeded."""
    if goal <= 0:
        return 0.0
    return round(float(total / goal * 100), 2)


def remaining(goal: Decimal, total: Decimal) -> Decimal:
    return max(goal - total, ZERO)


def platform_group_key(platform_key: str, platform_label: str | None) -> str:
    """Group a qualifying record under its allow-listed key, or its label if only that qualifies."""
    if is_qualifying_platform(platform_key):
        return normalize_platform(platform_key)
    return normalize_platform(platform_label)


# ── Totals ──


def member_totals(
    contributions: Iterable[Contribution],
    start: date,
    end: date,
) -> dict[uuid.UUID, Decimal]:
    """Qualifying income per user within [start, end]."""
    totals: dict[uuid.UUID, Decimal] = defaultdict(lambda: ZERO)
    for c in filter_contributions(contributions):
        if in_range(c.day, start, end):
            totals[c.user_id] += c.amount
    return dict(totals)


def rank_members(
    members: Sequence[MemberInfo],
    totals: dict[uuid.UUID, Decimal],
    goal_value: Decimal,
    *,
    include_non_competitors: bool = False,
) -> list[MemberScore]:
    """Members sorted by total descending. Ties keep join order (stable sort)."""
    scored = [
        MemberScore(
            user_id=m.user_id,
            display_name=m.display_name,
            role=m.role,
            is_competitor=m.is_competitor,
            team_id=m.team_id,
            join_order=m.join_order,
            total=totals.get(m.user_id, ZERO) if m.is_competitor else ZERO,
            progress=progress_percent(totals.get(m.user_id, ZERO), goal_value) if m.is_competitor else 0.0,
        )
        for m in sorted(members, key=lambda m: m.join_order)
        if m.is_competitor or include_non_competitors
    ]
    scored.sort(key=lambda s: (not s.is_competitor, -s.total))
    for i, s in enumerate(scored, 1):
        s.rank = i
    return scored


def rank_teams(
    teams: Sequence[TeamInfo],
    ranked_members: Sequence[MemberScore],
    goal_value: Decimal,
) -> list[TeamScore]:
    """Team scores from the members currently assigned, sorted by score then creation order.

    A team's goal scales with its competitor head count, like the dynamic goal.
    """
    by_team: dict[int, list[MemberScore]] = defaultdict(list)
    for m in ranked_members:
        if m.is_competitor and m.team_id is not None:
            by_team[m.team_id].append(m)

    scored = []
    for t in sorted(teams, key=lambda t: t.created_order):
        members = by_team.get(t.team_id, [])
        score = sum((m.total for m in members), ZERO)
        goal = dynamic_goal(goal_value, len(members))
        scored.append(TeamScore(
            team_id=t.team_id,
            name=t.name,
            created_order=t.created_order,
            score=score,
            goal=goal,
            progress=progress_percent(score, goal),
            members=members,
        ))
    scored.sort(key=lambda t: -t.score)
    for i, t in enumerate(scored, 1):
        t.rank = i
    return scored


# ── Breakdowns ──


def _largest_remainder_percents(values: Sequence[Decimal], total: Decimal) -> list[float]:
    """Percent shares at one decimal that always sum to exactly 100.0."""
    if total <= 0:
        return [0.0 for _ in values]
    raw = [v * 1000 / total for v in values]  # in tenths of a percent
    floors = [int(r) for r in raw]
    leftover = 1000 - sum(floors)
    order = sorted(range(len(values)), key=lambda i: (-(raw[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return [f / 10 for f in floors]


def platform_breakdown(contributions: Iterable[Contribution]) -> list[PlatformShare]:
    """Qualifying total per platform, with percents taken from the filtered total."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    labels: dict[str, str] = {}
    for c in filter_contributions(contributions):
        key = platform_group_key(c.platform_key, c.platform_label)
        totals[key] += c.amount
        labels.setdefault(key, PLATFORM_NAMES.get(key) or c.platform_label or c.platform_key)

    keys = sorted((k for k in totals if totals[k] != 0), key=lambda k: (-totals[k], k))
    filtered_total = sum((totals[k] for k in keys), ZERO)
    percents = _largest_remainder_percents([totals[k] for k in keys], filtered_total)
    return [
        PlatformShare(platform_key=k, platform_name=labels[k], total_value=totals[k], percent=p)
        for k, p in zip(keys, percents)
    ]


def daily_summary(contributions: Iterable[Contribution], start: date, end: date) -> list[DailySummary]:
    """Per-day, per-platform qualifying totals. Days that net to zero are dropped."""
    by_day: dict[date, dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    labels: dict[str, str] = {}
    for c in filter_contributions(contributions):
        if not in_range(c.day, start, end):
            continue
        key = platform_group_key(c.platform_key, c.platform_label)
        by_day[c.day][key] += c.amount
        labels.setdefault(key, PLATFORM_NAMES.get(key) or c.platform_label or c.platform_key)

    summary = []
    for day in iter_dates(start, end):
        platforms = by_day.get(day)
        if not platforms:
            continue
        day_total = sum(platforms.values(), ZERO)
        if day_total == 0:
            continue
        summary.append(DailySummary(
            date=day,
            total_value=day_total,
            by_platform=[
                PlatformAmount(platform=k, platform_label=labels[k], amount=v)
                for k, v in sorted(platforms.items(), key=lambda kv: (-kv[1], kv[0]))
                if v != 0
            ],
        ))
    return summary


def daily_scores(
    contributions: Iterable[Contribution],
    user_id: uuid.UUID,
    start: date,
    end: date,
) -> DailyScores:
    """One member's qualifying amount and trips per day."""
    amounts: dict[date, Decimal] = defaultdict(lambda: ZERO)
    trips: dict[date, int] = defaultdict(int)
    for c in filter_contributions(contributions):
        if c.user_id == user_id and in_range(c.day, start, end):
            amounts[c.day] += c.amount
            trips[c.day] += c.trips

    scores = [DailyScore(date=d, amount=amounts[d], trips=trips[d]) for d in sorted(amounts)]
    total_amount = sum((s.amount for s in scores), ZERO)
    days_worked = sum(1 for s in scores if s.amount > 0)
    return DailyScores(
        scores=scores,
        total_amount=total_amount,
        total_trips=sum(s.trips for s in scores),
        days_worked=days_worked,
        average_per_day=to_cents(total_amount / days_worked) if days_worked else ZERO,
    )


# ── Winner and payout ──


def determine_winner(
    goal_value: Decimal,
    ranked_members: Sequence[MemberScore],
    ranked_teams: Sequence[TeamScore],
    *,
    team_mode: bool,
) -> WinnerDecision:
    """Pick the winner from already-ranked members or teams.

    Individual mode: the best competitor whose total reaches the individual goal.
    Team mode: the best team whose score reaches goal_value × its competitor count.
    Ranking order already encodes the tie-breaks (join order, team creation).
    """
    if team_mode:
        for team in ranked_teams:
            if team.members and team.score > 0 and team.score >= team.goal:
                return WinnerDecision(
                    meta_reached=True,
                    winner_type="team",
                    winner_team_id=team.team_id,
                    winner_score=team.score,
                    winner_name=team.name,
                )
        return WinnerDecision(meta_reached=False, winner_type="none")

    for member in ranked_members:
        if member.is_competitor and member.total > 0 and member.total >= goal_value:
            return WinnerDecision(
                meta_reached=True,
                winner_type="individual",
                winner_user_id=member.user_id,
                winner_score=member.total,
                winner_name=member.display_name,
            )
    return WinnerDecision(meta_reached=False, winner_type="none")


def split_prize(prize_value: Decimal, member_count: int) -> list[Decimal]:
    """Split a prize evenly in cents.

    Leftover cents go one each to the first shares, so callers pass members
    in join order and the earliest joiners absorb the remainder. The shares
    always sum to the prize.
    """
    if member_count <= 0:
        return []
    cents = int(to_cents(prize_value) * 100)
    base, extra = divmod(cents, member_count)
    return [to_cents(Decimal(base + (1 if i < extra else 0)) / 100) for i in range(member_count)]


def compute_payouts(
    decision: WinnerDecision,
    prize_value: Decimal,
    ranked_members: Sequence[MemberScore],
    ranked_teams: Sequence[TeamScore],
) -> list[PayoutShare]:
    """Winner payout shares. Empty when there is no winner."""
    if decision.winner_type == "individual" and decision.winner_user_id is not None:
        return [PayoutShare(user_id=decision.winner_user_id, team_id=None, payout_value=to_cents(prize_value))]

    if decision.winner_type == "team":
        team = next((t for t in ranked_teams if t.team_id == decision.winner_team_id), None)
        if team is None:
            return []
        members = sorted(team.members, key=lambda m: m.join_order)
        return [
            PayoutShare(user_id=m.user_id, team_id=team.team_id, payout_value=share)
            for m, share in zip(members, split_prize(prize_value, len(members)))
        ]

    return []
