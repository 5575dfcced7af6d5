"""Unit tests for the scoring engine: totals, goals, breakdowns, ranking, winners and payouts."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from ridecomp.competition.aggregation import (
    Contribution,
    MemberInfo,
    TeamInfo,
    compute_payouts,
    daily_scores,
    daily_summary,
    determine_winner,
    dynamic_goal,
    member_totals,
    platform_breakdown,
    progress_percent,
    rank_members,
    rank_teams,
    remaining,
    split_prize,
)

START = date(2026, 10, 1)
END = date(2026, 10, 31)

ALICE = uuid.UUID("00000000-0000-0000-0000-00000000000a")
BRUNO = uuid.UUID("00000000-0000-0000-0000-00000000000b")
CARLA = uuid.UUID("00000000-0000-0000-0000-00000000000c")
DIEGO = uuid.UUID("00000000-0000-0000-0000-00000000000d")
HOST = uuid.UUID("00000000-0000-0000-0000-0000000000ff")


def _c(user: uuid.UUID, amount: str, key: str = "uber", day: date = START, label: str | None = None, trips: int = 0):
    return Contribution(user_id=user, day=day, platform_key=key, platform_label=label, amount=Decimal(amount), trips=trips)


def _m(user: uuid.UUID, order: int, name: str, team_id: int | None = None, competitor: bool = True, role: str = "member"):
    return MemberInfo(
        user_id=user, join_order=order, display_name=name, role=role, is_competitor=competitor, team_id=team_id,
    )


class TestTotals:
    def test_only_qualifying_income_in_window_counts(self):
        contributions = [
            _c(ALICE, "1200"),
            _c(ALICE, "300", key="cash tips"),
            _c(ALICE, "80", day=date(2026, 9, 30)),
            _c(ALICE, "20", day=date(2026, 11, 1)),
            _c(BRUNO, "500", key="99", day=END),
        ]
        totals = member_totals(contributions, START, END)
        assert totals == {ALICE: Decimal("1200"), BRUNO: Decimal("500")}

    def test_scenario_active_competition_progress(self):
        """Goal 1000 with two competitors: one earned 1200 qualifying plus 300 filtered out."""
        totals = member_totals([_c(ALICE, "1200"), _c(ALICE, "300", key="tips")], START, END)
        total = sum(totals.values(), Decimal("0"))
        goal = dynamic_goal(Decimal("1000"), 2)

        assert goal == Decimal("2000")
        assert total == Decimal("1200")
        assert progress_percent(total, goal) == 60.0
        assert remaining(goal, total) == Decimal("800")

    def test_adding_a_competitor_raises_goal_and_lowers_progress(self):
        total = Decimal("1500")
        goal_two = dynamic_goal(Decimal("1000"), 2)
        goal_three = dynamic_goal(Decimal("1000"), 3)
        assert goal_three > goal_two
        assert progress_percent(total, goal_three) < progress_percent(total, goal_two)

    def test_progress_not_capped(self):
        assert progress_percent(Decimal("2500"), Decimal("2000")) == 125.0
        assert remaining(Decimal("2000"), Decimal("2500")) == Decimal("0")

    def test_progress_without_goal_is_zero(self):
        assert progress_percent(Decimal("100"), Decimal("0")) == 0.0


class TestPlatformBreakdown:
    def test_percents_recomputed_from_filtered_total(self):
        contributions = [
            _c(ALICE, "333.33", key="uber"),
            _c(ALICE, "333.33", key="99"),
            _c(BRUNO, "333.34", key="indrive"),
            _c(BRUNO, "1000", key="tips"),
        ]
        shares = platform_breakdown(contributions)

        assert [s.platform_key for s in shares] == ["indrive", "99", "uber"]
        assert [s.platform_name for s in shares] == ["InDrive", "99", "Uber"]
        assert sum((s.total_value for s in shares), Decimal("0")) == Decimal("1000.00")
        assert sum(s.percent for s in shares) == pytest.approx(100.0)
        assert [s.percent for s in shares] == [33.4, 33.3, 33.3]

    def test_label_only_records_grouped_under_platform(self):
        shares = platform_breakdown([_c(ALICE, "100", key="custom_1", label="Uber"), _c(ALICE, "100", key="uber")])
        assert len(shares) == 1
        assert shares[0].platform_key == "uber"
        assert shares[0].total_value == Decimal("200")
        assert shares[0].percent == 100.0

    def test_empty_when_nothing_qualifies(self):
        assert platform_breakdown([_c(ALICE, "50", key="tips")]) == []


class TestDailySummary:
    def test_zero_days_dropped_and_sorted(self):
        contributions = [
            _c(ALICE, "100", day=date(2026, 10, 3)),
            _c(BRUNO, "50", key="99", day=date(2026, 10, 3)),
            _c(ALICE, "70", key="tips", day=date(2026, 10, 2)),
            _c(ALICE, "40", day=date(2026, 10, 1)),
            _c(ALICE, "-40", day=date(2026, 10, 1)),
            _c(BRUNO, "10", day=date(2026, 11, 2)),
        ]
        summary = daily_summary(contributions, START, END)

        assert [d.date for d in summary] == [date(2026, 10, 3)]
        day = summary[0]
        assert day.total_value == Decimal("150")
        assert [(p.platform, p.amount) for p in day.by_platform] == [("uber", Decimal("100")), ("99", Decimal("50"))]


class TestDailyScores:
    def test_member_scores_per_day(self):
        contributions = [
            _c(ALICE, "100", day=date(2026, 10, 2), trips=8),
            _c(ALICE, "50", key="99", day=date(2026, 10, 2), trips=3),
            _c(ALICE, "90", day=date(2026, 10, 5), trips=6),
            _c(ALICE, "500", key="tips", day=date(2026, 10, 6), trips=1),
            _c(BRUNO, "999", day=date(2026, 10, 2)),
        ]
        scores = daily_scores(contributions, ALICE, START, END)

        assert [(s.date, s.amount, s.trips) for s in scores.scores] == [
            (date(2026, 10, 2), Decimal("150"), 11),
            (date(2026, 10, 5), Decimal("90"), 6),
        ]
        assert scores.total_amount == Decimal("240")
        assert scores.total_trips == 17
        assert scores.days_worked == 2
        assert scores.average_per_day == Decimal("120.00")

    def test_no_income(self):
        scores = daily_scores([], ALICE, START, END)
        assert scores.scores == []
        assert scores.average_per_day == Decimal("0")


class TestRanking:
    def test_sorted_by_total_with_join_order_tiebreak(self):
        members = [_m(CARLA, 3, "Carla"), _m(ALICE, 1, "Alice"), _m(BRUNO, 2, "Bruno")]
        totals = {ALICE: Decimal("500"), BRUNO: Decimal("900"), CARLA: Decimal("500")}

        ranked = rank_members(members, totals, Decimal("1000"))

        assert [m.display_name for m in ranked] == ["Bruno", "Alice", "Carla"]
        assert [m.rank for m in ranked] == [1, 2, 3]
        assert ranked[0].progress == 90.0

    def test_ranking_is_repeatable(self):
        members = [_m(ALICE, 1, "Alice"), _m(BRUNO, 2, "Bruno"), _m(CARLA, 3, "Carla")]
        first = [m.user_id for m in rank_members(members, {}, Decimal("100"))]
        second = [m.user_id for m in rank_members(list(reversed(members)), {}, Decimal("100"))]
        assert first == second == [ALICE, BRUNO, CARLA]

    def test_non_competitors_excluded_by_default(self):
        members = [_m(HOST, 1, "Host", competitor=False, role="host"), _m(ALICE, 2, "Alice")]
        ranked = rank_members(members, {HOST: Decimal("9999"), ALICE: Decimal("10")}, Decimal("100"))
        assert [m.user_id for m in ranked] == [ALICE]

    def test_non_competitors_listed_last_when_requested(self):
        members = [_m(HOST, 1, "Host", competitor=False, role="host"), _m(ALICE, 2, "Alice")]
        ranked = rank_members(members, {HOST: Decimal("9999")}, Decimal("100"), include_non_competitors=True)
        assert [m.user_id for m in ranked] == [ALICE, HOST]
        assert ranked[1].total == Decimal("0")

    def test_team_scores_use_current_members(self):
        members = [
            _m(ALICE, 1, "Alice", team_id=10),
            _m(BRUNO, 2, "Bruno", team_id=20),
            _m(CARLA, 3, "Carla", team_id=10),
            _m(DIEGO, 4, "Diego"),
        ]
        totals = {ALICE: Decimal("600"), BRUNO: Decimal("400"), CARLA: Decimal("700"), DIEGO: Decimal("5000")}
        ranked = rank_members(members, totals, Decimal("1000"))
        teams = rank_teams([TeamInfo(10, "Team 1", 0), TeamInfo(20, "Team 2", 1)], ranked, Decimal("1000"))

        assert [(t.name, t.score, t.goal) for t in teams] == [
            ("Team 1", Decimal("1300"), Decimal("2000")),
            ("Team 2", Decimal("400"), Decimal("1000")),
        ]
        assert teams[0].progress == 65.0

    def test_team_ties_keep_creation_order(self):
        members = [_m(ALICE, 1, "Alice", team_id=20), _m(BRUNO, 2, "Bruno", team_id=10)]
        ranked = rank_members(members, {ALICE: Decimal("100"), BRUNO: Decimal("100")}, Decimal("50"))
        teams = rank_teams([TeamInfo(20, "Late", 1), TeamInfo(10, "Early", 0)], ranked, Decimal("50"))
        assert [t.name for t in teams] == ["Early", "Late"]


class TestWinner:
    GOAL = Decimal("1000")

    def test_individual_winner_takes_full_prize(self):
        ranked = rank_members(
            [_m(ALICE, 1, "Alice"), _m(BRUNO, 2, "Bruno")],
            {ALICE: Decimal("1200"), BRUNO: Decimal("500")},
            self.GOAL,
        )
        decision = determine_winner(self.GOAL, ranked, [], team_mode=False)

        assert decision.meta_reached
        assert decision.winner_type == "individual"
        assert decision.winner_user_id == ALICE
        assert decision.winner_score == Decimal("1200")

        payouts = compute_payouts(decision, Decimal("500"), ranked, [])
        assert [(p.user_id, p.payout_value) for p in payouts] == [(ALICE, Decimal("500.00"))]

    def test_individual_tie_goes_to_earlier_joiner(self):
        ranked = rank_members(
            [_m(BRUNO, 2, "Bruno"), _m(ALICE, 1, "Alice")],
            {ALICE: Decimal("1500"), BRUNO: Decimal("1500")},
            self.GOAL,
        )
        assert determine_winner(self.GOAL, ranked, [], team_mode=False).winner_user_id == ALICE

    def test_no_winner_below_goal(self):
        ranked = rank_members([_m(ALICE, 1, "Alice")], {ALICE: Decimal("999.99")}, self.GOAL)
        decision = determine_winner(self.GOAL, ranked, [], team_mode=False)
        assert not decision.meta_reached
        assert decision.winner_type == "none"
        assert compute_payouts(decision, Decimal("500"), ranked, []) == []

    def test_team_scenario_no_team_reaches_scaled_goal(self):
        members = [
            _m(ALICE, 1, "Alice", team_id=1),
            _m(BRUNO, 2, "Bruno", team_id=1),
            _m(CARLA, 3, "Carla", team_id=2),
            _m(DIEGO, 4, "Diego", team_id=2),
        ]
        totals = {ALICE: Decimal("600"), BRUNO: Decimal("700"), CARLA: Decimal("400"), DIEGO: Decimal("400")}
        ranked = rank_members(members, totals, self.GOAL)
        teams = rank_teams([TeamInfo(1, "X", 0), TeamInfo(2, "Y", 1)], ranked, self.GOAL)

        decision = determine_winner(self.GOAL, ranked, teams, team_mode=True)
        assert decision.winner_type == "none"
        assert not decision.meta_reached

    def test_team_win_splits_prize_by_join_order(self):
        members = [
            _m(CARLA, 3, "Carla", team_id=1),
            _m(ALICE, 1, "Alice", team_id=1),
            _m(BRUNO, 2, "Bruno", team_id=1),
            _m(DIEGO, 4, "Diego", team_id=2),
        ]
        totals = {ALICE: Decimal("700"), BRUNO: Decimal("700"), CARLA: Decimal("700"), DIEGO: Decimal("900")}
        ranked = rank_members(members, totals, self.GOAL)
        teams = rank_teams([TeamInfo(1, "X", 0), TeamInfo(2, "Y", 1)], ranked, Decimal("600"))

        decision = determine_winner(Decimal("600"), ranked, teams, team_mode=True)
        assert decision.winner_type == "team"
        assert decision.winner_team_id == 1
        assert decision.winner_name == "X"

        payouts = compute_payouts(decision, Decimal("1000"), ranked, teams)
        assert [(p.user_id, p.payout_value) for p in payouts] == [
            (ALICE, Decimal("333.34")),
            (BRUNO, Decimal("333.33")),
            (CARLA, Decimal("333.33")),
        ]
        assert sum((p.payout_value for p in payouts), Decimal("0")) == Decimal("1000")


class TestSplitPrize:
    @pytest.mark.parametrize(
        ("prize", "count"),
        [("600", 3), ("1000", 3), ("0.05", 2), ("999.99", 7), ("100", 1)],
    )
    def test_shares_sum_to_prize(self, prize, count):
        shares = split_prize(Decimal(prize), count)
        assert len(shares) == count
        assert sum(shares, Decimal("0")) == Decimal(prize)
        assert max(shares) - min(shares) <= Decimal("0.01")

    def test_even_split(self):
        assert split_prize(Decimal("600"), 3) == [Decimal("200")] * 3

    def test_remainder_to_first_shares(self):
        assert split_prize(Decimal("0.05"), 2) == [Decimal("0.03"), Decimal("0.02")]

    def test_no_members(self):
        assert split_prize(Decimal("100"), 0) == []
