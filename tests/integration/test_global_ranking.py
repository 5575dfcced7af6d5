"""Integration tests for the cross-competition ranking and the per-user history."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.lifecycle import finalize_competition
from ridecomp.competition.queries import get_competition
from ridecomp.competition.ranking_service import get_competition_history, get_global_ranking
from ridecomp.errors import InvalidInput

TODAY = date(2026, 10, 25)


async def _finalize(db: AsyncSession, competition_id) -> None:
    competition = await get_competition(db, competition_id)
    outcome = await finalize_competition(db, competition, today=TODAY)
    assert outcome.finalized


@pytest_asyncio.fixture
async def drivers(seed):
    return {name: await seed.profile(name) for name in ("Ana", "Bia", "Carla")}


async def _october(seed, db: AsyncSession, drivers):
    """An individual win for Ana (500) and a team win for all three (600 split in three)."""
    ana, bia, carla = drivers["Ana"], drivers["Bia"], drivers["Carla"]

    solo = await seed.competition(
        await seed.profile("Host Solo"), start=date(2026, 10, 1), end=date(2026, 10, 10),
        goal="1000", prize="500", host_participates=False,
    )
    await seed.join(ana, solo)
    await seed.join(bia, solo)

    team = await seed.competition(
        await seed.profile("Host Equipe"), start=date(2026, 10, 1), end=date(2026, 10, 15),
        goal="100", prize="600", allow_teams=True, host_participates=False,
    )
    for user_id in (ana, bia, carla):
        await seed.join(user_id, team)
    await seed.teams(team, 1)

    await seed.income(ana, date(2026, 10, 5), "uber", "1200")
    await seed.income(bia, date(2026, 10, 12), "99", "200")
    await seed.income(carla, date(2026, 10, 12), "indrive", "200")

    await _finalize(db, solo.id)
    await _finalize(db, team.id)
    return solo, team


async def _september(seed, db: AsyncSession, drivers):
    """Bia wins 1000 alone in September."""
    bia = drivers["Bia"]
    old = await seed.competition(
        await seed.profile("Host Setembro"), start=date(2026, 9, 1), end=date(2026, 9, 20),
        goal="1000", prize="1000", host_participates=False,
    )
    await seed.join(bia, old)
    await seed.income(bia, date(2026, 9, 10), "uber", "1500")
    await _finalize(db, old.id)
    return old


class TestGlobalRanking:
    @pytest.mark.asyncio
    async def test_this_month_splits_team_prize(self, db_session: AsyncSession, seed, drivers):
        await _october(seed, db_session, drivers)
        await _september(seed, db_session, drivers)

        ranking = await get_global_ranking(db_session, "this_month", today=TODAY)

        assert [(e.display_name, e.wins, e.total_prizes, e.participations, e.rank) for e in ranking.entries] == [
            ("Ana", 2, Decimal("700"), 2, 1),
            ("Bia", 1, Decimal("200"), 2, 2),
            ("Carla", 1, Decimal("200"), 1, 3),
        ]
        assert ranking.totals.total_wins == 4
        assert ranking.totals.total_prizes == Decimal("1100")
        assert ranking.totals.total_participations == 5
        assert ranking.totals.competitors == 3
        assert ranking.totals.finalized_competitions == 2
        assert ranking.totals.users_with_wins == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("period", ["all_time", "all"])
    async def test_all_time_includes_older_competitions(self, db_session: AsyncSession, seed, drivers, period):
        await _october(seed, db_session, drivers)
        await _september(seed, db_session, drivers)

        ranking = await get_global_ranking(db_session, period, today=TODAY)

        assert [(e.display_name, e.wins, e.total_prizes) for e in ranking.entries] == [
            ("Bia", 2, Decimal("1200")),
            ("Ana", 2, Decimal("700")),
            ("Carla", 1, Decimal("200")),
        ]
        assert ranking.totals.finalized_competitions == 3

    @pytest.mark.asyncio
    async def test_unfinished_competitions_count_participation_only(self, db_session: AsyncSession, seed, drivers):
        running = await seed.competition(
            await seed.profile("Host"), start=date(2026, 10, 20), end=date(2026, 10, 30), host_participates=False,
        )
        await seed.join(drivers["Ana"], running)

        ranking = await get_global_ranking(db_session, "this_month", today=TODAY)

        assert [(e.display_name, e.wins, e.participations) for e in ranking.entries] == [("Ana", 0, 1)]
        assert ranking.totals.finalized_competitions == 0

    @pytest.mark.asyncio
    async def test_empty_window(self, db_session: AsyncSession, seed, drivers):
        await _september(seed, db_session, drivers)

        ranking = await get_global_ranking(db_session, "last_30_days", today=date(2026, 12, 31))

        assert ranking.entries == []
        assert ranking.totals.total_prizes == Decimal("0")

    @pytest.mark.asyncio
    async def test_invalid_period(self, db_session: AsyncSession):
        with pytest.raises(InvalidInput, match="Invalid period"):
            await get_global_ranking(db_session, "forever", today=TODAY)


class TestCompetitionHistory:
    @pytest.mark.asyncio
    async def test_history_for_driver(self, db_session: AsyncSession, seed, drivers):
        solo, team = await _october(seed, db_session, drivers)

        history = await get_competition_history(db_session, drivers["Ana"], today=TODAY)

        assert [(i.competition.id, i.status, i.payout_status, i.payout_value) for i in history.items] == [
            (team.id, "finished", "winner", Decimal("200")),
            (solo.id, "finished", "winner", Decimal("500")),
        ]
        assert history.wins == 2
        assert history.total_prizes == Decimal("700")
        assert history.participations == 2

    @pytest.mark.asyncio
    async def test_history_for_loser(self, db_session: AsyncSession, seed, drivers):
        solo, team = await _october(seed, db_session, drivers)

        history = await get_competition_history(db_session, drivers["Bia"], today=TODAY)

        statuses = {i.competition.id: i.payout_status for i in history.items}
        assert statuses == {solo.id: "loser", team.id: "winner"}
        assert history.total_prizes == Decimal("200")
