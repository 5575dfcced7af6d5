"""Integration tests: one-time finalization, payouts, notifications and the sweep worker."""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.competition_service import update_payout_key
from ridecomp.competition.finalize_worker import find_unfinalized, sweep_finished_competitions
from ridecomp.competition.lifecycle import (
    finalize_competition,
    finalize_competition_if_needed,
    get_winner_payouts,
    reset_finalization,
)
from ridecomp.competition.queries import get_competition, get_payouts
from ridecomp.db.models import CompetitionPayout, CompetitionResult, Notification
from ridecomp.errors import Conflict, Forbidden
from ridecomp.notifications.notification_service import FINISH_RESULT, HOST_NO_WINNER, HOST_PAYOUT, dismiss

START = date(2026, 10, 1)
END = date(2026, 10, 10)
AFTER = date(2026, 10, 11)


async def _count(db: AsyncSession, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def _individual_competition(seed, winner_amount: str = "1500"):
    host = await seed.profile("Hugo", "Host", whatsapp="+5511900000000")
    ana = await seed.profile("Ana", "Lima", whatsapp="+5511911111111")
    bia = await seed.profile("Bia", "Reis")
    competition = await seed.competition(host, start=START, end=END, goal="1000", prize="500", host_participates=False)
    await seed.join(ana, competition, payout_key="ana@pix.com", payout_key_type="email")
    await seed.join(bia, competition)
    await seed.income(ana, date(2026, 10, 4), "uber", winner_amount)
    await seed.income(bia, date(2026, 10, 4), "99", "300")
    return competition, host, ana, bia


class TestFinalize:
    @pytest.mark.asyncio
    async def test_individual_win(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)

        outcome = await finalize_competition(db_session, competition, today=AFTER)

        assert outcome.finalized
        assert not outcome.already_finalized
        assert outcome.result.winner_type == "individual"
        assert outcome.result.winner_user_id == ana
        assert outcome.result.meta_reached
        assert outcome.payout_per_winner == Decimal("500.00")

        payouts = await get_payouts(db_session, competition.id)
        assert [(p.user_id, p.status, p.payout_value) for p in payouts] == [
            (ana, "winner", Decimal("500")),
            (bia, "loser", Decimal("0")),
        ]

    @pytest.mark.asyncio
    async def test_finalize_twice_returns_first_result(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)

        first = await finalize_competition(db_session, competition, today=AFTER)
        second = await finalize_competition(db_session, competition, today=date(2026, 12, 1))

        assert second.already_finalized
        assert not second.finalized
        assert second.result.competition_id == first.result.competition_id
        assert second.result.winner_user_id == ana
        assert second.result.finished_at == first.result.finished_at
        assert await _count(db_session, CompetitionResult) == 1
        assert await _count(db_session, CompetitionPayout) == 2
        assert await _count(db_session, Notification) == 3

    @pytest.mark.asyncio
    async def test_losing_the_race_reads_winners_result(self, session_factory, seed, monkeypatch):
        """The second writer passes the pre-check, fails on the primary key and returns the stored result."""
        competition, host, ana, bia = await _individual_competition(seed)

        async with session_factory() as first_db:
            first_competition = await get_competition(first_db, competition.id)
            first = await finalize_competition(first_db, first_competition, today=AFTER)
        assert first.finalized

        monkeypatch.setattr("ridecomp.competition.lifecycle.get_result", AsyncMock(return_value=None))
        async with session_factory() as second_db:
            second_competition = await get_competition(second_db, competition.id)
            second = await finalize_competition(second_db, second_competition, today=AFTER)

        assert second.already_finalized
        assert not second.finalized
        assert second.result.winner_user_id == ana
        assert second.result.competition_id == first.result.competition_id

        async with session_factory() as check_db:
            assert await _count(check_db, CompetitionResult) == 1
            assert await _count(check_db, CompetitionPayout) == 2
            assert await _count(check_db, Notification) == 3

    @pytest.mark.asyncio
    async def test_not_finished_is_rejected(self, db_session: AsyncSession, seed):
        competition, *_ = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)

        with pytest.raises(Conflict, match="not finished"):
            await finalize_competition(db_session, competition, today=END)
        assert await finalize_competition_if_needed(db_session, competition, today=END) is None
        assert await _count(db_session, CompetitionResult) == 0

    @pytest.mark.asyncio
    async def test_no_winner(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed, winner_amount="999.99")
        competition = await get_competition(db_session, competition.id)

        outcome = await finalize_competition(db_session, competition, today=AFTER)

        assert outcome.result.winner_type == "none"
        assert not outcome.result.meta_reached
        assert outcome.payout_per_winner is None
        payouts = await get_payouts(db_session, competition.id)
        assert {p.status for p in payouts} == {"no_winner"}

        host_note = (await db_session.execute(
            select(Notification).where(Notification.user_id == host)
        )).scalar_one()
        assert host_note.type == HOST_NO_WINNER
        assert host_note.payload["winners"] == []

    @pytest.mark.asyncio
    async def test_income_after_end_date_ignored(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed, winner_amount="900")
        await seed.income(ana, AFTER, "uber", "5000")
        competition = await get_competition(db_session, competition.id)

        outcome = await finalize_competition(db_session, competition, today=AFTER)

        assert outcome.result.winner_type == "none"


class TestFinishNotifications:
    @pytest.mark.asyncio
    async def test_host_gets_payout_instructions(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)
        await finalize_competition(db_session, competition, today=AFTER)

        host_note = (await db_session.execute(
            select(Notification).where(Notification.user_id == host)
        )).scalar_one()
        assert host_note.type == HOST_PAYOUT
        assert host_note.competition_id == competition.id
        assert host_note.payload["competition_code"] == competition.code
        assert host_note.payload["winner_type"] == "individual"
        assert host_note.payload["winners"] == [{
            "user_id": str(ana),
            "name": "Ana Lima",
            "whatsapp": "+5511911111111",
            "payout_key": "ana@pix.com",
            "payout_key_type": "email",
            "payout_value": "500.00",
        }]

    @pytest.mark.asyncio
    async def test_each_competitor_gets_their_outcome(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)
        await finalize_competition(db_session, competition, today=AFTER)

        notes = (await db_session.execute(
            select(Notification).where(Notification.type == FINISH_RESULT).order_by(Notification.id)
        )).scalars().all()
        assert [(n.user_id, n.payload["status"], n.payload["rank"]) for n in notes] == [
            (ana, "winner", 1),
            (bia, "loser", 2),
        ]
        assert notes[0].payload["payout_value"] == "500.00"
        assert notes[1].payload["score"] == "300.00"

    @pytest.mark.asyncio
    async def test_notifications_pushed_after_commit(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)
        redis = AsyncMock()

        await finalize_competition(db_session, competition, today=AFTER, redis=redis)

        channels = [c.args[0] for c in redis.publish.await_args_list]
        assert channels == [f"ws:user:{host}", f"ws:user:{ana}", f"ws:user:{bia}"]
        first = json.loads(redis.publish.await_args_list[0].args[1])
        assert first["event"] == "notification"
        assert first["data"]["type"] == HOST_PAYOUT

    @pytest.mark.asyncio
    async def test_push_failure_does_not_fail_finalization(self, db_session: AsyncSession, seed):
        competition, *_ = await _individual_competition(seed)
        competition = await get_competition(db_session, competition.id)
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")

        outcome = await finalize_competition(db_session, competition, today=AFTER, redis=redis)

        assert outcome.finalized
        assert await _count(db_session, CompetitionResult) == 1


class TestTeamPayouts:
    @pytest.mark.asyncio
    async def test_prize_split_conserves_value(self, db_session: AsyncSession, seed):
        """1000 over three members: the earliest joiner absorbs the extra cent."""
        host = await seed.profile("Host")
        competition = await seed.competition(
            host, start=START, end=END, goal="100", prize="1000", allow_teams=True, host_participates=False,
        )
        drivers = [await seed.profile(f"D{i}") for i in range(3)]
        for driver in drivers:
            await seed.join(driver, competition)
        await seed.teams(competition, 1)
        for driver in drivers:
            await seed.income(driver, date(2026, 10, 2), "indrive", "200")
        competition = await get_competition(db_session, competition.id)

        outcome = await finalize_competition(db_session, competition, today=AFTER)

        assert outcome.result.winner_type == "team"
        assert outcome.result.winner_score == Decimal("600")
        payouts = await get_payouts(db_session, competition.id)
        assert [(p.user_id, p.payout_value) for p in payouts] == [
            (drivers[0], Decimal("333.34")),
            (drivers[1], Decimal("333.33")),
            (drivers[2], Decimal("333.33")),
        ]
        assert sum((p.payout_value for p in payouts), Decimal("0")) == Decimal("1000")
        assert {p.team_id for p in payouts} == {outcome.result.winner_team_id}

        host_note = (await db_session.execute(
            select(Notification).where(Notification.user_id == host)
        )).scalar_one()
        assert host_note.payload["winner_team_name"] == "Team 1"
        assert len(host_note.payload["winners"]) == 3


class TestWinnerPayouts:
    @pytest.mark.asyncio
    async def test_host_reads_payouts_after_dismissing_notification(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        await finalize_competition(db_session, await get_competition(db_session, competition.id), today=AFTER)
        host_note = (await db_session.execute(
            select(Notification).where(Notification.user_id == host)
        )).scalar_one()
        await dismiss(db_session, host, host_note.id)
        await db_session.commit()

        payouts = await get_winner_payouts(db_session, competition.id, host, today=AFTER)

        assert payouts["winners"] == host_note.payload["winners"]
        assert payouts["meta_reached"] is True
        assert payouts["winner_type"] == "individual"
        assert payouts["winner_team_name"] is None
        assert payouts["winner_score"] == "1500.00"
        assert payouts["prize_value"] == "500.00"
        assert payouts["message"] == host_note.payload["message"]

    @pytest.mark.asyncio
    async def test_payout_key_read_fresh(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        await finalize_competition(db_session, await get_competition(db_session, competition.id), today=AFTER)
        await update_payout_key(db_session, competition.id, ana, "11999990000", "phone")
        await db_session.commit()

        payouts = await get_winner_payouts(db_session, competition.id, host, today=AFTER)

        assert payouts["winners"][0]["payout_key"] == "11999990000"
        assert payouts["winners"][0]["payout_key_type"] == "phone"

    @pytest.mark.asyncio
    async def test_finalizes_on_first_read(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)

        payouts = await get_winner_payouts(db_session, competition.id, host, today=AFTER)

        assert [w["user_id"] for w in payouts["winners"]] == [str(ana)]
        assert await _count(db_session, CompetitionResult) == 1
        assert await _count(db_session, Notification) == 3

    @pytest.mark.asyncio
    async def test_no_winner(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed, winner_amount="999.99")

        payouts = await get_winner_payouts(db_session, competition.id, host, today=AFTER)

        assert payouts["winners"] == []
        assert payouts["meta_reached"] is False
        assert payouts["winner_score"] is None
        assert "no participant reached the goal" in payouts["message"]

    @pytest.mark.asyncio
    async def test_not_finished(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)

        with pytest.raises(Conflict, match="not finished"):
            await get_winner_payouts(db_session, competition.id, host, today=date(2026, 10, 5))

    @pytest.mark.asyncio
    async def test_members_cannot_read(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)

        with pytest.raises(Forbidden):
            await get_winner_payouts(db_session, competition.id, ana, today=AFTER)

    @pytest.mark.asyncio
    async def test_admin_reads(self, db_session: AsyncSession, seed, grant_admin):
        competition, host, ana, bia = await _individual_competition(seed)
        admin = await seed.profile("Admin")
        grant_admin(admin)

        payouts = await get_winner_payouts(db_session, competition.id, admin, today=AFTER)

        assert payouts["winners"][0]["name"] == "Ana Lima"


class TestResetFinalization:
    @pytest.mark.asyncio
    async def test_admin_reset_allows_refinalizing(self, db_session: AsyncSession, seed, grant_admin):
        competition, host, ana, bia = await _individual_competition(seed, winner_amount="900")
        admin = await seed.profile("Admin")
        grant_admin(admin)
        await finalize_competition(db_session, await get_competition(db_session, competition.id), today=AFTER)
        # Late income sync for a day inside the competition
        await seed.income(ana, date(2026, 10, 9), "uber", "200")

        outcome = await reset_finalization(db_session, competition.id, admin)
        await db_session.commit()

        assert (outcome.deleted_notifications, outcome.deleted_payouts, outcome.deleted_results) == (3, 2, 1)
        assert await _count(db_session, CompetitionResult) == 0

        again = await finalize_competition(db_session, await get_competition(db_session, competition.id), today=AFTER)

        assert again.finalized
        assert again.result.winner_user_id == ana
        assert await _count(db_session, Notification) == 3

    @pytest.mark.asyncio
    async def test_host_cannot_reset(self, db_session: AsyncSession, seed):
        competition, host, ana, bia = await _individual_competition(seed)
        await finalize_competition(db_session, await get_competition(db_session, competition.id), today=AFTER)

        with pytest.raises(Forbidden, match="administrator"):
            await reset_finalization(db_session, competition.id, host)


class TestSweepWorker:
    @pytest.mark.asyncio
    async def test_sweep_finalizes_only_finished(self, db_session: AsyncSession, seed):
        finished, *_ = await _individual_competition(seed)
        host = await seed.profile("Other Host")
        running = await seed.competition(host, start=START, end=date(2026, 10, 30))

        assert [c.id for c in await find_unfinalized(db_session, AFTER, 10)] == [finished.id]
        assert await sweep_finished_competitions(db_session, today=AFTER) == 1
        assert await sweep_finished_competitions(db_session, today=AFTER) == 0
        assert await find_unfinalized(db_session, AFTER, 10) == []

        result = await db_session.execute(select(CompetitionResult.competition_id))
        assert result.scalars().all() == [finished.id]
        assert running.id != finished.id

    @pytest.mark.asyncio
    async def test_sweep_respects_batch_limit(self, db_session: AsyncSession, seed):
        host = await seed.profile("Host")
        for i in range(3):
            await seed.competition(host, start=START, end=date(2026, 10, 1 + i), name=f"C{i}")

        assert await sweep_finished_competitions(db_session, today=AFTER, limit=2) == 2
        assert await sweep_finished_competitions(db_session, today=AFTER, limit=2) == 1
