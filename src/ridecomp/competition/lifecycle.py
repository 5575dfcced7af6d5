"""Competition lifecycle — derived state and one-time finalization.

State progression: upcoming -> active -> finished

There is no stored status column. State is recomputed on every read from
(start_date, end_date, today in the competition timezone, result exists).
A competition stays active through the whole of its end date and becomes
finished at the following local midnight.

Finalization runs lazily the first time a finished competition without a
result is read (the optional sweep worker calls the same entry point).
It is safe to race: the result's primary key is the competition id, so a
second concurrent writer fails on insert, rolls back and reads the winner's
row instead of surfacing an error.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.auth.roles import is_admin, is_host_or_admin
from ridecomp.competition.aggregation import (
    PayoutShare,
    WinnerDecision,
    compute_payouts,
    determine_winner,
    to_cents,
)
from ridecomp.competition.periods import today_in
from ridecomp.competition.queries import (
    Standings,
    display_name_for,
    get_competition,
    get_payouts,
    get_result,
    load_member_rows,
    load_standings,
)
from ridecomp.config import get_settings
from ridecomp.db.models import Competition, CompetitionPayout, CompetitionResult, CompetitionTeam, Notification
from ridecomp.errors import Conflict, Forbidden
from ridecomp.notifications.notification_service import (
    FINISH_RESULT,
    HOST_NO_WINNER,
    HOST_PAYOUT,
    create_notification,
    push_notification,
)

logger = logging.getLogger(__name__)

UPCOMING = "upcoming"
ACTIVE = "active"
FINISHED = "finished"

STATUS_LABELS: dict[str, str] = {
    UPCOMING: "Upcoming",
    ACTIVE: "Active",
    FINISHED: "Finished",
}


def competition_today(now: datetime | None = None) -> date:
    """Today's date in the competition timezone."""
    return today_in(get_settings().competition_timezone, now)


def compute_status(start_date: date, end_date: date, today: date, has_result: bool = False) -> str:
    """Derive the lifecycle state. A stored result always means finished."""
    if has_result or today > end_date:
        return FINISHED
    if today < start_date:
        return UPCOMING
    return ACTIVE


def is_joinable(status: str, member_count: int, max_members: int | None) -> bool:
    if status == FINISHED:
        return False
    return max_members is None or member_count < max_members


@dataclass
class FinalizeOutcome:
    """What a finalize call observed. `finalized` is True only for the call that wrote the result."""

    result: CompetitionResult
    finalized: bool
    already_finalized: bool
    payouts: list[PayoutShare] = field(default_factory=list)

    @property
    def payout_per_winner(self) -> Decimal | None:
        if not self.payouts:
            return None
        return max(p.payout_value for p in self.payouts)


def decide_outcome(competition: Competition, standings: Standings) -> tuple[WinnerDecision, list[PayoutShare]]:
    """Winner and payout shares for a finished competition."""
    decision = determine_winner(
        competition.goal_value,
        standings.ranked_members,
        standings.ranked_teams,
        team_mode=competition.allow_teams,
    )
    payouts = compute_payouts(decision, competition.prize_value, standings.ranked_members, standings.ranked_teams)
    return decision, payouts


async def _load_contacts(db: AsyncSession, competition_id: uuid.UUID) -> dict[uuid.UUID, dict[str, Any]]:
    """Name, WhatsApp and payout key of every member, keyed by user id."""
    return {
        member.user_id: {
            "name": display_name_for(profile, member.user_id),
            "whatsapp": profile.whatsapp if profile else None,
            "payout_key": member.payout_key,
            "payout_key_type": member.payout_key_type,
        }
        for member, profile in await load_member_rows(db, competition_id)
    }


def _host_payload(
    competition: Competition,
    winner_type: str,
    winner_team_name: str | None,
    payouts: list[PayoutShare] | list[CompetitionPayout],
    contacts: dict[uuid.UUID, dict[str, Any]],
) -> dict[str, Any]:
    """Payout instructions for the host: one entry per winner with contact and payout key."""
    winners = []
    for share in payouts:
        contact = contacts.get(share.user_id, {})
        winners.append({
            "user_id": str(share.user_id),
            "name": contact.get("name"),
            "whatsapp": contact.get("whatsapp"),
            "payout_key": contact.get("payout_key"),
            "payout_key_type": contact.get("payout_key_type"),
            "payout_value": str(to_cents(share.payout_value)),
        })

    if payouts:
        message = (
            f"Competition {competition.name} finished. Send the prize to the "
            f"{'winner' if len(payouts) == 1 else 'winners'} listed below."
        )
    else:
        message = f"Competition {competition.name} finished and no participant reached the goal."

    return {
        "competition_code": competition.code,
        "competition_name": competition.name,
        "prize_value": str(to_cents(competition.prize_value)),
        "goal_value": str(to_cents(competition.goal_value)),
        "winner_type": winner_type,
        "winner_team_name": winner_team_name,
        "winners": winners,
        "message": message,
    }


async def finalize_competition(
    db: AsyncSession,
    competition: Competition,
    today: date | None = None,
    redis: Any | None = None,
) -> FinalizeOutcome:
    """Compute and persist the one-time result, payouts and notifications.

    Commits its own transaction. Calling it again, or losing a race to a
    concurrent finalizer, returns the existing result with
    already_finalized=True. Raises Conflict if the competition has not
    finished yet.
    """
    competition_id = competition.id
    existing = await get_result(db, competition_id)
    if existing is not None:
        return FinalizeOutcome(result=existing, finalized=False, already_finalized=True)

    current = today or competition_today()
    if compute_status(competition.start_date, competition.end_date, current) != FINISHED:
        raise Conflict(f"Competition {competition.code} has not finished yet")

    standings = await load_standings(db, competition)
    decision, payouts = decide_outcome(competition, standings)
    now = datetime.now(timezone.utc)

    result = CompetitionResult(
        competition_id=competition_id,
        meta_reached=decision.meta_reached,
        winner_type=decision.winner_type,
        winner_user_id=decision.winner_user_id,
        winner_team_id=decision.winner_team_id,
        winner_score=to_cents(decision.winner_score) if decision.winner_score is not None else None,
        goal_value=competition.goal_value,
        prize_value=competition.prize_value,
        finished_at=now,
    )
    db.add(result)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        await db.refresh(competition)
        winner = await db.execute(
            select(CompetitionResult).where(CompetitionResult.competition_id == competition_id)
        )
        logger.info("Competition %s already finalized by a concurrent request", competition_id)
        return FinalizeOutcome(result=winner.scalar_one(), finalized=False, already_finalized=True)

    shares = {p.user_id: p for p in payouts}
    for member in standings.competitors:
        share = shares.get(member.user_id)
        if share is not None:
            status, value, team_id = "winner", share.payout_value, share.team_id
        elif decision.winner_type == "none":
            status, value, team_id = "no_winner", Decimal("0"), member.team_id
        else:
            status, value, team_id = "loser", Decimal("0"), member.team_id
        db.add(CompetitionPayout(
            competition_id=competition_id,
            user_id=member.user_id,
            team_id=team_id,
            status=status,
            payout_value=value,
            created_at=now,
        ))

    notifications = await _notify_finish(db, competition, standings, decision, payouts)
    await db.commit()

    logger.info(
        "Competition finalized: %s (winner_type=%s, winners=%d)",
        competition_id, decision.winner_type, len(payouts),
    )
    if redis is not None:
        for notification in notifications:
            await push_notification(redis, notification)

    return FinalizeOutcome(result=result, finalized=True, already_finalized=False, payouts=payouts)


async def _notify_finish(
    db: AsyncSession,
    competition: Competition,
    standings: Standings,
    decision: WinnerDecision,
    payouts: list[PayoutShare],
) -> list[Notification]:
    """Host gets payout instructions (or the no-winner notice); every competitor gets their own outcome."""
    created = [
        await create_notification(
            db,
            competition.host_user_id,
            HOST_PAYOUT if payouts else HOST_NO_WINNER,
            competition.id,
            _host_payload(
                competition,
                decision.winner_type,
                decision.winner_name if decision.winner_type == "team" else None,
                payouts,
                await _load_contacts(db, competition.id),
            ),
        )
    ]

    shares = {p.user_id: p for p in payouts}
    for member in standings.ranked_members:
        share = shares.get(member.user_id)
        created.append(await create_notification(
            db,
            member.user_id,
            FINISH_RESULT,
            competition.id,
            {
                "competition_code": competition.code,
                "competition_name": competition.name,
                "status": "winner" if share else ("no_winner" if decision.winner_type == "none" else "loser"),
                "payout_value": str(share.payout_value) if share else "0.00",
                "score": str(to_cents(member.total)),
                "rank": member.rank,
                "winner_name": decision.winner_name,
            },
        ))
    return created


async def finalize_competition_if_needed(
    db: AsyncSession,
    competition: Competition,
    today: date | None = None,
    redis: Any | None = None,
) -> FinalizeOutcome | None:
    """Lazy entry point: finalize only if the competition is finished and has no result."""
    current = today or competition_today()
    if compute_status(competition.start_date, competition.end_date, current) != FINISHED:
        return None
    return await finalize_competition(db, competition, today=current, redis=redis)


async def get_winner_payouts(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    today: date | None = None,
    redis: Any | None = None,
) -> dict[str, Any]:
    """Payout instructions for the host, rebuilt from the stored result.

    Same shape as the host notification payload, plus meta_reached and
    winner_score, so the details stay readable after the notification is
    dismissed. Contacts and payout keys are read fresh. Host or
    administrator only; finalizes lazily and raises Conflict before the
    competition has finished.
    """
    competition = await get_competition(db, competition_id)
    if not is_host_or_admin(competition, user_id):
        raise Forbidden("Only the host can see the payout details")

    result = await get_result(db, competition_id)
    if result is None:
        outcome = await finalize_competition_if_needed(db, competition, today=today, redis=redis)
        if outcome is None:
            raise Conflict(f"Competition {competition.code} has not finished yet")
        result = outcome.result

    winner_team_name = None
    if result.winner_team_id is not None:
        team = await db.get(CompetitionTeam, result.winner_team_id)
        winner_team_name = team.name if team else None

    winners = [p for p in await get_payouts(db, competition_id) if p.status == "winner"]
    payload = _host_payload(
        competition, result.winner_type, winner_team_name, winners, await _load_contacts(db, competition_id),
    )
    payload["meta_reached"] = result.meta_reached
    payload["winner_score"] = str(to_cents(result.winner_score)) if result.winner_score is not None else None
    return payload


@dataclass
class ResetOutcome:
    deleted_notifications: int
    deleted_payouts: int
    deleted_results: int


async def reset_finalization(db: AsyncSession, competition_id: uuid.UUID, user_id: uuid.UUID) -> ResetOutcome:
    """Administrator tool: drop the result, payouts and finish notifications.

    The next read of a finished competition finalizes it again from current
    income. The caller commits.
    """
    if not is_admin(user_id):
        raise Forbidden("Only an administrator can reset a competition's finalization")
    await get_competition(db, competition_id)

    notifications = await db.execute(
        delete(Notification).where(
            Notification.competition_id == competition_id,
            Notification.type.in_((HOST_PAYOUT, HOST_NO_WINNER, FINISH_RESULT)),
        )
    )
    payouts = await db.execute(delete(CompetitionPayout).where(CompetitionPayout.competition_id == competition_id))
    results = await db.execute(delete(CompetitionResult).where(CompetitionResult.competition_id == competition_id))
    await db.flush()

    outcome = ResetOutcome(
        deleted_notifications=notifications.rowcount,
        deleted_payouts=payouts.rowcount,
        deleted_results=results.rowcount,
    )
    logger.info(
        "Finalization reset for competition %s by admin %s: %d notifications, %d payouts, %d results",
        competition_id, user_id,
        outcome.deleted_notifications, outcome.deleted_payouts, outcome.deleted_results,
    )
    return outcome
