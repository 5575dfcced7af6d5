"""Competition management business logic.

Rules:
- The creator becomes the host; the host competes only if host_participates
- Join requires the code and the competition password; rejoining is not an error
- Joining is closed once the competition is finished or full
- The host cannot leave; nobody leaves a finished competition
- Only the host edits a competition, and never after it has finished
- The host or an administrator deletes a competition
- Validation happens before any write
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.auth.password import check_competition_password, hash_competition_password
from ridecomp.auth.roles import is_host_or_admin
from ridecomp.competition.codes import generate_unique_code, normalize_code
from ridecomp.competition.lifecycle import FINISHED, STATUS_LABELS, competition_today, compute_status
from ridecomp.competition.queries import count_members, get_competition, get_membership, get_result
from ridecomp.config import get_settings
from ridecomp.db.models import (
    Competition,
    CompetitionMember,
    CompetitionPayout,
    CompetitionResult,
    CompetitionTeam,
    Notification,
)
from ridecomp.errors import Conflict, Forbidden, InvalidCredentials, InvalidInput, NotFound

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 128
PAYOUT_KEY_TYPES = {"cpf", "cnpj", "email", "phone", "random"}


def validate_competition_fields(
    name: str,
    goal_value: Decimal,
    prize_value: Decimal,
    start_date: date,
    end_date: date,
    max_members: int | None,
    allow_teams: bool,
    team_size: int | None,
) -> None:
    """Raise InvalidInput if any field breaks the competition invariants."""
    if not name or not name.strip():
        raise InvalidInput("Competition name cannot be empty")
    if len(name.strip()) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Competition name must not exceed {MAX_NAME_LENGTH} characters")
    if goal_value is None or goal_value <= 0:
        raise InvalidInput("Goal value must be greater than zero")
    if prize_value is None or prize_value <= 0:
        raise InvalidInput("Prize value must be greater than zero")
    if end_date < start_date:
        raise InvalidInput("End date must be on or after the start date")
    if max_members is not None and max_members < 2:
        raise InvalidInput("Max members must be at least 2")
    if allow_teams and team_size is not None and team_size < 1:
        raise InvalidInput("Team size must be at least 1")


async def create_competition(
    db: AsyncSession,
    host_id: uuid.UUID,
    name: str,
    description: str | None,
    goal_value: Decimal,
    start_date: date,
    end_date: date,
    password: str,
    prize_value: Decimal,
    max_members: int | None = None,
    allow_teams: bool = False,
    team_size: int | None = None,
    host_participates: bool = True,
    is_listed: bool = False,
) -> Competition:
    """Create a competition. The creator is inserted as the host member."""
    validate_competition_fields(
        name, goal_value, prize_value, start_date, end_date, max_members, allow_teams, team_size,
    )
    min_password = get_settings().competition_password_min_length
    if not password or len(password) < min_password:
        raise InvalidInput(f"Password must be at least {min_password} characters")

    now = datetime.now(timezone.utc)
    competition = Competition(
        code=await generate_unique_code(db),
        name=name.strip(),
        description=description,
        goal_type="income_goal",
        goal_value=goal_value,
        prize_value=prize_value,
        start_date=start_date,
        end_date=end_date,
        max_members=max_members,
        allow_teams=allow_teams,
        team_size=team_size if allow_teams else None,
        host_user_id=host_id,
        host_participates=host_participates,
        is_listed=is_listed,
        password_hash=hash_competition_password(password),
        created_at=now,
        updated_at=now,
    )
    db.add(competition)
    await db.flush()

    db.add(CompetitionMember(
        competition_id=competition.id,
        user_id=host_id,
        role="host",
        is_competitor=host_participates,
        joined_at=now,
    ))
    await db.flush()

    logger.info("Competition created: %s (id=%s, code=%s, host=%s)", competition.name, competition.id, competition.code, host_id)
    return competition


@dataclass
class JoinOutcome:
    competition_id: uuid.UUID
    name: str
    status: str  # "joined" | "already_member"


def _validate_payout_key(payout_key: str | None, payout_key_type: str | None) -> None:
    if payout_key_type is not None and payout_key_type not in PAYOUT_KEY_TYPES:
        raise InvalidInput(f"Invalid payout key type: {payout_key_type}. Must be one of {sorted(PAYOUT_KEY_TYPES)}")
    if payout_key is not None and not payout_key.strip():
        raise InvalidInput("Payout key cannot be empty")


def _set_payout_key(member: CompetitionMember, payout_key: str, payout_key_type: str | None, now: datetime) -> None:
    member.payout_key = payout_key.strip()
    member.payout_key_type = payout_key_type
    member.payout_key_updated_at = now


async def join_competition(
    db: AsyncSession,
    user_id: uuid.UUID,
    code: str,
    password: str,
    payout_key: str | None = None,
    payout_key_type: str | None = None,
    today: date | None = None,
) -> JoinOutcome:
    """Join a competition with its code and password.

    Rejoining returns status "already_member" (updating the payout key if one is given).
    """
    _validate_payout_key(payout_key, payout_key_type)

    result = await db.execute(
        select(Competition).where(
            func.upper(Competition.code) == normalize_code(code),
            Competition.deleted_at.is_(None),
        )
    )
    competition = result.scalar_one_or_none()
    if competition is None or not check_competition_password(competition, password):
        raise InvalidCredentials("Invalid competition code or password")

    competition_id, competition_name = competition.id, competition.name
    now = datetime.now(timezone.utc)
    existing = await get_membership(db, competition_id, user_id)
    if existing is not None:
        if payout_key is not None:
            _set_payout_key(existing, payout_key, payout_key_type, now)
            await db.flush()
        return JoinOutcome(competition_id=competition_id, name=competition_name, status="already_member")

    has_result = await get_result(db, competition_id) is not None
    status = compute_status(competition.start_date, competition.end_date, today or competition_today(), has_result)
    if status == FINISHED:
        raise Conflict("This competition has already finished")

    if competition.max_members is not None:
        # Row lock serializes concurrent joins until commit so the cap holds (no-op on SQLite)
        await db.execute(select(Competition.id).where(Competition.id == competition_id).with_for_update())
        if await count_members(db, competition_id) >= competition.max_members:
            raise Conflict(f"This competition is full ({competition.max_members} members maximum)")

    member = CompetitionMember(
        competition_id=competition_id,
        user_id=user_id,
        role="member",
        is_competitor=True,
        joined_at=now,
    )
    if payout_key:
        _set_payout_key(member, payout_key, payout_key_type, now)
    db.add(member)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent join for the same user committed first
        await db.rollback()
        raced = await db.execute(
            select(CompetitionMember).where(
                CompetitionMember.competition_id == competition_id,
                CompetitionMember.user_id == user_id,
            )
        )
        existing = raced.scalar_one_or_none()
        if existing is None:
            raise
        if payout_key is not None:
            _set_payout_key(existing, payout_key, payout_key_type, now)
            await db.flush()
        logger.info("User %s already joined competition %s concurrently", user_id, competition_id)
        return JoinOutcome(competition_id=competition_id, name=competition_name, status="already_member")

    logger.info("User %s joined competition %s", user_id, competition_id)
    return JoinOutcome(competition_id=competition_id, name=competition_name, status="joined")


async def leave_competition(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    today: date | None = None,
) -> None:
    """Remove the caller's own membership."""
    competition = await get_competition(db, competition_id)
    membership = await get_membership(db, competition_id, user_id)
    if membership is None:
        raise NotFound("You are not a member of this competition")
    if membership.role == "host":
        raise Conflict("The host cannot leave the competition")

    has_result = await get_result(db, competition_id) is not None
    status = compute_status(competition.start_date, competition.end_date, today or competition_today(), has_result)
    if status == FINISHED:
        raise Conflict("You cannot leave a finished competition")

    await db.delete(membership)
    await db.flush()
    logger.info("User %s left competition %s", user_id, competition_id)


async def _get_editable_as_host(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    today: date | None,
) -> Competition:
    competition = await get_competition(db, competition_id)
    if competition.host_user_id != user_id:
        raise Forbidden("Only the host can change this competition")
    has_result = await get_result(db, competition_id) is not None
    status = compute_status(competition.start_date, competition.end_date, today or competition_today(), has_result)
    if status == FINISHED:
        raise Conflict("A finished competition cannot be changed")
    return competition


async def update_competition(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    name: str | None = None,
    description: str | None = None,
    goal_value: Decimal | None = None,
    prize_value: Decimal | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    max_members: int | None = None,
    is_listed: bool | None = None,
    today: date | None = None,
) -> Competition:
    """Update competition fields (host only, before it finishes). None leaves a field unchanged."""
    competition = await _get_editable_as_host(db, competition_id, user_id, today)

    new_name = name if name is not None else competition.name
    new_goal = goal_value if goal_value is not None else competition.goal_value
    new_prize = prize_value if prize_value is not None else competition.prize_value
    new_start = start_date or competition.start_date
    new_end = end_date or competition.end_date
    new_max = max_members if max_members is not None else competition.max_members
    validate_competition_fields(
        new_name, new_goal, new_prize, new_start, new_end, new_max, competition.allow_teams, competition.team_size,
    )
    if new_max is not None and new_max < await count_members(db, competition_id):
        raise Conflict("Max members cannot be lower than the current member count")

    competition.name = new_name.strip()
    if description is not None:
        competition.description = description
    competition.goal_value = new_goal
    competition.prize_value = new_prize
    competition.start_date = new_start
    competition.end_date = new_end
    competition.max_members = new_max
    if is_listed is not None:
        competition.is_listed = is_listed
    competition.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return competition


async def delete_competition(db: AsyncSession, competition_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Soft-delete a competition, removing its memberships, teams, results and notifications.

    The host may delete at any time; administrators may delete any competition.
    """
    competition = await get_competition(db, competition_id)
    if not is_host_or_admin(competition, user_id):
        raise Forbidden("Only the host or an administrator can delete this competition")

    await db.execute(delete(Notification).where(Notification.competition_id == competition_id))
    await db.execute(delete(CompetitionPayout).where(CompetitionPayout.competition_id == competition_id))
    await db.execute(delete(CompetitionResult).where(CompetitionResult.competition_id == competition_id))
    await db.execute(
        update(CompetitionMember).where(CompetitionMember.competition_id == competition_id).values(team_id=None)
    )
    await db.execute(delete(CompetitionMember).where(CompetitionMember.competition_id == competition_id))
    await db.execute(delete(CompetitionTeam).where(CompetitionTeam.competition_id == competition_id))

    competition.deleted_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info(
        "Competition deleted: %s by %s %s",
        competition_id, "host" if competition.host_user_id == user_id else "admin", user_id,
    )


async def update_payout_key(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    payout_key: str,
    payout_key_type: str | None = None,
) -> CompetitionMember:
    """Set the member's payout key (where the host sends the prize)."""
    _validate_payout_key(payout_key, payout_key_type)
    await get_competition(db, competition_id)
    membership = await get_membership(db, competition_id, user_id)
    if membership is None:
        raise NotFound("You are not a member of this competition")

    membership.payout_key = payout_key.strip()
    membership.payout_key_type = payout_key_type
    membership.payout_key_updated_at = datetime.now(timezone.utc)
    await db.flush()
    return membership


@dataclass
class CompetitionListItem:
    competition: Competition
    status: str
    status_label: str
    member_count: int
    is_member: bool
    is_host: bool
    meta_reached: bool
    tab: str  # "available" | "mine" | "finished"


async def _list_items(
    db: AsyncSession,
    competitions: list[Competition],
    user_id: uuid.UUID,
    today: date,
) -> list[CompetitionListItem]:
    ids = [c.id for c in competitions]
    if not ids:
        return []

    counts_result = await db.execute(
        select(CompetitionMember.competition_id, func.count())
        .where(CompetitionMember.competition_id.in_(ids))
        .group_by(CompetitionMember.competition_id)
    )
    counts = {cid: n for cid, n in counts_result.all()}

    mine_result = await db.execute(
        select(CompetitionMember.competition_id).where(
            CompetitionMember.competition_id.in_(ids), CompetitionMember.user_id == user_id,
        )
    )
    mine = set(mine_result.scalars().all())

    results_result = await db.execute(
        select(CompetitionResult.competition_id, CompetitionResult.meta_reached)
        .where(CompetitionResult.competition_id.in_(ids))
    )
    results = {cid: reached for cid, reached in results_result.all()}

    items = []
    for c in competitions:
        status = compute_status(c.start_date, c.end_date, today, c.id in results)
        is_member = c.id in mine
        if status == FINISHED:
            tab = "finished"
        elif is_member:
            tab = "mine"
        else:
            tab = "available"
        items.append(CompetitionListItem(
            competition=c,
            status=status,
            status_label=STATUS_LABELS[status],
            member_count=counts.get(c.id, 0),
            is_member=is_member,
            is_host=c.host_user_id == user_id,
            meta_reached=bool(results.get(c.id, False)),
            tab=tab,
        ))
    return items


async def list_listed_competitions(
    db: AsyncSession, user_id: uuid.UUID, today: date | None = None,
) -> list[CompetitionListItem]:
    """Publicly listed competitions that have not finished, soonest end first."""
    result = await db.execute(
        select(Competition)
        .where(Competition.is_listed.is_(True), Competition.deleted_at.is_(None))
        .order_by(Competition.end_date, Competition.created_at)
    )
    items = await _list_items(db, list(result.scalars().all()), user_id, today or competition_today())
    return [i for i in items if i.status != FINISHED]


async def list_my_competitions(
    db: AsyncSession, user_id: uuid.UUID, today: date | None = None,
) -> list[CompetitionListItem]:
    """Competitions the user belongs to, newest first."""
    result = await db.execute(
        select(Competition)
        .join(CompetitionMember, CompetitionMember.competition_id == Competition.id)
        .where(CompetitionMember.user_id == user_id, Competition.deleted_at.is_(None))
        .order_by(Competition.start_date.desc(), Competition.created_at.desc())
    )
    return await _list_items(db, list(result.scalars().all()), user_id, today or competition_today())
