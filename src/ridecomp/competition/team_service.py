"""Team assignment business logic.

Rules:
- Only the host manages teams, and only in team-mode competitions
- Teams are (re)created before the competition starts; creating dissolves existing teams
- Competitors are spread round-robin over the new teams in join order
- A member belongs to at most one team; non-competitors are never assigned
- Team size, when set, is never exceeded
- Team names are unique per competition (case-insensitive)
- No changes once the competition has finished
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.lifecycle import ACTIVE, FINISHED, competition_today, compute_status
from ridecomp.competition.queries import get_competition, get_membership, get_result, load_teams
from ridecomp.config import get_settings
from ridecomp.db.models import Competition, CompetitionMember, CompetitionTeam
from ridecomp.errors import Conflict, Forbidden, InvalidInput, NotFound

logger = logging.getLogger(__name__)

MAX_TEAM_NAME_LENGTH = 64


def default_team_name(index: int) -> str:
    """Default name for the index-th team (1-based)."""
    return f"Team {index}"


async def _get_host_competition(db: AsyncSession, competition_id: uuid.UUID, user_id: uuid.UUID) -> Competition:
    competition = await get_competition(db, competition_id)
    if competition.host_user_id != user_id:
        raise Forbidden("Only the host can manage teams")
    if not competition.allow_teams:
        raise Conflict("This competition does not use teams")
    return competition


async def _status(db: AsyncSession, competition: Competition, today: date | None) -> str:
    has_result = await get_result(db, competition.id) is not None
    return compute_status(competition.start_date, competition.end_date, today or competition_today(), has_result)


async def _get_team(db: AsyncSession, competition_id: uuid.UUID, team_id: int) -> CompetitionTeam:
    result = await db.execute(
        select(CompetitionTeam).where(
            CompetitionTeam.id == team_id,
            CompetitionTeam.competition_id == competition_id,
        )
    )
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFound(f"Team {team_id} not found in this competition")
    return team


async def _team_member_count(db: AsyncSession, team_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(CompetitionMember).where(CompetitionMember.team_id == team_id)
    )
    return result.scalar_one()


async def list_teams(db: AsyncSession, competition_id: uuid.UUID) -> list[tuple[CompetitionTeam, list[uuid.UUID]]]:
    """Teams in creation order with their member user ids (join order)."""
    teams = await load_teams(db, competition_id)
    result = await db.execute(
        select(CompetitionMember.team_id, CompetitionMember.user_id)
        .where(
            CompetitionMember.competition_id == competition_id,
            CompetitionMember.team_id.is_not(None),
        )
        .order_by(CompetitionMember.id)
    )
    members: dict[int, list[uuid.UUID]] = {}
    for team_id, user_id in result.all():
        members.setdefault(team_id, []).append(user_id)
    return [(t, members.get(t.id, [])) for t in teams]


async def create_teams(
    db: AsyncSession,
    competition_id: uuid.UUID,
    user_id: uuid.UUID,
    team_count: int,
    today: date | None = None,
) -> list[CompetitionTeam]:
    """Replace the competition's teams with `team_count` new ones and distribute competitors."""
    competition = await _get_host_competition(db, competition_id, user_id)

    max_teams = get_settings().max_team_count
    if team_count < 1 or team_count > max_teams:
        raise InvalidInput(f"Team count must be between 1 and {max_teams}")

    status = await _status(db, competition, today)
    if status in (ACTIVE, FINISHED):
        raise Conflict("Teams cannot be created after the competition has started")

    competitors_result = await db.execute(
        select(CompetitionMember)
        .where(
            CompetitionMember.competition_id == competition_id,
            CompetitionMember.is_competitor.is_(True),
        )
        .order_by(CompetitionMember.id)
    )
    competitors = list(competitors_result.scalars().all())

    if competition.team_size is not None and len(competitors) > team_count * competition.team_size:
        raise InvalidInput(
            f"{len(competitors)} competitors do not fit in {team_count} teams of {competition.team_size}"
        )

    # Dissolve existing teams
    await db.execute(
        update(CompetitionMember)
        .where(CompetitionMember.competition_id == competition_id)
        .values(team_id=None)
    )
    for team in await load_teams(db, competition_id):
        await db.delete(team)
    await db.flush()

    now = datetime.now(timezone.utc)
    teams = [
        CompetitionTeam(competition_id=competition_id, name=default_team_name(i), created_at=now)
        for i in range(1, team_count + 1)
    ]
    db.add_all(teams)
    await db.flush()

    for i, member in enumerate(competitors):
        member.team_id = teams[i % team_count].id
    await db.flush()

    logger.info(
        "Teams created for competition %s: %d teams, %d competitors",
        competition_id, team_count, len(competitors),
    )
    return teams


async def assign_member_to_team(
    db: AsyncSession,
    competition_id: uuid.UUID,
    host_id: uuid.UUID,
    member_user_id: uuid.UUID,
    team_id: int,
    today: date | None = None,
) -> CompetitionMember:
    """Move a competitor into a team (from no team or from another team)."""
    competition = await _get_host_competition(db, competition_id, host_id)
    if await _status(db, competition, today) == FINISHED:
        raise Conflict("Teams cannot change after the competition has finished")

    team = await _get_team(db, competition_id, team_id)
    member = await get_membership(db, competition_id, member_user_id)
    if member is None:
        raise NotFound("Member not found in this competition")
    if not member.is_competitor:
        raise Conflict("Only competitors can be assigned to a team")
    if member.team_id == team.id:
        return member

    if competition.team_size is not None and await _team_member_count(db, team.id) >= competition.team_size:
        raise Conflict(f"Team {team.name} is full ({competition.team_size} members maximum)")

    member.team_id = team.id
    await db.flush()
    logger.info("Member %s assigned to team %d in competition %s", member_user_id, team.id, competition_id)
    return member


async def unassign_member_from_team(
    db: AsyncSession,
    competition_id: uuid.UUID,
    host_id: uuid.UUID,
    member_user_id: uuid.UUID,
    today: date | None = None,
) -> CompetitionMember:
    """Remove a member from their team. A member without a team is left unchanged."""
    competition = await _get_host_competition(db, competition_id, host_id)
    if await _status(db, competition, today) == FINISHED:
        raise Conflict("Teams cannot change after the competition has finished")

    member = await get_membership(db, competition_id, member_user_id)
    if member is None:
        raise NotFound("Member not found in this competition")

    member.team_id = None
    await db.flush()
    return member


async def _name_taken(db: AsyncSession, competition_id: uuid.UUID, name: str, exclude_team_id: int) -> bool:
    """Case-insensitive name clash with another team of the same competition."""
    result = await db.execute(
        select(CompetitionTeam.id).where(
            CompetitionTeam.competition_id == competition_id,
            CompetitionTeam.id != exclude_team_id,
            func.lower(CompetitionTeam.name) == name.lower(),
        )
    )
    return result.first() is not None


async def rename_team(
    db: AsyncSession,
    competition_id: uuid.UUID,
    host_id: uuid.UUID,
    team_id: int,
    name: str,
) -> CompetitionTeam:
    """Rename a team. Names stay unique within the competition, ignoring case."""
    await _get_host_competition(db, competition_id, host_id)
    team = await _get_team(db, competition_id, team_id)

    new_name = name.strip()
    if not new_name:
        raise InvalidInput("Team name cannot be empty")
    if len(new_name) > MAX_TEAM_NAME_LENGTH:
        raise InvalidInput(f"Team name must not exceed {MAX_TEAM_NAME_LENGTH} characters")

    if await _name_taken(db, competition_id, new_name, exclude_team_id=team_id):
        raise Conflict("A team with this name already exists in this competition")

    team.name = new_name
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race against a concurrent rename to the same name
        await db.rollback()
        raise Conflict("A team with this name already exists in this competition") from None
    return team
