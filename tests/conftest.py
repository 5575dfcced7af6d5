"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) created from the ORM
metadata, one per test. The API client overrides the session and auth
dependencies; Redis is never initialized, so rate limiting and notification
push are skipped.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import date, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import HTTPException, Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ridecomp.auth.dependencies import get_current_user_id
from ridecomp.competition.competition_service import create_competition, join_competition
from ridecomp.competition.team_service import create_teams
from ridecomp.config import get_settings
from ridecomp.database import get_session
from ridecomp.db.base import Base
from ridecomp.db.models import Competition, IncomeDay, IncomeDayItem, Profile
from ridecomp.main import create_app

TEST_USER_HEADER = "X-Test-User"
DEFAULT_PASSWORD = "corrida123"


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    """Default settings for every test; individual tests may set RIDECOMP_* env vars."""
    monkeypatch.setenv("RIDECOMP_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ridecomp.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service calls and assertions."""
    async with session_factory() as session:
        yield session


class Seeder:
    """Writes committed rows through short-lived sessions so every other session sees them."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    async def profile(
        self,
        first_name: str | None = None,
        last_name: str | None = None,
        display_name: str | None = None,
        whatsapp: str | None = None,
    ) -> uuid.UUID:
        user_id = uuid.uuid4()
        async with self._factory() as db:
            db.add(Profile(
                id=user_id,
                first_name=first_name,
                last_name=last_name,
                display_name=display_name,
                whatsapp=whatsapp,
            ))
            await db.commit()
        return user_id

    async def income(
        self,
        user_id: uuid.UUID,
        day: date,
        platform: str,
        amount: str | int,
        *,
        label: str | None = None,
        trips: int = 0,
    ) -> None:
        """Add one platform line to the user's income day, creating the day if needed."""
        async with self._factory() as db:
            result = await db.execute(select(IncomeDay).where(IncomeDay.user_id == user_id, IncomeDay.date == day))
            income_day = result.scalar_one_or_none()
            if income_day is None:
                income_day = IncomeDay(user_id=user_id, date=day)
                db.add(income_day)
                await db.flush()
            db.add(IncomeDayItem(
                income_day_id=income_day.id,
                platform=platform,
                platform_label=label,
                amount=Decimal(str(amount)),
                trips=trips,
            ))
            await db.commit()

    async def competition(
        self,
        host_id: uuid.UUID,
        *,
        start: date,
        end: date,
        goal: str | int = "1000",
        prize: str | int = "500",
        name: str = "Corrida de Outubro",
        password: str = DEFAULT_PASSWORD,
        max_members: int | None = None,
        allow_teams: bool = False,
        team_size: int | None = None,
        host_participates: bool = True,
        is_listed: bool = False,
    ) -> Competition:
        async with self._factory() as db:
            competition = await create_competition(
                db,
                host_id,
                name=name,
                description=None,
                goal_value=Decimal(str(goal)),
                start_date=start,
                end_date=end,
                password=password,
                prize_value=Decimal(str(prize)),
                max_members=max_members,
                allow_teams=allow_teams,
                team_size=team_size,
                host_participates=host_participates,
                is_listed=is_listed,
            )
            await db.commit()
            return competition

    async def join(self, user_id: uuid.UUID, competition: Competition, **kwargs) -> None:
        """Join as of the start date, so past competitions can be populated."""
        async with self._factory() as db:
            await join_competition(
                db, user_id, competition.code, DEFAULT_PASSWORD, today=competition.start_date, **kwargs,
            )
            await db.commit()

    async def teams(self, competition: Competition, count: int) -> list[int]:
        """Create teams the day before the start; returns team ids in creation order."""
        async with self._factory() as db:
            teams = await create_teams(
                db, competition.id, competition.host_user_id, count,
                today=competition.start_date - timedelta(days=1),
            )
            await db.commit()
            return [t.id for t in teams]


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def grant_admin(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Make the given users administrators for the rest of the test."""

    def _grant(*user_ids: uuid.UUID) -> None:
        monkeypatch.setenv("RIDECOMP_ADMIN_USER_IDS", json.dumps([str(u) for u in user_ids]))
        get_settings.cache_clear()

    return _grant


@pytest.fixture
def as_user() -> Callable[[uuid.UUID], dict[str, str]]:
    """Headers that authenticate a request as the given user."""

    def _headers(user_id: uuid.UUID) -> dict[str, str]:
        return {TEST_USER_HEADER: str(user_id)}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with the session and auth dependencies overridden."""
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _user(request: Request) -> uuid.UUID:
        raw = request.headers.get(TEST_USER_HEADER)
        if not raw:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return uuid.UUID(raw)

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_current_user_id] = _user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
