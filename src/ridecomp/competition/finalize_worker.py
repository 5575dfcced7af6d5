"""Finalize sweep arq worker — finalizes finished competitions nobody has opened yet.

Readers already finalize lazily; the sweep only shortens the delay before
hosts get their payout notification. It goes through the same insert-once
path, so running it alongside readers never produces a second result.
"""

from __future__ import annotations

import logging
from datetime import date

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.competition.lifecycle import competition_today, finalize_competition
from ridecomp.config import get_settings
from ridecomp.database import close_db, get_session_factory, init_db
from ridecomp.db.models import Competition, CompetitionResult

logger = logging.getLogger(__name__)


async def find_unfinalized(db: AsyncSession, today: date, limit: int) -> list[Competition]:
    """Live competitions whose end date has passed and that have no result yet."""
    result = await db.execute(
        select(Competition)
        .outerjoin(CompetitionResult, CompetitionResult.competition_id == Competition.id)
        .where(
            Competition.deleted_at.is_(None),
            Competition.end_date < today,
            CompetitionResult.competition_id.is_(None),
        )
        .order_by(Competition.end_date, Competition.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def sweep_finished_competitions(
    db: AsyncSession,
    today: date | None = None,
    redis: aioredis.Redis | None = None,
    limit: int | None = None,
) -> int:
    """Finalize one batch. Returns how many results this sweep wrote."""
    current = today or competition_today()
    batch = await find_unfinalized(db, current, limit or get_settings().finalize_sweep_batch_size)
    finalized = 0
    for competition in batch:
        try:
            outcome = await finalize_competition(db, competition, today=current, redis=redis)
        except Exception:
            logger.exception("Failed to finalize competition %s", competition.id)
            await db.rollback()
            continue
        if outcome.finalized:
            finalized += 1

    if finalized:
        logger.info("Finalized %d competitions", finalized)
    return finalized


async def finalize_finished_competitions(ctx: dict) -> int:
    """arq job: finalize finished competitions. Runs every 10 minutes."""
    async with get_session_factory()() as db:
        return await sweep_finished_competitions(db, redis=ctx.get("redis"))


async def finalize_worker_startup(ctx: dict) -> None:
    """Initialize connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Finalize worker started")


async def finalize_worker_shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    redis_client = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Finalize worker shut down")


class FinalizeWorkerSettings:
    """arq worker settings for the finalize sweep.

    Import path for arq CLI: arq ridecomp.competition.finalize_worker.FinalizeWorkerSettings
    """

    functions = [finalize_finished_competitions]
    on_startup = finalize_worker_startup
    on_shutdown = finalize_worker_shutdown
    max_jobs = 1
    job_timeout = 300  # 5 minutes max per sweep
    # Cron: every 10 min, defined when deploying via arq CLI
