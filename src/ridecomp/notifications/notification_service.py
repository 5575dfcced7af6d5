"""Notification creation and delivery service.

Notifications are:
1. Persisted in the database, once per (recipient, competition, type)
2. Pushed to the user via Redis pub/sub (best effort)

Read and dismissed state live on the row, per recipient, and both
transitions are idempotent: the first call stamps the time, later calls
keep the original stamp and still report success.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.db.models import Notification
from ridecomp.errors import InvalidInput

logger = logging.getLogger(__name__)

HOST_PAYOUT = "competition_host_payout"
HOST_NO_WINNER = "competition_host_no_winner"
FINISH_RESULT = "competition_finish_result"

VALID_TYPES = {HOST_PAYOUT, HOST_NO_WINNER, FINISH_RESULT}


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "competition_id": str(notification.competition_id) if notification.competition_id else None,
        "payload": notification.payload,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
        "read": notification.read_at is not None,
    }


async def push_notification(redis: Any, notification: Notification) -> None:
    """Publish a notification on the recipient's channel. Failures are logged, not raised."""
    ws_payload = {"event": "notification", "data": serialize_notification(notification)}
    try:
        await redis.publish(f"ws:user:{notification.user_id}", json.dumps(ws_payload))
    except Exception:
        logger.warning("Failed to push notification %s via Redis", notification.id, exc_info=True)


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    type_: str,
    competition_id: uuid.UUID | None,
    payload: dict[str, Any],
    redis: Any | None = None,
) -> Notification:
    """Create a notification and, if a Redis client is given, push it."""
    if type_ not in VALID_TYPES:
        raise InvalidInput(f"Invalid notification type: {type_}. Must be one of {sorted(VALID_TYPES)}")

    notification = Notification(
        user_id=user_id,
        type=type_,
        competition_id=competition_id,
        payload=payload,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    await db.flush()

    if redis is not None:
        await push_notification(redis, notification)
    return notification


async def get_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    unread_only: bool = False,
    include_dismissed: bool = False,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.read_at.is_(None))
    if not include_dismissed:
        conditions.append(Notification.dismissed_at.is_(None))

    total_result = await db.execute(
        select(func.count()).select_from(Notification).where(*conditions)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def _stamp(db: AsyncSession, user_id: uuid.UUID, notification_id: int, column: str) -> bool:
    """Set a timestamp column once. Returns True if the notification exists for this user."""
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return False
    if getattr(notification, column) is None:
        setattr(notification, column, datetime.now(timezone.utc))
        await db.flush()
    return True


async def mark_as_read(db: AsyncSession, user_id: uuid.UUID, notification_id: int) -> bool:
    """Mark a single notification as read. Returns True if found."""
    return await _stamp(db, user_id, notification_id, "read_at")


async def dismiss(db: AsyncSession, user_id: uuid.UUID, notification_id: int) -> bool:
    """Dismiss a notification (also marks it read). Returns True if found."""
    found = await _stamp(db, user_id, notification_id, "dismissed_at")
    if found:
        await _stamp(db, user_id, notification_id, "read_at")
    return found


async def mark_all_as_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount


async def get_unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Get count of unread, not dismissed notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
            Notification.dismissed_at.is_(None),
        )
    )
    return result.scalar_one()
