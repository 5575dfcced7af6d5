"""Notification API endpoints — 4 routes."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.auth.dependencies import get_current_user_id
from ridecomp.database import get_session
from ridecomp.db.models import Notification
from ridecomp.notifications.notification_service import (
    dismiss,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)
from ridecomp.notifications.schemas import (
    MarkAllReadResponse,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


def _to_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id,
        type=n.type,
        competition_id=str(n.competition_id) if n.competition_id else None,
        payload=n.payload or {},
        created_at=n.created_at,
        read=n.read_at is not None,
        read_at=n.read_at,
        dismissed=n.dismissed_at is not None,
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Get the caller's notifications that are not dismissed (most recent first)."""
    notifications, total = await get_notifications(
        db, user_id, unread_only=unread_only, page=page, per_page=per_page,
    )
    unread = await get_unread_count(db, user_id)
    return NotificationListResponse(
        notifications=[_to_response(n) for n in notifications],
        total=total,
        unread_count=unread,
        page=page,
        per_page=per_page,
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Mark all notifications as read."""
    updated = await mark_all_as_read(db, user_id)
    await db.commit()
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: int,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Mark a notification as read. Repeating the call is a no-op."""
    found = await mark_as_read(db, user_id, notification_id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return MarkReadResponse(success=True)


@router.post("/{notification_id}/dismiss", response_model=MarkReadResponse)
async def dismiss_notification(
    notification_id: int,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Dismiss a notification. Repeating the call is a no-op."""
    found = await dismiss(db, user_id, notification_id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return MarkReadResponse(success=True)
