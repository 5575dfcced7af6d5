"""Pydantic response models for notification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    type: str
    competition_id: str | None
    payload: dict[str, Any]
    created_at: datetime | None
    read: bool
    read_at: datetime | None
    dismissed: bool


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    unread_count: int
    page: int
    per_page: int


class MarkReadResponse(BaseModel):
    success: bool


class MarkAllReadResponse(BaseModel):
    updated: int
