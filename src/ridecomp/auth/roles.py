"""Caller roles on a competition: host, administrator."""

from __future__ import annotations

import uuid

from ridecomp.config import get_settings
from ridecomp.db.models import Competition


def is_admin(user_id: uuid.UUID) -> bool:
    """True if the user id is listed in RIDECOMP_ADMIN_USER_IDS."""
    return user_id in get_settings().admin_user_ids


def is_host_or_admin(competition: Competition, user_id: uuid.UUID) -> bool:
    return competition.host_user_id == user_id or is_admin(user_id)
