"""Platform filter: which income sources count toward competition scoring.

Only the ride-hailing platforms in the configured allow-list qualify. Matching
is case- and accent-insensitive and accepts either the platform's internal key
or its display label, so a user renaming a platform cannot turn a custom
income source into a qualifying one.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable
from typing import Protocol, TypeVar

from ridecomp.config import get_settings


class _PlatformTagged(Protocol):
    platform_key: str
    platform_label: str | None


_T = TypeVar("_T", bound=_PlatformTagged)


def normalize_platform(value: str | None) -> str:
    """Trim, lowercase and strip accents (NFD, drop combining marks)."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def qualifying_platforms() -> frozenset[str]:
    """The normalized allow-list from settings."""
    return frozenset(normalize_platform(p) for p in get_settings().qualifying_platforms)


def is_qualifying_platform(key_or_label: str | None) -> bool:
    """True if the platform key or label is in the allow-list."""
    normalized = normalize_platform(key_or_label)
    return bool(normalized) and normalized in qualifying_platforms()


def is_qualifying(platform_key: str | None, platform_label: str | None = None) -> bool:
    """A record qualifies when either its key or its label is allow-listed."""
    return is_qualifying_platform(platform_key) or is_qualifying_platform(platform_label)


def filter_contributions(items: Iterable[_T]) -> list[_T]:
    """Keep only contributions from qualifying platforms. Idempotent."""
    return [item for item in items if is_qualifying(item.platform_key, item.platform_label)]
