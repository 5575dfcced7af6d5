"""Join code generation for competitions.

Codes are short alphanumeric strings, generated server-side with a
cryptographic random source and shared by the host. Lookups are
case-insensitive: codes are stored and compared upper-cased.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ridecomp.config import get_settings
from ridecomp.db.models import Competition

# A-Z, 2-9 without the ambiguous 0/O and 1/I
CODE_CHARSET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "0O1I")


def generate_code(length: int | None = None) -> str:
    """Generate a cryptographically random join code."""
    size = length or get_settings().competition_code_length
    return "".join(secrets.choice(CODE_CHARSET) for _ in range(size))


def normalize_code(code: str) -> str:
    """Normalize a join code for case-insensitive lookup."""
    return code.strip().upper()


async def generate_unique_code(db: AsyncSession) -> str:
    """Generate a join code that doesn't already exist in the database."""
    for _ in range(10):
        code = generate_code()
        existing = await db.execute(
            select(Competition.id).where(Competition.code == code)
        )
        if existing.scalar_one_or_none() is None:
            return code
    raise RuntimeError("Failed to generate unique competition code after 10 attempts")
