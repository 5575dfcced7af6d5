"""Typed error taxonomy for competition operations.

Every service raises one of these before any write. They subclass ValueError,
so callers that only care about "the request was rejected" can keep catching
ValueError, while the global error handler maps each kind to its own status.
"""

from __future__ import annotations


class CompetitionError(ValueError):
    """Base class for errors surfaced to API callers with a specific kind."""

    status_code = 400
    code = "error"


class NotFound(CompetitionError):
    """Competition code/id unresolved, or a team/member reference is missing."""

    status_code = 404
    code = "not_found"


class Forbidden(CompetitionError):
    """Non-member reading a private competition, or non-host attempting a host action."""

    status_code = 403
    code = "forbidden"


class Conflict(CompetitionError):
    """Duplicate team name, duplicate membership, or an action invalid in the current state."""

    status_code = 409
    code = "conflict"


class InvalidInput(CompetitionError):
    """Malformed dates, non-positive goal/prize values, team size below 1."""

    status_code = 422
    code = "invalid_input"


class InvalidCredentials(CompetitionError):
    """Wrong join code or password."""

    status_code = 401
    code = "invalid_credentials"
