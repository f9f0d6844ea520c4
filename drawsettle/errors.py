"""Error taxonomy for settlement, claims and reprints.

Every error carries a stable ``code`` so outer layers can map it to a
response without matching on class names.
"""

from __future__ import annotations

from typing import Any, Optional


class DrawSettleError(Exception):
    """Base class for engine errors."""

    code = "engine_error"

    def __init__(self, message: str = "", details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidCombination(DrawSettleError, ValueError):
    """Malformed 3-digit string or unsupported bet type. Caller-correctable."""

    code = "invalid_combination"


class DrawNotReadyError(DrawSettleError):
    """Settlement requested before the draw is closed with a published result."""

    code = "draw_not_ready"


class StaleStateError(DrawSettleError):
    """Optimistic-concurrency conflict: the stored state moved underneath the caller."""

    code = "stale_state"

    def __init__(
        self,
        message: str = "",
        *,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ) -> None:
        super().__init__(message, details={"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual


class InvalidTransition(DrawSettleError, ValueError):
    """Requested status change is not part of the state machine."""

    code = "invalid_transition"


class NotEligible(DrawSettleError):
    """The ticket or draw is not in a state that permits the request."""

    code = "not_eligible"


class AlreadyDecided(DrawSettleError):
    """A decision was already recorded for the claim."""

    code = "already_decided"


class ResultAlreadyPublished(DrawSettleError):
    """The draw already carries a winning number."""

    code = "result_already_published"


class NotAuthorized(DrawSettleError, PermissionError):
    """The acting user's role does not allow the operation."""

    code = "not_authorized"


class NotFoundError(DrawSettleError, LookupError):
    """Referenced draw, ticket, claim or user does not exist."""

    code = "not_found"


__all__ = [
    "DrawSettleError",
    "InvalidCombination",
    "DrawNotReadyError",
    "StaleStateError",
    "InvalidTransition",
    "NotEligible",
    "AlreadyDecided",
    "ResultAlreadyPublished",
    "NotAuthorized",
    "NotFoundError",
]
