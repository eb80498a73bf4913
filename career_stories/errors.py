"""
Error types raised by the career stories pipeline.

Each error carries a stable ``code`` so callers (HTTP layer, CLI) can map
failures without inspecting messages. Gate rejection is not an error: it is
returned as a RejectedNarrative value.
"""

from typing import Any, Dict, Optional


class CareerStoriesError(Exception):
    """Base class for pipeline errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(CareerStoriesError):
    """Entity missing or not owned by the requesting user."""

    code = "NOT_FOUND"


class NoActivitiesError(CareerStoriesError):
    """Narrative requested for a cluster with no activities."""

    code = "NO_ACTIVITIES"


class ServiceUnavailableError(CareerStoriesError):
    """Language model unreachable, timed out or returned unusable output."""

    code = "SERVICE_UNAVAILABLE"


class PaymentRequiredError(CareerStoriesError):
    """Insufficient credits for a metered feature."""

    code = "PAYMENT_REQUIRED"


class InvalidInputError(CareerStoriesError):
    """Request arguments outside the accepted range."""

    code = "INVALID_INPUT"
