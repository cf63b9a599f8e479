"""
Custom exceptions for the NBO learning loop.

Provides structured errors with stable error codes.
Missing entity metrics are NOT errors; they degrade to null fields.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes."""
    # General errors (1xxx)
    UNKNOWN_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"

    # Data errors (2xxx)
    DATA_NOT_FOUND = "E2000"
    OUTCOME_ALREADY_MEASURED = "E2004"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    additional: Dict[str, Any] = field(default_factory=dict)


class LearningError(Exception):
    """
    Base exception for the learning loop.

    All custom exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or ErrorContext()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "timestamp": self.context.timestamp.isoformat(),
        }
        if self.context.resource_type:
            result["resource_type"] = self.context.resource_type
        if self.context.resource_id:
            result["resource_id"] = self.context.resource_id
        return result

    def __str__(self) -> str:
        return self.message


class NotFoundError(LearningError):
    """A referenced record does not exist. Surfaced to the caller, never retried."""

    def __init__(self, message: str, resource_type: str, resource_id: str):
        super().__init__(
            message=message,
            error_code=ErrorCode.DATA_NOT_FOUND,
            context=ErrorContext(resource_type=resource_type, resource_id=resource_id),
        )


class RecommendationNotFoundError(NotFoundError):
    def __init__(self, recommendation_id: str):
        super().__init__(
            f"Recommendation not found: {recommendation_id}",
            resource_type="recommendation",
            resource_id=recommendation_id,
        )


class FeedbackNotFoundError(NotFoundError):
    def __init__(self, feedback_id: str):
        super().__init__(
            f"Feedback not found: {feedback_id}",
            resource_type="feedback",
            resource_id=feedback_id,
        )


class OutcomeAlreadyMeasuredError(LearningError):
    """Raised only when the single-measurement guard is enabled."""

    def __init__(self, feedback_id: str, outcome_type: str):
        super().__init__(
            message=f"Outcome already measured for feedback {feedback_id}: {outcome_type}",
            error_code=ErrorCode.OUTCOME_ALREADY_MEASURED,
            context=ErrorContext(
                resource_type="feedback",
                resource_id=feedback_id,
                additional={"outcome_type": outcome_type},
            ),
        )
