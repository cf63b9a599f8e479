"""
Outcome Measurer: apply a measured result to a recorded feedback event.
"""

from datetime import datetime

import structlog

from nbo_learning.exceptions import FeedbackNotFoundError, OutcomeAlreadyMeasuredError
from nbo_learning.learning.ports import FeedbackRepository
from nbo_learning.learning.schemas import FeedbackRecord, MeasureOutcomeRequest, OutcomeUpdate

logger = structlog.get_logger(__name__)


class OutcomeMeasurer:
    """
    Manual outcome path.

    By default a second measurement overwrites the first (last write wins).
    With ``enforce_single_measurement`` the pending → measured transition is
    one-way and a second write raises OutcomeAlreadyMeasuredError.
    """

    def __init__(self, feedback: FeedbackRepository, enforce_single_measurement: bool = False):
        self._feedback = feedback
        self.enforce_single_measurement = enforce_single_measurement

    async def measure(self, request: MeasureOutcomeRequest) -> FeedbackRecord:
        existing = await self._feedback.get(request.feedback_id)
        if existing is None:
            raise FeedbackNotFoundError(request.feedback_id)

        if existing.is_measured:
            if self.enforce_single_measurement:
                raise OutcomeAlreadyMeasuredError(existing.id, existing.outcome_type.value)
            logger.warning(
                "nbo_outcome_overwritten",
                feedback_id=existing.id,
                previous_outcome=existing.outcome_type.value,
                new_outcome=request.outcome_type.value,
            )

        updated = await self._feedback.apply_outcome(
            request.feedback_id,
            OutcomeUpdate(
                outcome_type=request.outcome_type,
                outcome_value=request.outcome_value,
                outcome_measured_at=datetime.utcnow(),
                engagement_after=request.engagement_after,
                msi_after=request.msi_after,
                cpi_after=request.cpi_after,
            ),
        )
        if updated is None:
            raise FeedbackNotFoundError(request.feedback_id)

        logger.info(
            "nbo_outcome_measured",
            feedback_id=updated.id,
            outcome_type=updated.outcome_type.value,
            outcome_value=updated.outcome_value,
            source="manual",
        )

        return updated
