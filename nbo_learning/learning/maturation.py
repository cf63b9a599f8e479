"""
Maturation Batch Scanner: close the loop for outcomes nobody measured.

Finds executed feedback older than the maturation window that is still
pending, re-reads the entity's engagement, classifies the change and writes
the outcome. A failure on one item never stops the rest of the batch.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from nbo_learning.learning.ports import EntityMetricProvider, FeedbackRepository
from nbo_learning.learning.schemas import (
    BatchMeasurementResult,
    FeedbackRecord,
    OutcomeType,
    OutcomeUpdate,
)

logger = structlog.get_logger(__name__)

DEFAULT_MATURATION_WINDOW_DAYS: int = 30
ENGAGEMENT_CHANGE_THRESHOLD: float = 5.0     # points of engagement score


def classify_engagement_change(
    delta: float,
    threshold: float = ENGAGEMENT_CHANGE_THRESHOLD,
) -> OutcomeType:
    """Improved at +threshold or more, declined at -threshold or less, else stable."""
    if delta >= threshold:
        return OutcomeType.ENGAGEMENT_IMPROVED
    if delta <= -threshold:
        return OutcomeType.ENGAGEMENT_DECLINED
    return OutcomeType.ENGAGEMENT_STABLE


class MaturationScanner:
    """Automatic outcome path, invoked periodically by an external trigger."""

    def __init__(
        self,
        feedback: FeedbackRepository,
        metrics: EntityMetricProvider,
        window_days: int = DEFAULT_MATURATION_WINDOW_DAYS,
        threshold: float = ENGAGEMENT_CHANGE_THRESHOLD,
    ):
        self._feedback = feedback
        self._metrics = metrics
        self.window_days = window_days
        self.threshold = threshold

    async def run(self, now: Optional[datetime] = None) -> BatchMeasurementResult:
        """Measure every matured pending feedback event."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=self.window_days)

        pending = await self._feedback.list_matured_pending(cutoff)
        result = BatchMeasurementResult()

        for feedback in pending:
            try:
                measured = await self._measure_one(feedback, now)
            except Exception as e:
                result.errors += 1
                logger.error(
                    "nbo_outcome_measurement_failed",
                    feedback_id=feedback.id,
                    target_entity_id=feedback.target_entity_id,
                    error=str(e),
                )
                # DO NOT stop, continue with next item
                continue

            if measured:
                result.measured += 1
            else:
                result.skipped += 1

        logger.info(
            "nbo_pending_outcomes_measured",
            candidates=len(pending),
            measured=result.measured,
            skipped=result.skipped,
            errors=result.errors,
            window_days=self.window_days,
        )

        return result

    async def _measure_one(self, feedback: FeedbackRecord, now: datetime) -> bool:
        """Write the outcome for one event. False when the entity has no metric."""
        current = await self._metrics.get_current_metric(feedback.target_entity_id)
        if current is None:
            logger.debug(
                "nbo_outcome_metric_unavailable",
                feedback_id=feedback.id,
                target_entity_id=feedback.target_entity_id,
            )
            return False

        before = feedback.engagement_before
        delta = current.engagement - (before if before is not None else current.engagement)
        outcome_type = classify_engagement_change(delta, self.threshold)

        await self._feedback.apply_outcome(
            feedback.id,
            OutcomeUpdate(
                outcome_type=outcome_type,
                outcome_value=delta,
                outcome_measured_at=now,
                engagement_after=current.engagement,
                msi_after=current.msi,
                cpi_after=current.cpi,
            ),
        )

        logger.info(
            "nbo_outcome_measured",
            feedback_id=feedback.id,
            outcome_type=outcome_type.value,
            outcome_value=round(delta, 4),
            source="maturation",
        )
        return True
