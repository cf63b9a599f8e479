"""
Feedback Recorder: record how an operator responded to a recommendation.

Snapshots what was recommended, captures the entity's baseline metrics,
persists the feedback event and patches the recommendation's status.
"""

import uuid
from datetime import datetime

import structlog

from nbo_learning.exceptions import RecommendationNotFoundError
from nbo_learning.learning.ports import (
    EntityMetricProvider,
    FeedbackRepository,
    RecommendationStore,
)
from nbo_learning.learning.schemas import (
    FeedbackRecord,
    FeedbackType,
    OutcomeType,
    RecommendationStatus,
    RecordFeedbackRequest,
)

logger = structlog.get_logger(__name__)

FEEDBACK_STATUS_MAP: dict[FeedbackType, RecommendationStatus] = {
    FeedbackType.ACCEPTED: RecommendationStatus.ACCEPTED,
    FeedbackType.EXECUTED: RecommendationStatus.ACCEPTED,
    FeedbackType.REJECTED: RecommendationStatus.REJECTED,
    FeedbackType.MODIFIED: RecommendationStatus.OVERRIDDEN,
    FeedbackType.DEFERRED: RecommendationStatus.DEFERRED,
    FeedbackType.EXPIRED: RecommendationStatus.EXPIRED,
}


def map_feedback_to_status(feedback_type: FeedbackType) -> RecommendationStatus:
    """Recommendation status implied by a feedback type (unknown types stay pending)."""
    return FEEDBACK_STATUS_MAP.get(feedback_type, RecommendationStatus.PENDING)


class FeedbackRecorder:
    """Validates and persists a single feedback event against an existing recommendation."""

    def __init__(
        self,
        recommendations: RecommendationStore,
        metrics: EntityMetricProvider,
        feedback: FeedbackRepository,
    ):
        self._recommendations = recommendations
        self._metrics = metrics
        self._feedback = feedback

    async def record(self, request: RecordFeedbackRequest) -> FeedbackRecord:
        """
        Record feedback on a recommendation.

        Raises:
            RecommendationNotFoundError: the recommendation does not exist.
                Nothing is persisted in that case.
        """
        recommendation = await self._recommendations.get_recommendation(request.recommendation_id)
        if recommendation is None:
            raise RecommendationNotFoundError(request.recommendation_id)

        # Baseline is best-effort: a missing entity leaves the *_before fields null
        baseline = await self._metrics.get_current_metric(recommendation.target_entity_id)

        now = datetime.utcnow()
        record = FeedbackRecord(
            id=f"fb_{uuid.uuid4().hex[:12]}",
            recommendation_id=recommendation.id,
            target_entity_id=recommendation.target_entity_id,
            recommended_action=recommendation.action_type,
            recommended_channel=recommendation.channel,
            recommended_theme=recommendation.theme,
            original_confidence=recommendation.confidence,
            feedback_type=request.feedback_type,
            feedback_by=request.feedback_by,
            feedback_at=now,
            feedback_reason=request.feedback_reason,
            executed_action=request.executed_action,
            executed_channel=request.executed_channel,
            executed_theme=request.executed_theme,
            executed_at=now if request.feedback_type == FeedbackType.EXECUTED else None,
            outcome_type=OutcomeType.PENDING,
            engagement_before=baseline.engagement if baseline else None,
            msi_before=baseline.msi if baseline else None,
            cpi_before=baseline.cpi if baseline else None,
        )
        saved = await self._feedback.add(record)

        status = map_feedback_to_status(request.feedback_type)
        accepted = status == RecommendationStatus.ACCEPTED
        await self._recommendations.patch_recommendation_status(
            recommendation.id,
            status,
            accepted_at=now if accepted else None,
            accepted_by=request.feedback_by if accepted else None,
        )

        logger.info(
            "nbo_feedback_recorded",
            feedback_id=saved.id,
            recommendation_id=recommendation.id,
            target_entity_id=recommendation.target_entity_id,
            feedback_type=request.feedback_type.value,
            recommendation_status=status.value,
            has_baseline=baseline is not None,
        )

        return saved
