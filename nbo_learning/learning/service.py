"""
Learning Service: the feedback and calibration loop's public operations.

Usage:
    from nbo_learning.learning.service import create_learning_service

    async with get_db_session() as session:
        service = create_learning_service(session)

        feedback = await service.record_feedback(
            RecordFeedbackRequest(
                recommendation_id="rec_123",
                feedback_type=FeedbackType.EXECUTED,
                feedback_by="rep_42",
            )
        )

        performance = await service.get_model_performance()
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from nbo_learning.config import Settings, settings as default_settings
from nbo_learning.learning.maturation import MaturationScanner
from nbo_learning.learning.measurer import OutcomeMeasurer
from nbo_learning.learning.metrics import LearningMetricsCalculator
from nbo_learning.learning.performance import ModelPerformanceEvaluator
from nbo_learning.learning.ports import (
    EntityMetricProvider,
    FeedbackRepository,
    RecommendationStore,
)
from nbo_learning.learning.recorder import FeedbackRecorder
from nbo_learning.learning.repositories import (
    SqlEntityMetricProvider,
    SqlFeedbackRepository,
    SqlRecommendationStore,
)
from nbo_learning.learning.schemas import (
    BatchMeasurementResult,
    FeedbackRecord,
    LearningMetrics,
    MeasureOutcomeRequest,
    ModelPerformance,
    RecordFeedbackRequest,
)

logger = structlog.get_logger(__name__)


class LearningService:
    """
    Stateless facade over the learning loop.

    Holds no data of its own: every result is computed from the injected
    collaborators at call time.
    """

    def __init__(
        self,
        recommendations: RecommendationStore,
        metrics: EntityMetricProvider,
        feedback: FeedbackRepository,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self._feedback = feedback

        self.recorder = FeedbackRecorder(recommendations, metrics, feedback)
        self.measurer = OutcomeMeasurer(
            feedback,
            enforce_single_measurement=self.settings.enforce_single_measurement,
        )
        self.scanner = MaturationScanner(
            feedback,
            metrics,
            window_days=self.settings.maturation_window_days,
            threshold=self.settings.engagement_change_threshold,
        )
        self.calculator = LearningMetricsCalculator(feedback)
        self.evaluator = ModelPerformanceEvaluator(
            min_feedback_for_training=self.settings.min_feedback_for_training,
            estimated_improvement_potential=self.settings.estimated_improvement_potential,
        )

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    async def record_feedback(self, request: RecordFeedbackRequest) -> FeedbackRecord:
        return await self.recorder.record(request)

    async def measure_outcome(self, request: MeasureOutcomeRequest) -> FeedbackRecord:
        return await self.measurer.measure(request)

    async def get_feedback(self, recommendation_id: str) -> Optional[FeedbackRecord]:
        """Feedback recorded for a recommendation, or None."""
        return await self._feedback.get_by_recommendation(recommendation_id)

    async def get_entity_feedback(
        self,
        target_entity_id: str,
        limit: Optional[int] = None,
    ) -> list[FeedbackRecord]:
        """All feedback for a target entity, most recent first."""
        return await self._feedback.list_for_entity(
            target_entity_id,
            limit if limit is not None else self.settings.entity_feedback_default_limit,
        )

    # =========================================================================
    # METRICS
    # =========================================================================

    async def calculate_metrics(
        self,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> LearningMetrics:
        return await self.calculator.calculate(start, end)

    async def get_model_performance(self) -> ModelPerformance:
        """Evaluate the trailing performance window."""
        now = datetime.utcnow()
        start = now - timedelta(days=self.settings.performance_window_days)

        metrics = await self.calculator.calculate(start, now)
        untrained = await self._feedback.count_untrained()
        return self.evaluator.evaluate(metrics, untrained, now=now)

    # =========================================================================
    # BATCH / TRAINING
    # =========================================================================

    async def measure_pending_outcomes(self) -> BatchMeasurementResult:
        return await self.scanner.run()

    async def mark_used_for_training(self, feedback_ids: Sequence[str]) -> int:
        """Flag feedback as consumed by a training run; returns rows updated."""
        updated = await self._feedback.mark_used_for_training(feedback_ids)
        logger.info(
            "nbo_feedback_marked_for_training",
            requested=len(feedback_ids),
            updated=updated,
        )
        return updated


# =============================================================================
# FACTORY
# =============================================================================


def create_learning_service(
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> LearningService:
    """
    Create a learning service wired to SQL collaborators on one session.

    The caller owns the session and commits it.
    """
    return LearningService(
        recommendations=SqlRecommendationStore(session),
        metrics=SqlEntityMetricProvider(session),
        feedback=SqlFeedbackRepository(session),
        settings=settings,
    )
