"""
SQLAlchemy-backed collaborators.

Each adapter is bound to one AsyncSession. They flush but never commit:
the caller owns the transaction.
"""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nbo_learning.db.models import EntityProfile, FeedbackEvent, Recommendation
from nbo_learning.learning.schemas import (
    EntityMetric,
    FeedbackRecord,
    OutcomeType,
    OutcomeUpdate,
    RecommendationSnapshot,
    RecommendationStatus,
)


class SqlRecommendationStore:
    """Reads recommendations and patches their status."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationSnapshot]:
        row = await self._session.get(Recommendation, recommendation_id)
        if row is None:
            return None
        return RecommendationSnapshot(
            id=row.id,
            target_entity_id=row.target_entity_id,
            action_type=row.action_type,
            channel=row.channel,
            theme=row.theme,
            confidence=row.confidence,
            status=row.status,
        )

    async def patch_recommendation_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        accepted_at: Optional[datetime] = None,
        accepted_by: Optional[str] = None,
    ) -> None:
        values: dict = {"status": status.value}
        if accepted_at is not None:
            values["accepted_at"] = accepted_at
        if accepted_by is not None:
            values["accepted_by"] = accepted_by

        await self._session.execute(
            update(Recommendation)
            .where(Recommendation.id == recommendation_id)
            .values(**values)
        )
        await self._session.flush()


class SqlEntityMetricProvider:
    """Reads the current engagement score (and MSI/CPI) from entity profiles."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_current_metric(self, target_entity_id: str) -> Optional[EntityMetric]:
        row = await self._session.get(EntityProfile, target_entity_id, populate_existing=True)
        if row is None:
            return None
        return EntityMetric(
            engagement=row.overall_engagement_score,
            msi=row.msi,
            cpi=row.cpi,
        )


class SqlFeedbackRepository:
    """Persistence for feedback events."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, record: FeedbackRecord) -> FeedbackRecord:
        row = FeedbackEvent(**record.model_dump(mode="python"))
        self._session.add(row)
        await self._session.flush()
        return self._model_to_record(row)

    async def get(self, feedback_id: str) -> Optional[FeedbackRecord]:
        row = await self._session.get(FeedbackEvent, feedback_id)
        return self._model_to_record(row) if row else None

    async def get_by_recommendation(self, recommendation_id: str) -> Optional[FeedbackRecord]:
        result = await self._session.execute(
            select(FeedbackEvent)
            .where(FeedbackEvent.recommendation_id == recommendation_id)
            .order_by(FeedbackEvent.feedback_at.asc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._model_to_record(row) if row else None

    async def list_for_entity(self, target_entity_id: str, limit: int) -> list[FeedbackRecord]:
        result = await self._session.execute(
            select(FeedbackEvent)
            .where(FeedbackEvent.target_entity_id == target_entity_id)
            .order_by(FeedbackEvent.feedback_at.desc())
            .limit(limit)
        )
        return [self._model_to_record(row) for row in result.scalars().all()]

    async def list_in_window(self, start: datetime, end: datetime) -> list[FeedbackRecord]:
        result = await self._session.execute(
            select(FeedbackEvent).where(
                FeedbackEvent.feedback_at >= start,
                FeedbackEvent.feedback_at <= end,
            )
        )
        return [self._model_to_record(row) for row in result.scalars().all()]

    async def list_matured_pending(self, executed_before: datetime) -> list[FeedbackRecord]:
        result = await self._session.execute(
            select(FeedbackEvent)
            .where(
                FeedbackEvent.outcome_type == OutcomeType.PENDING.value,
                FeedbackEvent.executed_at.is_not(None),
                FeedbackEvent.executed_at <= executed_before,
            )
            .order_by(FeedbackEvent.executed_at.asc())
        )
        return [self._model_to_record(row) for row in result.scalars().all()]

    async def apply_outcome(self, feedback_id: str, outcome: OutcomeUpdate) -> Optional[FeedbackRecord]:
        """
        Write a measured outcome inside a SAVEPOINT.

        A failed write rolls back only this row; the session stays usable
        and earlier writes in the same transaction are kept.
        """
        row = await self._session.get(FeedbackEvent, feedback_id)
        if row is None:
            return None

        async with self._session.begin_nested():
            row.outcome_type = outcome.outcome_type.value
            row.outcome_value = outcome.outcome_value
            row.outcome_measured_at = outcome.outcome_measured_at
            row.engagement_after = outcome.engagement_after
            row.msi_after = outcome.msi_after
            row.cpi_after = outcome.cpi_after
        return self._model_to_record(row)

    async def count_untrained(self) -> int:
        result = await self._session.execute(
            select(func.count(FeedbackEvent.id)).where(
                FeedbackEvent.used_for_training.is_(False)
            )
        )
        return result.scalar_one() or 0

    async def mark_used_for_training(self, feedback_ids: Sequence[str]) -> int:
        if not feedback_ids:
            return 0
        result = await self._session.execute(
            update(FeedbackEvent)
            .where(
                FeedbackEvent.id.in_(list(feedback_ids)),
                FeedbackEvent.used_for_training.is_(False),
            )
            .values(used_for_training=True)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
        return result.rowcount or 0

    def _model_to_record(self, model: FeedbackEvent) -> FeedbackRecord:
        """Convert ORM model to Pydantic schema."""
        return FeedbackRecord(
            id=model.id,
            recommendation_id=model.recommendation_id,
            target_entity_id=model.target_entity_id,
            recommended_action=model.recommended_action,
            recommended_channel=model.recommended_channel,
            recommended_theme=model.recommended_theme,
            original_confidence=model.original_confidence,
            feedback_type=model.feedback_type,
            feedback_by=model.feedback_by,
            feedback_at=model.feedback_at,
            feedback_reason=model.feedback_reason,
            executed_action=model.executed_action,
            executed_channel=model.executed_channel,
            executed_theme=model.executed_theme,
            executed_at=model.executed_at,
            outcome_type=model.outcome_type,
            outcome_value=model.outcome_value,
            outcome_measured_at=model.outcome_measured_at,
            engagement_before=model.engagement_before,
            engagement_after=model.engagement_after,
            msi_before=model.msi_before,
            msi_after=model.msi_after,
            cpi_before=model.cpi_before,
            cpi_after=model.cpi_after,
            used_for_training=model.used_for_training,
        )
