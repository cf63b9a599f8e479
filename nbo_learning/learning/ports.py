"""
Collaborator interfaces consumed by the learning loop.

The SQL implementations live in ``repositories.py``; tests may substitute
in-memory fakes.
"""

from datetime import datetime
from typing import Optional, Protocol, Sequence

from nbo_learning.learning.schemas import (
    EntityMetric,
    FeedbackRecord,
    OutcomeUpdate,
    RecommendationSnapshot,
    RecommendationStatus,
)


class RecommendationStore(Protocol):
    async def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationSnapshot]:
        ...

    async def patch_recommendation_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        accepted_at: Optional[datetime] = None,
        accepted_by: Optional[str] = None,
    ) -> None:
        ...


class EntityMetricProvider(Protocol):
    async def get_current_metric(self, target_entity_id: str) -> Optional[EntityMetric]:
        """Current metrics for an entity, or None when the entity has no data."""
        ...


class FeedbackRepository(Protocol):
    async def add(self, record: FeedbackRecord) -> FeedbackRecord:
        ...

    async def get(self, feedback_id: str) -> Optional[FeedbackRecord]:
        ...

    async def get_by_recommendation(self, recommendation_id: str) -> Optional[FeedbackRecord]:
        ...

    async def list_for_entity(self, target_entity_id: str, limit: int) -> list[FeedbackRecord]:
        """Feedback for one entity, most recent first."""
        ...

    async def list_in_window(self, start: datetime, end: datetime) -> list[FeedbackRecord]:
        """Feedback whose feedback_at falls in [start, end]."""
        ...

    async def list_matured_pending(self, executed_before: datetime) -> list[FeedbackRecord]:
        """Unmeasured feedback executed at or before the cutoff."""
        ...

    async def apply_outcome(self, feedback_id: str, outcome: OutcomeUpdate) -> Optional[FeedbackRecord]:
        """Write a measured outcome; None if the feedback does not exist."""
        ...

    async def count_untrained(self) -> int:
        ...

    async def mark_used_for_training(self, feedback_ids: Sequence[str]) -> int:
        ...
