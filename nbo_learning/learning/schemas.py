"""
NBO Learning Schemas.

Closed enumerations, the feedback record, and the derived metric snapshots.
Records copied from a recommendation are frozen: they keep what was
recommended at feedback time, whatever happens to the recommendation later.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Closed sets ─────────────────────────────────────────────────────────


class NBOActionType(StrEnum):
    ENGAGE = "engage"
    REINFORCE = "reinforce"
    DEFEND = "defend"
    NURTURE = "nurture"
    EXPAND = "expand"
    PAUSE = "pause"
    REACTIVATE = "reactivate"


class Channel(StrEnum):
    EMAIL = "email"
    REP_VISIT = "rep_visit"
    WEBINAR = "webinar"
    CONFERENCE = "conference"
    DIGITAL_AD = "digital_ad"
    PHONE = "phone"


class RecommendationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    OVERRIDDEN = "overridden"
    DEFERRED = "deferred"
    EXPIRED = "expired"


class FeedbackType(StrEnum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"
    DEFERRED = "deferred"
    EXPIRED = "expired"
    EXECUTED = "executed"


class OutcomeType(StrEnum):
    PENDING = "pending"
    ENGAGEMENT_IMPROVED = "engagement_improved"
    ENGAGEMENT_DECLINED = "engagement_declined"
    ENGAGEMENT_STABLE = "engagement_stable"
    COMPETITIVE_DEFENDED = "competitive_defended"
    CHANNEL_ACTIVATED = "channel_activated"
    RELATIONSHIP_REACTIVATED = "relationship_reactivated"
    SATURATION_REDUCED = "saturation_reduced"
    OTHER_NEGATIVE = "other_negative"


class IndicatorStatus(StrEnum):
    ON_TRACK = "on_track"
    WARNING = "warning"
    CRITICAL = "critical"


class Trend(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class HealthLabel(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class SuggestionPriority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Outcomes counted as successes in every rate calculation
POSITIVE_OUTCOMES: frozenset[OutcomeType] = frozenset({
    OutcomeType.ENGAGEMENT_IMPROVED,
    OutcomeType.COMPETITIVE_DEFENDED,
    OutcomeType.CHANNEL_ACTIVATED,
    OutcomeType.RELATIONSHIP_REACTIVATED,
    OutcomeType.SATURATION_REDUCED,
})

# Feedback types that count as "accepted" (and as executed in effectiveness tables)
ACCEPTED_FEEDBACK: frozenset[FeedbackType] = frozenset({
    FeedbackType.ACCEPTED,
    FeedbackType.EXECUTED,
})


# ── Collaborator values ─────────────────────────────────────────────────


class RecommendationSnapshot(BaseModel):
    """A recommendation as read from the recommendation store."""
    model_config = ConfigDict(frozen=True)

    id: str
    target_entity_id: str
    action_type: NBOActionType
    channel: Channel
    theme: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    status: RecommendationStatus = RecommendationStatus.PENDING


class EntityMetric(BaseModel):
    """Current metrics for a target entity."""
    model_config = ConfigDict(frozen=True)

    engagement: float
    msi: Optional[float] = None     # market saturation index
    cpi: Optional[float] = None     # competitive pressure index


# ── Feedback ────────────────────────────────────────────────────────────


class FeedbackRecord(BaseModel):
    """An operator's response to a recommendation, plus its measured outcome."""
    model_config = ConfigDict(frozen=True)

    id: str
    recommendation_id: str
    target_entity_id: str

    # Snapshot of what was recommended
    recommended_action: NBOActionType
    recommended_channel: Channel
    recommended_theme: Optional[str] = None
    original_confidence: float = Field(ge=0.0, le=1.0)

    # Feedback
    feedback_type: FeedbackType
    feedback_by: Optional[str] = None
    feedback_at: datetime
    feedback_reason: Optional[str] = None
    executed_action: Optional[NBOActionType] = None
    executed_channel: Optional[Channel] = None
    executed_theme: Optional[str] = None
    executed_at: Optional[datetime] = None

    # Outcome
    outcome_type: OutcomeType = OutcomeType.PENDING
    outcome_value: Optional[float] = None
    outcome_measured_at: Optional[datetime] = None

    engagement_before: Optional[float] = None
    engagement_after: Optional[float] = None
    msi_before: Optional[float] = None
    msi_after: Optional[float] = None
    cpi_before: Optional[float] = None
    cpi_after: Optional[float] = None

    used_for_training: bool = False

    @property
    def is_accepted(self) -> bool:
        return self.feedback_type in ACCEPTED_FEEDBACK

    @property
    def is_measured(self) -> bool:
        return self.outcome_type != OutcomeType.PENDING

    @property
    def is_positive(self) -> bool:
        return self.outcome_type in POSITIVE_OUTCOMES

    @property
    def engagement_change(self) -> Optional[float]:
        if self.engagement_before is None or self.engagement_after is None:
            return None
        return self.engagement_after - self.engagement_before

    @property
    def msi_change(self) -> Optional[float]:
        if self.msi_before is None or self.msi_after is None:
            return None
        return self.msi_after - self.msi_before


class RecordFeedbackRequest(BaseModel):
    """Request to record operator feedback on a recommendation."""
    recommendation_id: str
    feedback_type: FeedbackType
    feedback_by: Optional[str] = None
    feedback_reason: Optional[str] = None
    executed_action: Optional[NBOActionType] = None
    executed_channel: Optional[Channel] = None
    executed_theme: Optional[str] = None


class MeasureOutcomeRequest(BaseModel):
    """Request to record the measured outcome of a feedback event."""
    feedback_id: str
    outcome_type: OutcomeType
    outcome_value: Optional[float] = None
    engagement_after: Optional[float] = None
    msi_after: Optional[float] = None
    cpi_after: Optional[float] = None


class OutcomeUpdate(BaseModel):
    """Fields written when an outcome is measured (manually or by the scanner)."""
    outcome_type: OutcomeType
    outcome_value: Optional[float] = None
    outcome_measured_at: datetime
    engagement_after: Optional[float] = None
    msi_after: Optional[float] = None
    cpi_after: Optional[float] = None


class BatchMeasurementResult(BaseModel):
    """Result of one maturation scan."""
    measured: int = 0
    errors: int = 0
    skipped: int = 0                    # entity had no current metric


# ── Learning metrics ────────────────────────────────────────────────────


class AcceptanceByConfidence(BaseModel):
    high: float = 0.0                   # confidence >= 0.75
    medium: float = 0.0                 # 0.5 <= confidence < 0.75
    low: float = 0.0                    # confidence < 0.5


class CalibrationBucket(BaseModel):
    confidence_range: str
    predicted_success_rate: float
    actual_success_rate: float
    sample_size: int


class ActionEffectiveness(BaseModel):
    action: NBOActionType
    recommended_count: int
    executed_count: int
    positive_outcome_count: int
    avg_outcome_value: float


class ChannelEffectiveness(BaseModel):
    channel: Channel
    recommended_count: int
    executed_count: int
    positive_outcome_count: int
    avg_outcome_value: float


class LearningMetrics(BaseModel):
    """Acceptance, outcome and calibration statistics for one time window."""
    period: str
    total_recommendations: int
    accepted_count: int
    rejected_count: int
    modified_count: int
    expired_count: int
    overall_acceptance_rate: float
    acceptance_by_action: dict[NBOActionType, float]
    acceptance_by_confidence: AcceptanceByConfidence

    measured_count: int
    positive_outcome_rate: float
    avg_engagement_change: float
    avg_msi_change: float

    calibration_score: float            # 1 = perfectly calibrated, 0 = useless
    calibration_by_bucket: list[CalibrationBucket]

    action_effectiveness: list[ActionEffectiveness]
    channel_effectiveness: list[ChannelEffectiveness]

    generated_at: str


# ── Model performance ───────────────────────────────────────────────────


class HealthIndicator(BaseModel):
    name: str
    value: float
    target: float
    trend: Trend
    status: IndicatorStatus


class ImprovementSuggestion(BaseModel):
    area: str
    issue: str
    suggestion: str
    priority: SuggestionPriority


class TrainingReadiness(BaseModel):
    new_feedback_since_last_training: int
    min_feedback_for_training: int
    is_ready_for_training: bool
    estimated_improvement_potential: Optional[float] = None


class ModelPerformance(BaseModel):
    """Health verdict derived from one learning-metrics snapshot."""
    overall_health: HealthLabel
    health_score: int
    indicators: list[HealthIndicator]
    improvement_suggestions: list[ImprovementSuggestion]
    training_readiness: TrainingReadiness
    last_updated: str
