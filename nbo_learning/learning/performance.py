"""
Model Performance Evaluator: health verdict from a learning-metrics snapshot.

Derives four health indicators, an overall health score and label,
rule-based improvement suggestions and a training-readiness verdict.
"""

import math
from datetime import datetime
from typing import Optional

import structlog

from nbo_learning.learning.schemas import (
    HealthIndicator,
    HealthLabel,
    ImprovementSuggestion,
    IndicatorStatus,
    LearningMetrics,
    ModelPerformance,
    SuggestionPriority,
    TrainingReadiness,
    Trend,
)

logger = structlog.get_logger(__name__)

MIN_FEEDBACK_FOR_TRAINING: int = 100
ESTIMATED_IMPROVEMENT_POTENTIAL: float = 5.0

# Indicator targets and (on_track, warning) floors, as fractions
ACCEPTANCE_TARGET, ACCEPTANCE_FLOORS = 0.5, (0.4, 0.3)
POSITIVE_OUTCOME_TARGET, POSITIVE_OUTCOME_FLOORS = 0.6, (0.5, 0.4)
CALIBRATION_TARGET, CALIBRATION_FLOORS = 0.7, (0.6, 0.5)
ENGAGEMENT_TARGET, ENGAGEMENT_FLOORS = 5.0, (3.0, 0.0)

# Action types below this acceptance rate get flagged
LOW_ACTION_ACCEPTANCE: float = 0.3

STATUS_SCORES: dict[IndicatorStatus, int] = {
    IndicatorStatus.ON_TRACK: 100,
    IndicatorStatus.WARNING: 60,
    IndicatorStatus.CRITICAL: 20,
}

PRIORITY_ORDER: dict[SuggestionPriority, int] = {
    SuggestionPriority.HIGH: 0,
    SuggestionPriority.MEDIUM: 1,
    SuggestionPriority.LOW: 2,
}


def round_half_up(value: float, ndigits: int = 0):
    """Round with halves going up (62.5 -> 63, -1.25 -> -1.2), not to even."""
    if ndigits == 0:
        return math.floor(value + 0.5)
    scale = 10 ** ndigits
    return math.floor(value * scale + 0.5) / scale


def determine_trend(value: float, target: float) -> Trend:
    """Improving if more than 5 points above target, declining if more than 10 below."""
    diff = value - target
    if diff > 0.05:
        return Trend.IMPROVING
    if diff < -0.1:
        return Trend.DECLINING
    return Trend.STABLE


def indicator_status(value: float, on_track_floor: float, warning_floor: float) -> IndicatorStatus:
    if value >= on_track_floor:
        return IndicatorStatus.ON_TRACK
    if value >= warning_floor:
        return IndicatorStatus.WARNING
    return IndicatorStatus.CRITICAL


def health_score(indicators: list[HealthIndicator]) -> float:
    """Mean of on_track=100 / warning=60 / critical=20 over the indicators."""
    if not indicators:
        return 0.0
    return sum(STATUS_SCORES[ind.status] for ind in indicators) / len(indicators)


def health_label(score: float) -> HealthLabel:
    if score >= 80:
        return HealthLabel.EXCELLENT
    if score >= 60:
        return HealthLabel.GOOD
    if score >= 40:
        return HealthLabel.FAIR
    return HealthLabel.POOR


def _rate_indicator(
    name: str,
    rate: float,
    target: float,
    floors: tuple[float, float],
) -> HealthIndicator:
    return HealthIndicator(
        name=name,
        value=round_half_up(rate * 100),
        target=round_half_up(target * 100),
        trend=determine_trend(rate, target),
        status=indicator_status(rate, *floors),
    )


def build_indicators(metrics: LearningMetrics) -> list[HealthIndicator]:
    change = metrics.avg_engagement_change
    if change > 0:
        engagement_trend = Trend.IMPROVING
    elif change < 0:
        engagement_trend = Trend.DECLINING
    else:
        engagement_trend = Trend.STABLE

    return [
        _rate_indicator(
            "Acceptance Rate", metrics.overall_acceptance_rate,
            ACCEPTANCE_TARGET, ACCEPTANCE_FLOORS,
        ),
        _rate_indicator(
            "Positive Outcome Rate", metrics.positive_outcome_rate,
            POSITIVE_OUTCOME_TARGET, POSITIVE_OUTCOME_FLOORS,
        ),
        _rate_indicator(
            "Calibration Score", metrics.calibration_score,
            CALIBRATION_TARGET, CALIBRATION_FLOORS,
        ),
        HealthIndicator(
            name="Avg Engagement Change",
            value=round_half_up(change, 1),
            target=ENGAGEMENT_TARGET,
            trend=engagement_trend,
            status=indicator_status(change, *ENGAGEMENT_FLOORS),
        ),
    ]


def generate_improvement_suggestions(metrics: LearningMetrics) -> list[ImprovementSuggestion]:
    """Rule-based suggestions, ranked high → medium → low."""
    suggestions: list[ImprovementSuggestion] = []

    if metrics.overall_acceptance_rate < ACCEPTANCE_FLOORS[0]:
        suggestions.append(ImprovementSuggestion(
            area="Acceptance Rate",
            issue=f"Only {round_half_up(metrics.overall_acceptance_rate * 100)}% of recommendations are being accepted",
            suggestion="Review rejected recommendations to identify common patterns. "
                       "Consider adjusting confidence thresholds.",
            priority=SuggestionPriority.HIGH,
        ))

    if metrics.positive_outcome_rate < POSITIVE_OUTCOME_FLOORS[0]:
        suggestions.append(ImprovementSuggestion(
            area="Outcome Quality",
            issue=f"Only {round_half_up(metrics.positive_outcome_rate * 100)}% of executed "
                  "recommendations show positive outcomes",
            suggestion="Analyze failed recommendations to identify decision rule gaps. "
                       "Consider adding more context signals.",
            priority=SuggestionPriority.HIGH,
        ))

    if metrics.calibration_score < CALIBRATION_FLOORS[0]:
        suggestions.append(ImprovementSuggestion(
            area="Confidence Calibration",
            issue="Model confidence scores don't align well with actual outcomes",
            suggestion="High confidence recommendations should have higher success rates. "
                       "Retrain confidence scoring.",
            priority=SuggestionPriority.MEDIUM,
        ))

    low_acceptance_actions = [
        action.value
        for action, rate in metrics.acceptance_by_action.items()
        if rate < LOW_ACTION_ACCEPTANCE
    ]
    if low_acceptance_actions:
        suggestions.append(ImprovementSuggestion(
            area="Action Types",
            issue=f"Low acceptance for: {', '.join(low_acceptance_actions)}",
            suggestion="Review decision rules for these action types. "
                       "Users may not find them relevant.",
            priority=SuggestionPriority.MEDIUM,
        ))

    if metrics.measured_count < metrics.accepted_count * 0.5:
        suggestions.append(ImprovementSuggestion(
            area="Outcome Tracking",
            issue="Many executed recommendations lack outcome measurements",
            suggestion="Implement automated outcome tracking to improve learning data quality.",
            priority=SuggestionPriority.LOW,
        ))

    # sorted() is stable: rule order is kept inside a priority
    return sorted(suggestions, key=lambda s: PRIORITY_ORDER[s.priority])


class ModelPerformanceEvaluator:
    """Turns a LearningMetrics snapshot into a ModelPerformance verdict."""

    def __init__(
        self,
        min_feedback_for_training: int = MIN_FEEDBACK_FOR_TRAINING,
        estimated_improvement_potential: float = ESTIMATED_IMPROVEMENT_POTENTIAL,
    ):
        self.min_feedback_for_training = min_feedback_for_training
        self.estimated_improvement_potential = estimated_improvement_potential

    def evaluate(
        self,
        metrics: LearningMetrics,
        untrained_feedback_count: int,
        now: Optional[datetime] = None,
    ) -> ModelPerformance:
        now = now or datetime.utcnow()

        indicators = build_indicators(metrics)
        score = health_score(indicators)
        label = health_label(score)

        ready = untrained_feedback_count >= self.min_feedback_for_training
        readiness = TrainingReadiness(
            new_feedback_since_last_training=untrained_feedback_count,
            min_feedback_for_training=self.min_feedback_for_training,
            is_ready_for_training=ready,
            estimated_improvement_potential=self.estimated_improvement_potential if ready else None,
        )

        performance = ModelPerformance(
            overall_health=label,
            health_score=round_half_up(score),
            indicators=indicators,
            improvement_suggestions=generate_improvement_suggestions(metrics),
            training_readiness=readiness,
            last_updated=now.isoformat(),
        )

        logger.info(
            "nbo_model_performance_evaluated",
            period=metrics.period,
            overall_health=label.value,
            health_score=performance.health_score,
            suggestions=len(performance.improvement_suggestions),
            ready_for_training=ready,
        )

        return performance
