"""
Learning Metrics Calculator: acceptance, outcome and calibration statistics.

Computes, for every feedback event whose feedback_at falls in a window:
- Volume: total / accepted (accepted + executed) / rejected / modified / expired
- Acceptance rate overall, per action type, per confidence level
- Outcome metrics: measured count, positive outcome rate, avg engagement / MSI change
- Calibration: success rate per confidence range vs. the range midpoint,
  folded into a single 0-1 score (1 = perfectly calibrated)
- Effectiveness per action type and per channel

The computation is a pure function of the feedback set; re-running it for
any window has no side effects.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog

from nbo_learning.learning.ports import FeedbackRepository
from nbo_learning.learning.schemas import (
    AcceptanceByConfidence,
    ActionEffectiveness,
    CalibrationBucket,
    Channel,
    ChannelEffectiveness,
    FeedbackRecord,
    FeedbackType,
    LearningMetrics,
    NBOActionType,
)

logger = structlog.get_logger(__name__)

# Confidence levels for acceptance breakdown
HIGH_CONFIDENCE: float = 0.75
MEDIUM_CONFIDENCE: float = 0.5

# (lower, upper, label); upper bound exclusive except for the last range
CALIBRATION_RANGES: tuple[tuple[float, float, str], ...] = (
    (0.0, 0.5, "0-50%"),
    (0.5, 0.65, "50-65%"),
    (0.65, 0.75, "65-75%"),
    (0.75, 0.85, "75-85%"),
    (0.85, 1.0, "85-100%"),
)


def _rate(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def acceptance_rate(feedback: Sequence[FeedbackRecord]) -> float:
    """Share of feedback that was accepted or executed (0 for an empty set)."""
    return _rate(sum(1 for f in feedback if f.is_accepted), len(feedback))


def confidence_level(confidence: float) -> str:
    """Bucket a confidence into high (>= 0.75), medium (>= 0.5) or low."""
    if confidence >= HIGH_CONFIDENCE:
        return "high"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def _in_range(confidence: float, lower: float, upper: float, closed: bool) -> bool:
    if closed:
        return lower <= confidence <= upper
    return lower <= confidence < upper


def calculate_calibration(measured: Sequence[FeedbackRecord]) -> list[CalibrationBucket]:
    """
    Compare predicted vs. actual success rate per confidence range.

    Predicted success rate is the midpoint of the range; actual success rate
    is the share of the range's measured events with a positive outcome.
    """
    buckets: list[CalibrationBucket] = []
    last = len(CALIBRATION_RANGES) - 1

    for idx, (lower, upper, label) in enumerate(CALIBRATION_RANGES):
        in_bucket = [
            f for f in measured
            if _in_range(f.original_confidence, lower, upper, closed=idx == last)
        ]
        positive = sum(1 for f in in_bucket if f.is_positive)
        buckets.append(CalibrationBucket(
            confidence_range=label,
            predicted_success_rate=(lower + upper) / 2,
            actual_success_rate=_rate(positive, len(in_bucket)),
            sample_size=len(in_bucket),
        ))

    return buckets


def calculate_calibration_score(buckets: Iterable[CalibrationBucket]) -> float:
    """
    Fold a calibration table into one 0-1 score.

    score = max(0, 1 - 2 × weighted mean |predicted - actual|), weighted by
    sample size. Empty buckets carry no weight; no samples at all gives 0.
    """
    total_samples = 0
    weighted_error = 0.0
    for bucket in buckets:
        if bucket.sample_size == 0:
            continue
        total_samples += bucket.sample_size
        weighted_error += (
            abs(bucket.predicted_success_rate - bucket.actual_success_rate)
            * bucket.sample_size
        )

    if total_samples == 0:
        return 0.0

    avg_error = weighted_error / total_samples
    # 0.5 average error (or worse) maps to 0
    return max(0.0, 1.0 - avg_error * 2)


def _effectiveness_counts(feedback: Sequence[FeedbackRecord]) -> tuple[int, int, int, float]:
    executed = [f for f in feedback if f.is_accepted]
    measured = [f for f in executed if f.is_measured]
    positive = [f for f in measured if f.is_positive]
    avg_value = _mean([f.outcome_value or 0.0 for f in measured])
    return len(feedback), len(executed), len(positive), avg_value


class LearningMetricsCalculator:
    """Computes LearningMetrics snapshots from stored feedback."""

    def __init__(self, feedback: FeedbackRepository):
        self._feedback = feedback

    async def calculate(
        self,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> LearningMetrics:
        """Fetch the feedback in [start, end] (end defaults to now) and compute metrics."""
        end = end or datetime.utcnow()
        feedback = await self._feedback.list_in_window(start, end)
        metrics = self.compute(feedback, start, end)

        logger.info(
            "nbo_learning_metrics_calculated",
            period=metrics.period,
            total_recommendations=metrics.total_recommendations,
            measured_count=metrics.measured_count,
            acceptance_rate=round(metrics.overall_acceptance_rate, 4),
            calibration_score=round(metrics.calibration_score, 4),
        )

        return metrics

    @staticmethod
    def compute(
        feedback: Sequence[FeedbackRecord],
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> LearningMetrics:
        """Pure computation over an already-fetched feedback set."""
        now = now or datetime.utcnow()

        # ── Volume ────────────────────────────────────────────────────
        total = len(feedback)
        accepted_count = sum(1 for f in feedback if f.is_accepted)
        rejected_count = sum(1 for f in feedback if f.feedback_type == FeedbackType.REJECTED)
        modified_count = sum(1 for f in feedback if f.feedback_type == FeedbackType.MODIFIED)
        expired_count = sum(1 for f in feedback if f.feedback_type == FeedbackType.EXPIRED)

        # ── Acceptance ────────────────────────────────────────────────
        acceptance_by_action = {
            action: acceptance_rate([f for f in feedback if f.recommended_action == action])
            for action in NBOActionType
        }

        by_level: dict[str, list[FeedbackRecord]] = {"high": [], "medium": [], "low": []}
        for f in feedback:
            by_level[confidence_level(f.original_confidence)].append(f)
        acceptance_by_confidence = AcceptanceByConfidence(
            high=acceptance_rate(by_level["high"]),
            medium=acceptance_rate(by_level["medium"]),
            low=acceptance_rate(by_level["low"]),
        )

        # ── Outcomes ──────────────────────────────────────────────────
        measured = [f for f in feedback if f.is_measured]
        positive_count = sum(1 for f in measured if f.is_positive)

        engagement_changes = [
            f.engagement_change for f in measured if f.engagement_change is not None
        ]
        msi_changes = [f.msi_change for f in measured if f.msi_change is not None]

        # ── Calibration ───────────────────────────────────────────────
        calibration = calculate_calibration(measured)

        # ── Effectiveness ─────────────────────────────────────────────
        action_effectiveness = []
        for action in NBOActionType:
            recommended, executed, positive, avg_value = _effectiveness_counts(
                [f for f in feedback if f.recommended_action == action]
            )
            action_effectiveness.append(ActionEffectiveness(
                action=action,
                recommended_count=recommended,
                executed_count=executed,
                positive_outcome_count=positive,
                avg_outcome_value=avg_value,
            ))

        channel_effectiveness = []
        for channel in Channel:
            recommended, executed, positive, avg_value = _effectiveness_counts(
                [f for f in feedback if f.recommended_channel == channel]
            )
            channel_effectiveness.append(ChannelEffectiveness(
                channel=channel,
                recommended_count=recommended,
                executed_count=executed,
                positive_outcome_count=positive,
                avg_outcome_value=avg_value,
            ))

        return LearningMetrics(
            period=f"{start.date().isoformat()} to {end.date().isoformat()}",
            total_recommendations=total,
            accepted_count=accepted_count,
            rejected_count=rejected_count,
            modified_count=modified_count,
            expired_count=expired_count,
            overall_acceptance_rate=_rate(accepted_count, total),
            acceptance_by_action=acceptance_by_action,
            acceptance_by_confidence=acceptance_by_confidence,
            measured_count=len(measured),
            positive_outcome_rate=_rate(positive_count, len(measured)),
            avg_engagement_change=_mean(engagement_changes),
            avg_msi_change=_mean(msi_changes),
            calibration_score=calculate_calibration_score(calibration),
            calibration_by_bucket=calibration,
            action_effectiveness=action_effectiveness,
            channel_effectiveness=channel_effectiveness,
            generated_at=now.isoformat(),
        )
