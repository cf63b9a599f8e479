"""
NBO Learning SQLAlchemy Models.

Three tables:
- nbo_recommendations: recommendations produced by the NBO engine (status is patched here)
- nbo_entity_profiles: current engagement / market-pressure metrics per target entity
- nbo_feedback: operator feedback and measured outcomes (owned by the learning loop)
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from nbo_learning.db.engine import Base


def _gen_feedback_id() -> str:
    return f"fb_{uuid.uuid4().hex[:12]}"


class Recommendation(Base):
    """A generated next-best action for a target entity. Read and status-patched only."""

    __tablename__ = "nbo_recommendations"
    __table_args__ = (
        Index("ix_nbo_recommendations_entity", "target_entity_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    target_entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    theme: Mapped[Optional[str]] = mapped_column(String(255))
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    accepted_by: Mapped[Optional[str]] = mapped_column(String(128))
    generated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class EntityProfile(Base):
    """Current metrics for a target entity (the primary metric is overall engagement)."""

    __tablename__ = "nbo_entity_profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    overall_engagement_score: Mapped[float] = mapped_column(Float, nullable=False)
    msi: Mapped[Optional[float]] = mapped_column(Float)
    cpi: Mapped[Optional[float]] = mapped_column(Float)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class FeedbackEvent(Base):
    """
    How an operator responded to a recommendation, plus its eventual outcome.

    The recommended_* columns and original_confidence are a snapshot taken at
    creation time. Rows are never deleted.
    """

    __tablename__ = "nbo_feedback"
    __table_args__ = (
        Index("ix_nbo_feedback_recommendation", "recommendation_id"),
        Index("ix_nbo_feedback_entity", "target_entity_id"),
        Index("ix_nbo_feedback_feedback_at", "feedback_at"),
        Index("ix_nbo_feedback_pending", "outcome_type", "executed_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_feedback_id)
    recommendation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Snapshot of the recommendation
    recommended_action: Mapped[str] = mapped_column(String(32), nullable=False)
    recommended_channel: Mapped[str] = mapped_column(String(32), nullable=False)
    recommended_theme: Mapped[Optional[str]] = mapped_column(String(255))
    original_confidence: Mapped[float] = mapped_column(Float, nullable=False)

    # Feedback
    feedback_type: Mapped[str] = mapped_column(String(20), nullable=False)
    feedback_by: Mapped[Optional[str]] = mapped_column(String(128))
    feedback_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    feedback_reason: Mapped[Optional[str]] = mapped_column(Text)
    executed_action: Mapped[Optional[str]] = mapped_column(String(32))
    executed_channel: Mapped[Optional[str]] = mapped_column(String(32))
    executed_theme: Mapped[Optional[str]] = mapped_column(String(255))
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Outcome
    outcome_type: Mapped[str] = mapped_column(String(40), nullable=False, default="pending")
    outcome_value: Mapped[Optional[float]] = mapped_column(Float)
    outcome_measured_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Before / after metrics
    engagement_before: Mapped[Optional[float]] = mapped_column(Float)
    engagement_after: Mapped[Optional[float]] = mapped_column(Float)
    msi_before: Mapped[Optional[float]] = mapped_column(Float)
    msi_after: Mapped[Optional[float]] = mapped_column(Float)
    cpi_before: Mapped[Optional[float]] = mapped_column(Float)
    cpi_after: Mapped[Optional[float]] = mapped_column(Float)

    used_for_training: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
