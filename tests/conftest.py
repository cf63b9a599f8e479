"""
Test fixtures for NBO learning tests.

Provides:
- Async DB session fixture (SQLite in-memory, fresh per test)
- Sample data helpers for recommendations, entity profiles and feedback
- In-memory fakes for collaborator-failure scenarios
"""

import uuid
from datetime import datetime
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nbo_learning.config import Settings
from nbo_learning.db.engine import Base, register_sqlite_savepoints
from nbo_learning.db.models import (  # noqa: F401
    EntityProfile,
    FeedbackEvent,
    Recommendation,
)
from nbo_learning.learning.schemas import (
    EntityMetric,
    FeedbackRecord,
    FeedbackType,
    OutcomeType,
)

# In-memory SQLite for fast, isolated tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with all tables."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    register_sqlite_savepoints(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DB_URL,
        maturation_window_days=30,
        engagement_change_threshold=5.0,
        min_feedback_for_training=100,
        enforce_single_measurement=False,
    )


# ── Sample Data Helpers ──────────────────────────────────────────────────


async def create_recommendation(
    session: AsyncSession,
    target_entity_id: str = "hcp-001",
    **kwargs,
) -> Recommendation:
    """Helper: create a recommendation."""
    rec = Recommendation(
        id=kwargs.get("id", f"rec_{uuid.uuid4().hex[:12]}"),
        target_entity_id=target_entity_id,
        action_type=kwargs.get("action_type", "engage"),
        channel=kwargs.get("channel", "email"),
        theme=kwargs.get("theme", "efficacy"),
        confidence=kwargs.get("confidence", 0.8),
        status=kwargs.get("status", "pending"),
    )
    session.add(rec)
    await session.flush()
    return rec


async def create_entity_profile(
    session: AsyncSession,
    entity_id: str = "hcp-001",
    engagement: float = 60.0,
    **kwargs,
) -> EntityProfile:
    """Helper: create an entity profile with a current engagement score."""
    profile = EntityProfile(
        id=entity_id,
        overall_engagement_score=engagement,
        msi=kwargs.get("msi"),
        cpi=kwargs.get("cpi"),
    )
    session.add(profile)
    await session.flush()
    return profile


async def insert_feedback(
    session: AsyncSession,
    feedback_type: str = "accepted",
    **kwargs,
) -> FeedbackEvent:
    """Helper: insert a feedback event directly."""
    event = FeedbackEvent(
        id=kwargs.get("id", f"fb_{uuid.uuid4().hex[:12]}"),
        recommendation_id=kwargs.get("recommendation_id", f"rec_{uuid.uuid4().hex[:12]}"),
        target_entity_id=kwargs.get("target_entity_id", "hcp-001"),
        recommended_action=kwargs.get("recommended_action", "engage"),
        recommended_channel=kwargs.get("recommended_channel", "email"),
        recommended_theme=kwargs.get("recommended_theme"),
        original_confidence=kwargs.get("original_confidence", 0.8),
        feedback_type=feedback_type,
        feedback_at=kwargs.get("feedback_at", datetime.utcnow()),
        executed_at=kwargs.get("executed_at"),
        outcome_type=kwargs.get("outcome_type", "pending"),
        outcome_value=kwargs.get("outcome_value"),
        engagement_before=kwargs.get("engagement_before"),
        engagement_after=kwargs.get("engagement_after"),
        msi_before=kwargs.get("msi_before"),
        msi_after=kwargs.get("msi_after"),
        used_for_training=kwargs.get("used_for_training", False),
    )
    session.add(event)
    await session.flush()
    return event


def make_record(
    feedback_type: FeedbackType = FeedbackType.ACCEPTED,
    **kwargs,
) -> FeedbackRecord:
    """Helper: build a FeedbackRecord in memory for pure computations."""
    values = {
        "id": f"fb_{uuid.uuid4().hex[:12]}",
        "recommendation_id": f"rec_{uuid.uuid4().hex[:12]}",
        "target_entity_id": "hcp-001",
        "recommended_action": "engage",
        "recommended_channel": "email",
        "original_confidence": 0.8,
        "feedback_type": feedback_type,
        "feedback_at": datetime(2026, 1, 15, 12, 0, 0),
        "outcome_type": OutcomeType.PENDING,
    }
    values.update(kwargs)
    return FeedbackRecord(**values)


# ── Fakes ────────────────────────────────────────────────────────────────


class FakeMetricProvider:
    """Entity metrics from a dict; entities listed in ``failing`` raise."""

    def __init__(
        self,
        engagement: Optional[dict[str, float]] = None,
        failing: Optional[set[str]] = None,
    ):
        self.engagement = engagement or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    async def get_current_metric(self, target_entity_id: str) -> Optional[EntityMetric]:
        self.calls.append(target_entity_id)
        if target_entity_id in self.failing:
            raise RuntimeError(f"metric backend unavailable for {target_entity_id}")
        if target_entity_id not in self.engagement:
            return None
        return EntityMetric(engagement=self.engagement[target_entity_id])


async def reject_feedback_updates(session: AsyncSession, feedback_id: str) -> None:
    """Helper: install a trigger that makes any UPDATE of one feedback row fail."""
    await session.execute(text(
        f"CREATE TRIGGER reject_update_{feedback_id} BEFORE UPDATE ON nbo_feedback "
        f"FOR EACH ROW WHEN OLD.id = '{feedback_id}' "
        "BEGIN SELECT RAISE(ABORT, 'feedback row is read-only'); END"
    ))
