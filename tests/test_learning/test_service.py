"""
Tests for Learning Service and the maturation scheduler.

Covers:
- Feedback lookup by recommendation and by entity
- Model performance over the trailing window
- Training bookkeeping
- Scheduled scan commits its work and survives failures
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from nbo_learning.db.engine import get_db_session
from nbo_learning.db.models import FeedbackEvent
from nbo_learning.learning.schemas import (
    FeedbackType,
    HealthLabel,
    MeasureOutcomeRequest,
    OutcomeType,
    RecordFeedbackRequest,
)
from nbo_learning.learning.service import create_learning_service
from nbo_learning.services.scheduler import MaturationScheduler
from tests.conftest import (
    create_entity_profile,
    create_recommendation,
    insert_feedback,
    reject_feedback_updates,
)


@pytest.fixture
def service(db, test_settings):
    return create_learning_service(db, test_settings)


# ── Feedback Lookup ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_feedback_by_recommendation(db, service):
    rec = await create_recommendation(db, "hcp-10")
    recorded = await service.record_feedback(RecordFeedbackRequest(
        recommendation_id=rec.id, feedback_type=FeedbackType.ACCEPTED,
    ))

    found = await service.get_feedback(rec.id)
    assert found is not None
    assert found.id == recorded.id

    assert await service.get_feedback("rec_unknown") is None


@pytest.mark.asyncio
async def test_get_entity_feedback_most_recent_first(db, service):
    base = datetime(2026, 1, 10)
    oldest = await insert_feedback(db, target_entity_id="hcp-11", feedback_at=base)
    middle = await insert_feedback(db, target_entity_id="hcp-11", feedback_at=base + timedelta(days=1))
    newest = await insert_feedback(db, target_entity_id="hcp-11", feedback_at=base + timedelta(days=2))
    await insert_feedback(db, target_entity_id="hcp-other", feedback_at=base)

    all_feedback = await service.get_entity_feedback("hcp-11")
    assert [f.id for f in all_feedback] == [newest.id, middle.id, oldest.id]

    limited = await service.get_entity_feedback("hcp-11", limit=2)
    assert [f.id for f in limited] == [newest.id, middle.id]

    assert await service.get_entity_feedback("hcp-nobody") == []


# ── Full Loop ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_record_measure_and_evaluate(db, service):
    await create_entity_profile(db, "hcp-12", engagement=40.0)
    rec = await create_recommendation(db, "hcp-12", confidence=0.9)

    feedback = await service.record_feedback(RecordFeedbackRequest(
        recommendation_id=rec.id,
        feedback_type=FeedbackType.EXECUTED,
        feedback_by="rep_3",
    ))
    assert feedback.engagement_before == 40.0

    measured = await service.measure_outcome(MeasureOutcomeRequest(
        feedback_id=feedback.id,
        outcome_type=OutcomeType.ENGAGEMENT_IMPROVED,
        outcome_value=9.0,
        engagement_after=49.0,
    ))
    assert measured.engagement_change == 9.0

    metrics = await service.calculate_metrics(datetime.utcnow() - timedelta(days=1))
    assert metrics.total_recommendations == 1
    assert metrics.accepted_count == 1
    assert metrics.measured_count == 1
    assert metrics.positive_outcome_rate == 1.0
    assert metrics.avg_engagement_change == pytest.approx(9.0)


@pytest.mark.asyncio
async def test_get_model_performance_uses_trailing_window(db, service):
    recent = datetime.utcnow() - timedelta(days=2)
    for _ in range(3):
        await insert_feedback(
            db, "executed", feedback_at=recent, executed_at=recent,
            outcome_type="engagement_improved",
            engagement_before=50.0, engagement_after=58.0,
        )
    await insert_feedback(db, "rejected", feedback_at=recent)
    # Outside the 30-day window
    await insert_feedback(db, "rejected", feedback_at=datetime.utcnow() - timedelta(days=45))

    performance = await service.get_model_performance()

    by_name = {ind.name: ind for ind in performance.indicators}
    assert by_name["Acceptance Rate"].value == 75
    assert by_name["Positive Outcome Rate"].value == 100
    assert by_name["Avg Engagement Change"].value == 8.0
    assert performance.overall_health in set(HealthLabel)

    readiness = performance.training_readiness
    assert readiness.new_feedback_since_last_training == 5
    assert readiness.is_ready_for_training is False


# ── Training Bookkeeping ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_mark_used_for_training(db, service):
    first = await insert_feedback(db)
    second = await insert_feedback(db)
    await insert_feedback(db)

    updated = await service.mark_used_for_training([first.id, second.id])
    assert updated == 2

    performance = await service.get_model_performance()
    assert performance.training_readiness.new_feedback_since_last_training == 1

    # Already-consumed rows are not counted again
    assert await service.mark_used_for_training([first.id]) == 0
    assert await service.mark_used_for_training([]) == 0


@pytest.mark.asyncio
async def test_measure_pending_outcomes_uses_settings_window(db, service):
    await create_entity_profile(db, "hcp-13", engagement=30.0)
    await insert_feedback(
        db, "executed", target_entity_id="hcp-13",
        executed_at=datetime.utcnow() - timedelta(days=31), engagement_before=40.0,
    )
    await insert_feedback(
        db, "executed", target_entity_id="hcp-13",
        executed_at=datetime.utcnow() - timedelta(days=29), engagement_before=40.0,
    )

    result = await service.measure_pending_outcomes()

    assert result.measured == 1
    assert result.errors == 0


# ── Scheduler ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scheduled_scan_commits(session_factory, test_settings):
    async with session_factory() as session:
        await create_entity_profile(session, "hcp-20", engagement=75.0)
        event = await insert_feedback(
            session, "executed", target_entity_id="hcp-20",
            executed_at=datetime.utcnow() - timedelta(days=40), engagement_before=60.0,
        )
        await session.commit()

    scheduler = MaturationScheduler(session_factory, settings=test_settings)
    result = await scheduler.run_maturation_scan()

    assert result is not None
    assert result.measured == 1

    async with session_factory() as session:
        row = await session.execute(
            select(FeedbackEvent.outcome_type).where(FeedbackEvent.id == event.id)
        )
        assert row.scalar_one() == "engagement_improved"


@pytest.mark.asyncio
async def test_scheduled_scan_failure_returns_none(test_settings):
    def broken_factory():
        raise RuntimeError("database unavailable")

    scheduler = MaturationScheduler(broken_factory, settings=test_settings)

    assert await scheduler.run_maturation_scan() is None


@pytest.mark.asyncio
async def test_scheduled_scan_keeps_good_rows_when_one_write_fails(session_factory, test_settings):
    async with session_factory() as session:
        await create_entity_profile(session, "hcp-21", engagement=80.0)
        await insert_feedback(
            session, "executed", id="fb_bad", target_entity_id="hcp-21",
            executed_at=datetime.utcnow() - timedelta(days=41), engagement_before=60.0,
        )
        await insert_feedback(
            session, "executed", id="fb_good", target_entity_id="hcp-21",
            executed_at=datetime.utcnow() - timedelta(days=40), engagement_before=60.0,
        )
        await reject_feedback_updates(session, "fb_bad")
        await session.commit()

    scheduler = MaturationScheduler(session_factory, settings=test_settings)
    result = await scheduler.run_maturation_scan()

    assert result is not None
    assert result.errors == 1
    assert result.measured == 1

    async with session_factory() as session:
        rows = await session.execute(select(FeedbackEvent.id, FeedbackEvent.outcome_type))
        assert dict(rows.all()) == {
            "fb_bad": "pending",
            "fb_good": "engagement_improved",
        }


# ── Unit of Work ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_db_session_commits_on_success(session_factory):
    async with get_db_session(session_factory) as session:
        await insert_feedback(session, id="fb_committed")

    async with session_factory() as session:
        assert await session.get(FeedbackEvent, "fb_committed") is not None


@pytest.mark.asyncio
async def test_db_session_rolls_back_on_error(session_factory):
    with pytest.raises(RuntimeError):
        async with get_db_session(session_factory) as session:
            await insert_feedback(session, id="fb_discarded")
            raise RuntimeError("abort unit of work")

    async with session_factory() as session:
        assert await session.get(FeedbackEvent, "fb_discarded") is None
