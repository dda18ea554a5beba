"""
Tests for the cost ledger: limit evaluation, lazy creation, monthly reset and
atomic spend recording.
"""
import asyncio
from datetime import datetime, timezone

from sqlalchemy import select

from db_config import create_db_engine, create_session_factory, init_db
from models.models import CostLogEntry, CostRecord
from services.cost_tracking import COST_LIMITS, CostTracker, evaluate_cost_limit, limits_for_plan


def run_with_session(test_body):
    async def runner():
        engine = create_db_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await init_db(engine)
        try:
            return await test_body(create_session_factory(engine))
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def test_unknown_plan_uses_free_limits():
    assert limits_for_plan("starter") == COST_LIMITS["free"]
    assert limits_for_plan(None) == COST_LIMITS["free"]
    assert limits_for_plan("pro").monthly_limit == 50.00


def test_per_call_limit_applies_regardless_of_spend():
    free = COST_LIMITS["free"]
    for monthly in (0.0, 2.5, 4.99):
        check = evaluate_cost_limit(monthly, 0.51, free, day_of_month=28)
        assert check.allowed is False
        assert "per-request limit of $0.50" in check.message


def test_monthly_limit():
    check = evaluate_cost_limit(4.80, 0.30, COST_LIMITS["free"], day_of_month=28)
    assert check.allowed is False
    assert "monthly cost limit of $5.00" in check.message


def test_approximate_daily_limit():
    # 2.00 spent by the 2nd averages 1.00 a day; any further spend tips it over
    check = evaluate_cost_limit(2.00, 0.05, COST_LIMITS["free"], day_of_month=2)
    assert check.allowed is False
    assert "daily cost limit of $1.00" in check.message

    check = evaluate_cost_limit(2.00, 0.05, COST_LIMITS["free"], day_of_month=20)
    assert check.allowed is True


def test_record_created_lazily_and_spend_recorded():
    async def body(session_factory):
        async with session_factory() as db:
            tracker = CostTracker(db)
            record = await tracker.get_cost_tracking("u1")
            assert record.monthly_cost_usd == 0.0
            assert await tracker.update_cost_tracking("u1", 0.25, service="transcription", reference_id="audio-1")
            assert await tracker.update_cost_tracking("u1", 0.10, service="content_generation")
            summary = await tracker.get_cost_summary("u1")
            logs = (await db.execute(select(CostLogEntry).where(CostLogEntry.uid == "u1"))).scalars().all()
        return summary, logs

    summary, logs = run_with_session(body)
    assert summary["current_month"] == 0.35
    assert summary["total_all_time"] == 0.35
    assert summary["api_calls"] == 2
    assert summary["plan"] == "free"
    assert summary["utilization_percent"] == 7.0
    assert [log.reference_id for log in logs] == ["audio-1"]


def test_monthly_reset_keeps_totals():
    async def body(session_factory):
        async with session_factory() as db:
            db.add(CostRecord(
                uid="u1", total_cost_usd=3.0, monthly_cost_usd=3.0, api_calls_count=4, monthly_api_calls=4,
                cycle_start=datetime(2026, 9, 1, tzinfo=timezone.utc),
            ))
            await db.commit()

        now = datetime(2026, 10, 3, tzinfo=timezone.utc)
        async with session_factory() as db:
            tracker = CostTracker(db)
            first = await tracker.get_cost_tracking("u1", now)
            first_values = (first.monthly_cost_usd, first.monthly_api_calls, first.total_cost_usd)
            second = await tracker.get_cost_tracking("u1", now)
            check = await tracker.check_cost_limit("u1", 0.4, now=now)
        return first_values, second, check

    (monthly, calls, total), second, check = run_with_session(body)
    assert monthly == 0.0
    assert calls == 0
    assert total == 3.0
    assert second.monthly_cost_usd == 0.0
    assert check.allowed is True


def test_concurrent_spend_is_not_lost():
    async def body(session_factory):
        async with session_factory() as db:
            await CostTracker(db).get_cost_tracking("u1")

        async def spend():
            async with session_factory() as db:
                return await CostTracker(db).update_cost_tracking("u1", 0.01)

        await asyncio.gather(*(spend() for _ in range(10)))
        async with session_factory() as db:
            return await CostTracker(db).get_cost_summary("u1")

    summary = run_with_session(body)
    assert summary["api_calls"] == 10
    assert round(summary["current_month"], 6) == 0.1
