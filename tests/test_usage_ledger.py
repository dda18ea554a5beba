"""
Tests for the usage ledger: snapshot arithmetic, monthly resets, atomic
increments and plan changes.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from core.exceptions import ValidationException
from db_config import create_db_engine, create_session_factory, init_db
from models.models import UsageRecord
from services.usage_service import (
    PLAN_ALLOWANCES, UsageService, build_snapshot, estimate_audio_duration, minutes_for_duration,
    needs_cycle_reset,
)


def run_with_session(test_body):
    """Run ``test_body(session_factory)`` against a fresh in-memory database."""
    async def runner():
        engine = create_db_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await init_db(engine)
        try:
            return await test_body(create_session_factory(engine))
        finally:
            await engine.dispose()

    return asyncio.run(runner())


@pytest.mark.parametrize(
    "allowed, used, remaining, over",
    [(30, 0, 30, False), (30, 29, 1, False), (30, 30, 0, True), (30, 45, 0, True)],
)
def test_snapshot_remaining_and_over_limit(allowed, used, remaining, over):
    snapshot = build_snapshot("u", "free", allowed, used, datetime(2026, 10, 1, tzinfo=timezone.utc))
    assert snapshot.remaining_minutes == remaining
    assert snapshot.is_over_limit is over


def test_cycle_reset_only_when_month_changes():
    cycle = datetime(2026, 9, 1, tzinfo=timezone.utc)
    assert needs_cycle_reset(cycle, datetime(2026, 9, 30, 23, 59, tzinfo=timezone.utc)) is False
    assert needs_cycle_reset(cycle, datetime(2026, 10, 1, tzinfo=timezone.utc)) is True
    # Same month number, different year
    assert needs_cycle_reset(cycle, datetime(2027, 9, 15, tzinfo=timezone.utc)) is True
    # Naive values from SQLite are read as UTC
    assert needs_cycle_reset(datetime(2026, 9, 1), datetime(2026, 9, 2, tzinfo=timezone.utc)) is False


def test_estimate_audio_duration_uses_bitrate_table():
    one_minute_mp3 = 128 * 1000 * 60 // 8
    assert estimate_audio_duration(one_minute_mp3, "audio/mpeg") == 2  # 1.1 rounded up
    assert estimate_audio_duration(10 * one_minute_mp3, "audio/mpeg") == 11
    one_minute_wav = 1411 * 1000 * 60 // 8
    assert estimate_audio_duration(one_minute_wav, "audio/wav") == 2
    assert estimate_audio_duration(0, "audio/ogg") == 0


def test_minutes_for_duration_prefers_reported_duration():
    assert minutes_for_duration(90.0, 12) == 2
    assert minutes_for_duration(1.0, 12) == 1
    assert minutes_for_duration(None, 12) == 12
    assert minutes_for_duration(0, 7) == 7


def test_missing_record_fails_closed():
    async def body(session_factory):
        async with session_factory() as db:
            service = UsageService(db)
            assert await service.get_usage("nobody") is None
            check = await service.check_usage_limit("nobody", 1)
            assert check.allowed is False
            assert check.message == "Unable to verify usage limits. Please try again."
            assert await service.add_usage("nobody", 5) is False

    run_with_session(body)


def test_ensure_usage_record_creates_free_tier_once():
    async def body(session_factory):
        async with session_factory() as db:
            first = await UsageService(db).ensure_usage_record("u1")
            second = await UsageService(db).ensure_usage_record("u1")
        assert first.plan == "free"
        assert first.allowed_minutes == PLAN_ALLOWANCES["free"]
        assert first.used_minutes == 0
        assert second.cycle_start == first.cycle_start

    run_with_session(body)


def test_concurrent_add_usage_loses_no_update():
    async def body(session_factory):
        async with session_factory() as db:
            await UsageService(db).ensure_usage_record("u1")

        async def add(minutes):
            async with session_factory() as db:
                return await UsageService(db).add_usage("u1", minutes)

        results = await asyncio.gather(*(add(m) for m in (1, 2, 3, 4, 5)))
        async with session_factory() as db:
            usage = await UsageService(db).get_usage("u1")
        return results, usage

    results, usage = run_with_session(body)
    assert all(results)
    assert usage.used_minutes == 15
    assert usage.remaining_minutes == 15


def test_usage_check_messages():
    async def body(session_factory):
        async with session_factory() as db:
            service = UsageService(db)
            await service.ensure_usage_record("u1")
            await service.add_usage("u1", 25)
            would_exceed = await service.check_usage_limit("u1", 10)
            fits = await service.check_usage_limit("u1", 5)
            await service.add_usage("u1", 5)
            over = await service.check_usage_limit("u1", 0)
        return would_exceed, fits, over

    would_exceed, fits, over = run_with_session(body)
    assert would_exceed.allowed is False
    assert "5 minutes remaining" in would_exceed.message
    assert fits.allowed is True
    assert over.allowed is False
    assert "exceeded your monthly limit of 30 minutes" in over.message


def test_stale_cycle_is_reset_on_read():
    async def body(session_factory):
        async with session_factory() as db:
            db.add(UsageRecord(
                uid="u1", plan="free", allowed_minutes=30, used_minutes=28,
                cycle_start=datetime(2026, 8, 1, tzinfo=timezone.utc),
            ))
            await db.commit()

        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        async with session_factory() as db:
            first = await UsageService(db).get_usage("u1", now)
            second = await UsageService(db).get_usage("u1", now)
        return first, second

    first, second = run_with_session(body)
    assert first.used_minutes == 0
    assert first.cycle_start == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert second.used_minutes == 0
    assert second.cycle_start == first.cycle_start


def test_change_plan_keeps_used_minutes():
    async def body(session_factory):
        async with session_factory() as db:
            service = UsageService(db)
            await service.ensure_usage_record("u1")
            await service.add_usage("u1", 12)
            upgraded = await service.change_plan("u1", "pro")
            with pytest.raises(ValidationException):
                await service.change_plan("u1", "pro")
            with pytest.raises(ValidationException):
                await service.change_plan("u1", "platinum")
        return upgraded

    upgraded = run_with_session(body)
    assert upgraded.plan == "pro"
    assert upgraded.allowed_minutes == 1500
    assert upgraded.used_minutes == 12
