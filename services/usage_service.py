"""
Usage ledger: per-user monthly transcription minutes against a plan allowance.
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ValidationException
from core.logging import get_logger
from models.models import UsageRecord, as_utc, month_start, utcnow

logger = get_logger("usage")

DEFAULT_PLAN = "free"

# Monthly minute allowance stored on the usage record for each plan
PLAN_ALLOWANCES = {
    "free": 30,
    "starter": 600,
    "pro": 1500,
}

# Storage shown on the profile for each plan, in GB
PLAN_STORAGE_GB = {
    "free": 1,
    "starter": 5,
    "pro": 25,
    "enterprise": 100,
}

# Typical bitrates (kbps) used to estimate duration from file size
AUDIO_BITRATES_KBPS = {
    "audio/wav": 1411,
    "audio/ogg": 112,
}
DEFAULT_BITRATE_KBPS = 128


@dataclass
class UsageSnapshot:
    """Computed view of a usage record."""
    uid: str
    plan: str
    allowed_minutes: int
    used_minutes: int
    remaining_minutes: int
    is_over_limit: bool
    cycle_start: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["cycle_start"] = self.cycle_start.isoformat()
        return data


@dataclass
class UsageCheck:
    allowed: bool
    usage: Optional[UsageSnapshot]
    message: Optional[str] = None


def build_snapshot(uid: str, plan: str, allowed_minutes: int, used_minutes: int, cycle_start: datetime) -> UsageSnapshot:
    return UsageSnapshot(
        uid=uid,
        plan=plan,
        allowed_minutes=allowed_minutes,
        used_minutes=used_minutes,
        remaining_minutes=max(0, allowed_minutes - used_minutes),
        is_over_limit=used_minutes >= allowed_minutes,
        cycle_start=as_utc(cycle_start),
    )


def needs_cycle_reset(cycle_start: datetime, now: Optional[datetime] = None) -> bool:
    """True exactly when the stored cycle is in a different calendar month than now."""
    now = now or utcnow()
    cycle_start = as_utc(cycle_start)
    return (cycle_start.year, cycle_start.month) != (now.year, now.month)


def estimate_audio_duration(file_size_bytes: int, mime_type: Optional[str] = None) -> int:
    """
    Estimate audio duration in whole minutes from its size.

    Uses a typical bitrate for the container and rounds up with a 10% buffer,
    so the estimate errs on the side of charging more minutes.
    """
    bitrate_kbps = DEFAULT_BITRATE_KBPS
    if mime_type:
        bitrate_kbps = AUDIO_BITRATES_KBPS.get(mime_type.lower(), DEFAULT_BITRATE_KBPS)

    duration_minutes = (file_size_bytes * 8) / (bitrate_kbps * 1000) / 60
    return math.ceil(duration_minutes * 1.1)


def minutes_for_duration(duration_seconds: Optional[float], fallback_minutes: int) -> int:
    """Whole minutes billed for a transcription."""
    if duration_seconds:
        return max(1, math.ceil(duration_seconds / 60))
    return fallback_minutes


class UsageService:
    """
    Service for reading and updating a user's usage ledger.

    All increments are single ``UPDATE ... SET used_minutes = used_minutes + n``
    statements, so concurrent requests never lose an update.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, uid: str) -> Optional[UsageRecord]:
        # populate_existing: earlier bulk UPDATEs bypass the identity map
        stmt = select(UsageRecord).where(UsageRecord.uid == uid).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _reset_cycle_if_needed(self, record: UsageRecord, now: datetime) -> UsageRecord:
        if not needs_cycle_reset(record.cycle_start, now):
            return record

        new_cycle_start = month_start(now)
        # Conditional on the cycle we read, so only one concurrent reader resets
        stmt = (
            update(UsageRecord)
            .where(UsageRecord.id == record.id, UsageRecord.cycle_start == record.cycle_start)
            .values(used_minutes=0, cycle_start=new_cycle_start, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(
            "Usage cycle reset",
            uid=record.uid,
            cycle_start=new_cycle_start.isoformat(),
            applied=result.rowcount > 0,
        )
        return record

    async def get_usage(self, uid: str, now: Optional[datetime] = None) -> Optional[UsageSnapshot]:
        """
        Return the user's usage snapshot, or None when no record exists.

        A missing record means the ledger cannot be verified; callers must
        treat it as a denial rather than as zero usage.
        """
        now = now or utcnow()
        record = await self._load(uid)
        if record is None:
            logger.warning("No usage record found", uid=uid)
            return None

        record = await self._reset_cycle_if_needed(record, now)
        return build_snapshot(record.uid, record.plan, record.allowed_minutes, record.used_minutes, record.cycle_start)

    async def ensure_usage_record(self, uid: str, now: Optional[datetime] = None) -> UsageSnapshot:
        """Return the user's usage, creating a default free-tier record if absent."""
        now = now or utcnow()
        usage = await self.get_usage(uid, now)
        if usage is not None:
            return usage

        record = UsageRecord(
            uid=uid,
            plan=DEFAULT_PLAN,
            allowed_minutes=PLAN_ALLOWANCES[DEFAULT_PLAN],
            used_minutes=0,
            cycle_start=month_start(now),
        )
        self.db.add(record)
        try:
            await self.db.commit()
            logger.info("Default usage record created", uid=uid, plan=DEFAULT_PLAN)
        except IntegrityError:
            # Another request created it first
            await self.db.rollback()
            logger.info("Usage record created concurrently", uid=uid)

        return await self.get_usage(uid, now)

    async def add_usage(self, uid: str, minutes: int) -> bool:
        """Atomically add minutes to the user's ledger. Returns False if no record matched."""
        if minutes < 0:
            raise ValueError("minutes must be non-negative")

        stmt = (
            update(UsageRecord)
            .where(UsageRecord.uid == uid)
            .values(used_minutes=UsageRecord.used_minutes + minutes, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            logger.error("Usage update matched no record", uid=uid, minutes=minutes)
            return False

        logger.info("Usage recorded", uid=uid, minutes=minutes)
        return True

    async def check_usage_limit(self, uid: str, estimated_minutes: int = 0) -> UsageCheck:
        """Decide whether the user may spend ``estimated_minutes`` more this cycle."""
        usage = await self.get_usage(uid)

        if usage is None:
            return UsageCheck(
                allowed=False,
                usage=None,
                message="Unable to verify usage limits. Please try again.",
            )

        if usage.is_over_limit:
            return UsageCheck(
                allowed=False,
                usage=usage,
                message=(
                    f"You've exceeded your monthly limit of {usage.allowed_minutes} minutes. "
                    "Please upgrade your plan to continue."
                ),
            )

        if estimated_minutes > 0 and usage.used_minutes + estimated_minutes > usage.allowed_minutes:
            return UsageCheck(
                allowed=False,
                usage=usage,
                message=(
                    "This file would exceed your monthly limit. "
                    f"You have {usage.remaining_minutes} minutes remaining."
                ),
            )

        return UsageCheck(allowed=True, usage=usage)

    async def change_plan(self, uid: str, new_plan: str) -> UsageSnapshot:
        """
        Move the user to another plan tier.

        Used minutes and the current cycle are preserved; only the plan and its
        allowance change.
        """
        if new_plan not in PLAN_ALLOWANCES:
            raise ValidationException(
                detail=f"Invalid plan. Must be one of: {', '.join(PLAN_ALLOWANCES)}"
            )

        current = await self.ensure_usage_record(uid)
        if current.plan == new_plan:
            raise ValidationException(detail="You are already on this plan")

        stmt = (
            update(UsageRecord)
            .where(UsageRecord.uid == uid)
            .values(plan=new_plan, allowed_minutes=PLAN_ALLOWANCES[new_plan], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()

        logger.info("Plan changed", uid=uid, old_plan=current.plan, new_plan=new_plan)
        record = await self._load(uid)
        return build_snapshot(record.uid, record.plan, record.allowed_minutes, record.used_minutes, record.cycle_start)
