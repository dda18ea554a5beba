"""
Cost ledger: per-user USD spend on external AI services, gated by plan limits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging import get_logger
from models.models import CostLogEntry, CostRecord, UsageRecord, as_utc, month_start, utcnow
from services.usage_service import DEFAULT_PLAN, needs_cycle_reset

logger = get_logger("cost_tracking")


@dataclass(frozen=True)
class CostLimits:
    monthly_limit: float
    daily_limit: float
    per_call_limit: float


COST_LIMITS = {
    "free": CostLimits(monthly_limit=5.00, daily_limit=1.00, per_call_limit=0.50),
    "pro": CostLimits(monthly_limit=50.00, daily_limit=5.00, per_call_limit=2.00),
    "enterprise": CostLimits(monthly_limit=500.00, daily_limit=50.00, per_call_limit=10.00),
}


def limits_for_plan(plan: Optional[str]) -> CostLimits:
    """Unknown plans get the free tier limits."""
    return COST_LIMITS.get(plan or DEFAULT_PLAN, COST_LIMITS["free"])


@dataclass
class CostCheck:
    allowed: bool
    monthly_cost_usd: Optional[float] = None
    message: Optional[str] = None


def evaluate_cost_limit(
    monthly_cost_usd: float,
    estimated_cost_usd: float,
    limits: CostLimits,
    day_of_month: int,
) -> CostCheck:
    """
    Apply the per-call, monthly and approximate daily caps in that order.

    The daily figure is ``monthly spend / day of month + estimate``, not a
    rolling 24 hour window.
    """
    if estimated_cost_usd > limits.per_call_limit:
        return CostCheck(
            allowed=False,
            monthly_cost_usd=monthly_cost_usd,
            message=(
                f"This request would cost ${estimated_cost_usd:.4f}, which exceeds the "
                f"per-request limit of ${limits.per_call_limit:.2f} for your plan."
            ),
        )

    if monthly_cost_usd + estimated_cost_usd > limits.monthly_limit:
        return CostCheck(
            allowed=False,
            monthly_cost_usd=monthly_cost_usd,
            message=(
                f"This would exceed your monthly cost limit of ${limits.monthly_limit:.2f}. "
                f"Current usage: ${monthly_cost_usd:.4f}"
            ),
        )

    estimated_daily_cost = monthly_cost_usd / max(day_of_month, 1) + estimated_cost_usd
    if estimated_daily_cost > limits.daily_limit:
        return CostCheck(
            allowed=False,
            monthly_cost_usd=monthly_cost_usd,
            message=(
                f"This might exceed your daily cost limit of ${limits.daily_limit:.2f}. "
                "Consider upgrading your plan."
            ),
        )

    return CostCheck(allowed=True, monthly_cost_usd=monthly_cost_usd)


class CostTracker:
    """Service for reading, checking and updating a user's cost ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, uid: str) -> Optional[CostRecord]:
        stmt = select(CostRecord).where(CostRecord.uid == uid).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_cost_tracking(self, uid: str, now: Optional[datetime] = None) -> CostRecord:
        """
        Return the user's cost record.

        Creates a zeroed record on first use and lazily resets the monthly
        figures when the stored cycle belongs to an earlier month.
        """
        now = now or utcnow()
        record = await self._load(uid)

        if record is None:
            self.db.add(CostRecord(uid=uid, cycle_start=month_start(now)))
            try:
                await self.db.commit()
                logger.info("Cost tracking record created", uid=uid)
            except IntegrityError:
                await self.db.rollback()
                logger.info("Cost tracking record created concurrently", uid=uid)
            return await self._load(uid)

        if needs_cycle_reset(record.cycle_start, now):
            new_cycle_start = month_start(now)
            stmt = (
                update(CostRecord)
                .where(CostRecord.id == record.id, CostRecord.cycle_start == record.cycle_start)
                .values(
                    monthly_cost_usd=0.0,
                    monthly_api_calls=0,
                    cycle_start=new_cycle_start,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(stmt)
            await self.db.commit()
            logger.info("Monthly cost cycle reset", uid=uid, cycle_start=new_cycle_start.isoformat())
            record = await self._load(uid)

        return record

    async def get_user_plan(self, uid: str) -> str:
        result = await self.db.execute(select(UsageRecord.plan).where(UsageRecord.uid == uid))
        plan = result.scalar_one_or_none()
        return plan or DEFAULT_PLAN

    async def check_cost_limit(
        self,
        uid: str,
        estimated_cost_usd: float,
        plan: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CostCheck:
        """Must be called before any paid external call; ``allowed=False`` means do not call."""
        now = now or utcnow()
        if plan is None:
            plan = await self.get_user_plan(uid)

        record = await self.get_cost_tracking(uid, now)
        check = evaluate_cost_limit(
            monthly_cost_usd=float(record.monthly_cost_usd or 0.0),
            estimated_cost_usd=estimated_cost_usd,
            limits=limits_for_plan(plan),
            day_of_month=now.day,
        )

        if not check.allowed:
            logger.warning(
                "Cost limit denied request",
                uid=uid,
                plan=plan,
                estimated_cost_usd=estimated_cost_usd,
                monthly_cost_usd=check.monthly_cost_usd,
            )
        return check

    async def update_cost_tracking(
        self,
        uid: str,
        actual_cost_usd: float,
        service: str = "transcription",
        reference_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Atomically record spend for one external call, plus an audit entry when referenced."""
        await self.get_cost_tracking(uid)

        now = utcnow()
        stmt = (
            update(CostRecord)
            .where(CostRecord.uid == uid)
            .values(
                total_cost_usd=CostRecord.total_cost_usd + actual_cost_usd,
                monthly_cost_usd=CostRecord.monthly_cost_usd + actual_cost_usd,
                api_calls_count=CostRecord.api_calls_count + 1,
                monthly_api_calls=CostRecord.monthly_api_calls + 1,
                last_api_call=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if reference_id:
            self.db.add(
                CostLogEntry(
                    uid=uid,
                    cost_usd=actual_cost_usd,
                    service=service,
                    reference_id=reference_id,
                    details=details,
                )
            )
        await self.db.commit()

        if result.rowcount == 0:
            logger.error("Cost update matched no record", uid=uid, cost_usd=actual_cost_usd)
            return False

        logger.info(
            "Cost recorded",
            uid=uid,
            service=service,
            cost_usd=round(actual_cost_usd, 6),
            reference_id=reference_id,
        )
        return True

    async def get_cost_summary(self, uid: str) -> Dict[str, Any]:
        plan = await self.get_user_plan(uid)
        record = await self.get_cost_tracking(uid)
        limits = limits_for_plan(plan)
        monthly = float(record.monthly_cost_usd or 0.0)

        return {
            "current_month": round(monthly, 6),
            "total_all_time": round(float(record.total_cost_usd or 0.0), 6),
            "api_calls": record.monthly_api_calls,
            "total_api_calls": record.api_calls_count,
            "plan": plan,
            "limits": {
                "monthly_limit": limits.monthly_limit,
                "daily_limit": limits.daily_limit,
                "per_call_limit": limits.per_call_limit,
            },
            "utilization_percent": min(100.0, round(monthly / limits.monthly_limit * 100, 2)),
            "cycle_start": as_utc(record.cycle_start).isoformat(),
            "last_api_call": as_utc(record.last_api_call).isoformat() if record.last_api_call else None,
        }
