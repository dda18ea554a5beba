"""
Usage and cost ledger routes.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ResourceNotFoundException
from core.security import get_current_user
from db_config import get_async_db
from schemas.usage import CostSummaryRead, UsageRead
from services.cost_tracking import CostTracker
from services.identity import IdentityClaims
from services.usage_service import UsageService

router = APIRouter(prefix="/api/usage", tags=["Usage"])


@router.get("")
async def get_usage(
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Return the caller's minutes for the current billing cycle."""
    usage = await UsageService(db).get_usage(current_user.uid)
    if usage is None:
        raise ResourceNotFoundException("Unable to verify usage limits. Please try again.")
    return {"success": True, "data": UsageRead(**usage.to_dict()).model_dump()}


@router.get("/cost")
async def get_cost_summary(
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await CostTracker(db).get_cost_summary(current_user.uid)
    return {"success": True, "data": CostSummaryRead(**summary).model_dump()}
