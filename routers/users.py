"""
User profile routes. A user may only read or change their own profile.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import get_identity_provider, get_storage
from core.security import get_current_user, require_same_user
from db_config import get_async_db
from schemas.user import PlanChangeRequest, UserRead, UserUpdate
from services.identity import IdentityClaims, IdentityProvider
from services.storage import BlobStorage
from services.usage_service import UsageService
from services.user_service import UserService

router = APIRouter(prefix="/api/user", tags=["Users"])


@router.post("/upgrade/plan")
async def change_plan(
    body: PlanChangeRequest,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Move the caller to another plan; used minutes carry over."""
    usage = await UsageService(db).change_plan(current_user.uid, body.newPlan)
    return {
        "success": True,
        "message": f"Plan updated to {usage.plan} successfully",
        "data": usage.to_dict(),
    }


@router.get("/{user_id}")
async def get_user_profile(
    user_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Profile with subscription, usage and activity statistics."""
    require_same_user(user_id, current_user)
    profile = await UserService(db).get_profile(user_id)
    return {"success": True, "data": profile}


@router.patch("/{user_id}")
async def update_user_profile(
    user_id: str,
    body: UserUpdate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    require_same_user(user_id, current_user)
    user = await UserService(db).update_profile(user_id, body)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": UserRead.model_validate(user).model_dump(mode="json"),
    }


@router.delete("/{user_id}")
async def delete_user_account(
    user_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    identity: IdentityProvider = Depends(get_identity_provider),
    storage: BlobStorage = Depends(get_storage),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Delete the account and everything it owns.

    Removes learning content, transcripts, stored audio, usage and cost
    records, sessions and the profile row.
    """
    require_same_user(user_id, current_user)
    deleted = await UserService(db, storage).delete_account(user_id, identity)
    return {"success": True, "message": "Account deleted successfully", "data": deleted}
