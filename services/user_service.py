"""
User accounts: signup, profile and account deletion.
"""

from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictException, ResourceNotFoundException, ValidationException
from core.logging import get_logger
from models.models import (
    AudioFile, CostLogEntry, CostRecord, LearningContent, Transcript, UsageRecord, User, as_utc,
)
from schemas.user import UserUpdate
from services.identity import IdentityClaims, IdentityProvider
from services.idempotency import is_unique_violation
from services.storage import BlobStorage, StorageError
from services.usage_service import PLAN_STORAGE_GB, UsageService

logger = get_logger("users")

BYTES_PER_GB = 1024 * 1024 * 1024


def _add_month(value):
    if value.month == 12:
        return value.replace(year=value.year + 1, month=1)
    return value.replace(month=value.month + 1)


class UserService:
    def __init__(self, db: AsyncSession, storage: Optional[BlobStorage] = None):
        self.db = db
        self.storage = storage
        self.usage = UsageService(db)

    async def find_user(self, uid: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.uid == uid))
        return result.scalar_one_or_none()

    async def get_user(self, uid: str) -> User:
        user = await self.find_user(uid)
        if user is None:
            raise ResourceNotFoundException("User not found")
        return user

    async def signup(self, claims: IdentityClaims, full_name: Optional[str] = None) -> Tuple[User, bool]:
        """
        Create the user row and a default usage record.

        Returns the user and whether it was created now. A duplicate insert
        racing with another signup is reported as a conflict.
        """
        if not claims.email:
            raise ValidationException("Email is required")

        existing = await self.find_user(claims.uid)
        if existing is not None:
            logger.info("Signup for existing user", uid=claims.uid)
            return existing, False

        user = User(
            uid=claims.uid,
            email=claims.email,
            full_name=full_name or claims.name,
            avatar_url=claims.picture,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_unique_violation(e):
                logger.warning("Duplicate signup", uid=claims.uid)
                raise ConflictException("User already exists")
            raise

        await self.usage.ensure_usage_record(claims.uid)
        await self.db.refresh(user)
        logger.info("User created", uid=claims.uid)
        return user, True

    async def get_profile(self, uid: str) -> Dict[str, Any]:
        """Profile with subscription, usage and activity figures."""
        user = await self.get_user(uid)
        created_at = as_utc(user.created_at)
        identity = {
            "id": user.uid,
            "name": user.full_name or "",
            "email": user.email or "",
            "avatarUrl": user.avatar_url,
            "createdAt": created_at.isoformat(),
        }
        usage = await self.usage.ensure_usage_record(uid)

        audio_rows = (
            await self.db.execute(
                select(AudioFile.file_size_bytes, AudioFile.created_at).where(AudioFile.uid == uid)
            )
        ).all()
        total_transcriptions = await self.db.scalar(
            select(func.count()).select_from(Transcript).where(Transcript.uid == uid)
        )

        storage_limit_gb = PLAN_STORAGE_GB.get(usage.plan.lower(), PLAN_STORAGE_GB["free"])
        total_bytes = sum(row.file_size_bytes or 0 for row in audio_rows)
        last_activity = max((as_utc(row.created_at) for row in audio_rows), default=created_at)

        return {
            **identity,
            "subscription": {
                "plan": usage.plan.capitalize(),
                "status": "Active",
                "renewsOn": _add_month(usage.cycle_start).isoformat(),
                "cycleStart": usage.cycle_start.isoformat(),
            },
            "usage": {
                "transcription": {"used": usage.used_minutes, "limit": usage.allowed_minutes},
                "storage": {
                    "used": round(total_bytes / BYTES_PER_GB, 2),
                    "limit": storage_limit_gb,
                },
                "audioFiles": len(audio_rows),
            },
            "stats": {
                "totalTranscriptions": total_transcriptions or 0,
                "totalMinutesProcessed": usage.used_minutes,
                "averageFileSize": round(total_bytes / len(audio_rows)) if audio_rows else 0,
                "lastActivity": last_activity.isoformat(),
            },
        }

    async def update_profile(self, uid: str, data: UserUpdate) -> User:
        user = await self.get_user(uid)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationException("No fields to update")

        for field, value in changes.items():
            setattr(user, field, value)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Profile updated", uid=uid, fields=sorted(changes))
        return user

    async def delete_account(self, uid: str, identity: IdentityProvider) -> Dict[str, int]:
        """
        Delete everything the user owns: derived rows, blobs, audio rows,
        ledgers, sessions and finally the user row.
        """
        await self.get_user(uid)

        file_paths = (await self.db.execute(select(AudioFile.file_path).where(AudioFile.uid == uid))).scalars().all()

        await self.db.execute(delete(LearningContent).where(LearningContent.uid == uid))
        await self.db.execute(delete(Transcript).where(Transcript.uid == uid))

        blobs_deleted = 0
        for path in file_paths:
            try:
                if await self.storage.delete(path):
                    blobs_deleted += 1
            except StorageError as e:
                logger.warning("Failed to delete blob", uid=uid, file_path=path, error=str(e))

        await self.db.execute(delete(AudioFile).where(AudioFile.uid == uid))
        await self.db.execute(delete(UsageRecord).where(UsageRecord.uid == uid))
        await self.db.execute(delete(CostRecord).where(CostRecord.uid == uid))
        await self.db.execute(delete(CostLogEntry).where(CostLogEntry.uid == uid))
        await self.db.commit()

        await identity.delete_user(self.db, uid)

        await self.db.execute(delete(User).where(User.uid == uid))
        await self.db.commit()

        logger.info("Account deleted", uid=uid, audio_files=len(file_paths), blobs_deleted=blobs_deleted)
        return {"audio_files": len(file_paths), "blobs_deleted": blobs_deleted}
