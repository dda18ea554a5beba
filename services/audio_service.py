"""
Audio file records: upload, ownership lookups, status transitions and deletion.
"""

from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DatabaseException, ResourceNotFoundException
from core.file_utils import build_storage_key
from core.logging import get_logger
from models.models import AudioFile, AudioStatusEnum, LearningContent, Transcript, utcnow
from services.storage import BlobStorage, StorageError

logger = get_logger("audio")

AUDIO_NOT_FOUND = "Audio file not found or access denied"


class AudioService:
    """
    Service for a user's audio files.

    Every query filters on the owning uid; a file owned by someone else is
    reported exactly like a missing one.
    """

    def __init__(self, db: AsyncSession, storage: BlobStorage):
        self.db = db
        self.storage = storage

    async def create_audio_file(self, uid: str, filename: str, content: bytes, mime_type: str) -> AudioFile:
        """
        Store the blob and insert its metadata row with status ``uploaded``.

        The blob is removed again if the row cannot be saved.
        """
        key = build_storage_key(uid, filename)
        try:
            await self.storage.upload(key, content, content_type=mime_type)
        except StorageError as e:
            logger.error("Failed to upload file to storage", uid=uid, error=str(e))
            raise DatabaseException("Failed to upload file to storage")

        audio_file = AudioFile(
            uid=uid,
            original_filename=filename,
            file_path=key,
            file_size_bytes=len(content),
            mime_type=mime_type,
            status=AudioStatusEnum.uploaded,
        )
        self.db.add(audio_file)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save file metadata", uid=uid, file_path=key, error=str(e))
            try:
                await self.storage.delete(key)
            except StorageError as cleanup_error:
                logger.error("Failed to remove orphaned blob", file_path=key, error=str(cleanup_error))
            raise DatabaseException("Failed to save file metadata")

        logger.info(
            "Audio file uploaded",
            uid=uid,
            audio_file_id=audio_file.id,
            size_bytes=audio_file.file_size_bytes,
            mime_type=mime_type,
        )
        return audio_file

    async def list_audio_files(self, uid: str) -> List[AudioFile]:
        result = await self.db.execute(
            select(AudioFile).where(AudioFile.uid == uid).order_by(AudioFile.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_audio_file(self, audio_file_id: str, uid: str) -> Optional[AudioFile]:
        result = await self.db.execute(
            select(AudioFile)
            .where(AudioFile.id == audio_file_id, AudioFile.uid == uid)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_audio_file(self, audio_file_id: str, uid: str) -> AudioFile:
        """Return the owned audio file or raise a 404."""
        audio_file = await self.find_audio_file(audio_file_id, uid)
        if audio_file is None:
            raise ResourceNotFoundException(AUDIO_NOT_FOUND)
        return audio_file

    async def rename_audio_file(self, audio_file_id: str, uid: str, new_filename: str) -> AudioFile:
        audio_file = await self.get_audio_file(audio_file_id, uid)
        audio_file.original_filename = new_filename
        await self.db.commit()
        await self.db.refresh(audio_file)
        logger.info("Audio file renamed", uid=uid, audio_file_id=audio_file_id)
        return audio_file

    async def set_status(
        self,
        audio_file_id: str,
        uid: str,
        status: AudioStatusEnum,
        duration_seconds: Optional[float] = None,
    ) -> bool:
        """Single-statement status transition; returns False if no owned row matched."""
        values = {"status": status, "updated_at": utcnow()}
        if duration_seconds is not None:
            values["duration_seconds"] = duration_seconds

        result = await self.db.execute(
            update(AudioFile)
            .where(AudioFile.id == audio_file_id, AudioFile.uid == uid)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Audio status changed", audio_file_id=audio_file_id, status=status.value)
        return result.rowcount > 0

    async def mark_failed(self, audio_file_id: str, uid: str) -> None:
        """Best-effort ``failed`` transition used on error paths."""
        try:
            await self.db.rollback()
            await self.set_status(audio_file_id, uid, AudioStatusEnum.failed)
        except SQLAlchemyError as e:
            logger.error("Failed to mark audio file as failed", audio_file_id=audio_file_id, error=str(e))

    async def delete_audio_file(self, audio_file_id: str, uid: str) -> None:
        """Delete derived rows, the stored blob and the audio row."""
        audio_file = await self.get_audio_file(audio_file_id, uid)
        file_path = audio_file.file_path

        await self.db.execute(
            delete(LearningContent).where(LearningContent.audio_file_id == audio_file_id, LearningContent.uid == uid)
        )
        await self.db.execute(
            delete(Transcript).where(Transcript.audio_file_id == audio_file_id, Transcript.uid == uid)
        )

        try:
            await self.storage.delete(file_path)
        except StorageError as e:
            # Orphaned blobs are tolerated; the row still goes
            logger.warning("Failed to delete blob", audio_file_id=audio_file_id, file_path=file_path, error=str(e))

        await self.db.execute(delete(AudioFile).where(AudioFile.id == audio_file_id, AudioFile.uid == uid))
        await self.db.commit()
        logger.info("Audio file deleted", uid=uid, audio_file_id=audio_file_id)


def audio_file_summary(audio_file: AudioFile) -> dict:
    """Upload response payload."""
    return {
        "id": audio_file.id,
        "filename": audio_file.original_filename,
        "size": audio_file.file_size_bytes,
        "mimeType": audio_file.mime_type,
        "status": audio_file.status.value,
        "createdAt": audio_file.created_at.isoformat(),
    }
