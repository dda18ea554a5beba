"""
Transcripts: the paid transcription workflow and transcript CRUD.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DatabaseException, QuotaExceededException, ResourceNotFoundException, ValidationException
from core.file_utils import count_words
from core.logging import get_logger
from models.models import AudioStatusEnum, Transcript, as_utc
from schemas.audio import TranscribeRequest
from schemas.transcript import TranscriptCreate, TranscriptUpdate
from services.audio_service import AudioService
from services.cost_tracking import CostTracker
from services.idempotency import SOURCE_GENERATED, UpsertResult, create_once, find_for_audio_file
from services.storage import BlobStorage, StorageError
from services.transcription import (
    MODEL_COST_PER_MINUTE, WHISPER_1, CostEstimate, Transcriber, TranscriptionResult,
    estimate_transcription_cost, get_recommended_model, validate_file_for_transcription,
)
from services.usage_service import UsageService, estimate_audio_duration, minutes_for_duration

logger = get_logger("transcription")

TRANSCRIPT_NOT_FOUND = "Transcript not found"


@dataclass
class TranscriptionJob:
    """Everything needed to run one transcription, captured up front."""
    uid: str
    audio_file_id: str
    filename: str
    file_path: str
    file_size_bytes: int
    mime_type: str
    model: str
    cost_estimate: CostEstimate
    estimated_minutes: int
    language: Optional[str] = None
    prompt: Optional[str] = None
    temperature: Optional[float] = None
    include_timestamps: bool = False


@dataclass
class GeneratedTranscript:
    result: TranscriptionResult
    processing_time_ms: int


def actual_transcription_cost(duration_seconds: Optional[float], model: str, estimate: CostEstimate) -> float:
    """Cost from the reported duration, or the size-based estimate when there is none."""
    if not duration_seconds:
        return estimate.estimated_cost_usd
    per_minute = MODEL_COST_PER_MINUTE.get(model, MODEL_COST_PER_MINUTE[WHISPER_1])
    return max(0.001, duration_seconds / 60 * per_minute)


def transcript_to_dict(transcript: Transcript) -> Dict[str, Any]:
    return {
        "id": transcript.id,
        "audio_file_id": transcript.audio_file_id,
        "uid": transcript.uid,
        "content": transcript.content,
        "language": transcript.language,
        "word_count": transcript.word_count,
        "processing_time_ms": transcript.processing_time_ms,
        "model_used": transcript.model_used,
        "cost_estimate_usd": transcript.cost_estimate_usd,
        "created_at": as_utc(transcript.created_at).isoformat(),
        "updated_at": as_utc(transcript.updated_at).isoformat(),
    }


def existing_transcript_payload(transcript: Transcript) -> Dict[str, Any]:
    return {
        "id": transcript.id,
        "text": transcript.content,
        "audio_file_id": transcript.audio_file_id,
        "language": transcript.language,
        "word_count": transcript.word_count,
        "created_at": as_utc(transcript.created_at).isoformat(),
    }


def transcription_payload(job: TranscriptionJob, outcome: UpsertResult) -> Dict[str, Any]:
    """Response body for a transcribe call that reached the provider."""
    generated: Optional[GeneratedTranscript] = outcome.payload
    row: Optional[Transcript] = outcome.row

    if row is not None and (generated is None or outcome.source != SOURCE_GENERATED):
        # Another request stored the transcript first
        return existing_transcript_payload(row)

    result = generated.result
    return {
        "id": row.id if row is not None else None,
        "text": result.text,
        "audio_file_id": job.audio_file_id,
        "language": result.language or (row.language if row is not None else "en"),
        "word_count": count_words(result.text),
        "duration": result.duration,
        "segments": result.segments,
        "words": result.words,
        "processing_time_ms": generated.processing_time_ms,
        "model_used": job.model,
        "cost_estimate": job.cost_estimate.to_dict(),
        "created_at": as_utc(row.created_at).isoformat() if row is not None else None,
    }


class TranscriptService:
    """
    Service for transcripts.

    The transcription workflow is split in two so the streaming endpoint can
    report validation and quota errors before it starts streaming:
    ``prepare_transcription`` runs every check, ``run_transcription`` spends.
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[BlobStorage] = None,
        transcriber: Optional[Transcriber] = None,
    ):
        self.db = db
        self.storage = storage
        self.transcriber = transcriber
        self.audio = AudioService(db, storage)
        self.usage = UsageService(db)
        self.costs = CostTracker(db)

    async def prepare_transcription(
        self, uid: str, request: TranscribeRequest
    ) -> Tuple[Optional[Transcript], Optional[TranscriptionJob]]:
        """
        Validate a transcribe request.

        Returns ``(existing_transcript, None)`` when the file was already
        transcribed, else ``(None, job)``.

        Raises:
            ResourceNotFoundException: audio file missing or not owned
            ValidationException: file cannot be sent to the provider
            QuotaExceededException: usage or cost limit would be exceeded
        """
        audio_file = await self.audio.get_audio_file(request.audio_file_id, uid)
        options = request.options

        error = validate_file_for_transcription(audio_file.file_size_bytes, audio_file.mime_type)
        if error:
            logger.warning("File rejected for transcription", uid=uid, audio_file_id=audio_file.id, reason=error)
            raise ValidationException(error)

        existing = await find_for_audio_file(self.db, Transcript, audio_file.id, uid)
        if existing is not None:
            logger.info("Transcript already exists", uid=uid, audio_file_id=audio_file.id, transcript_id=existing.id)
            return existing, None

        model = get_recommended_model(
            needs_speaker_diarization=options.speaker_diarization,
            prioritize_cost=True,
            needs_high_quality=options.high_quality,
        )
        job = TranscriptionJob(
            uid=uid,
            audio_file_id=audio_file.id,
            filename=audio_file.original_filename,
            file_path=audio_file.file_path,
            file_size_bytes=audio_file.file_size_bytes,
            mime_type=audio_file.mime_type,
            model=model,
            cost_estimate=estimate_transcription_cost(audio_file.file_size_bytes, audio_file.mime_type, model),
            estimated_minutes=estimate_audio_duration(audio_file.file_size_bytes, audio_file.mime_type),
            language=options.language,
            prompt=options.prompt,
            temperature=options.temperature,
            include_timestamps=options.include_timestamps,
        )

        usage_check = await self.usage.check_usage_limit(uid, job.estimated_minutes)
        if not usage_check.allowed:
            raise QuotaExceededException(usage_check.message)

        cost_check = await self.costs.check_cost_limit(uid, job.cost_estimate.estimated_cost_usd)
        if not cost_check.allowed:
            raise QuotaExceededException(cost_check.message, error_type="COST_LIMIT_EXCEEDED")

        logger.info(
            "Transcription approved",
            uid=uid,
            audio_file_id=job.audio_file_id,
            model=model,
            estimated_cost_usd=round(job.cost_estimate.estimated_cost_usd, 6),
            estimated_minutes=job.estimated_minutes,
        )
        return None, job

    async def run_transcription(self, job: TranscriptionJob) -> UpsertResult:
        """
        Call the provider and store the transcript once.

        The audio file moves to ``processing`` before the call, ``completed`` on
        success and ``failed`` on any error or cancellation. A transcript that
        could not be saved leaves the file at ``uploaded`` so it can be retried;
        the generated call is still charged to both ledgers.
        """
        try:
            audio = await self.storage.download(job.file_path)
        except StorageError as e:
            logger.error("Failed to download audio file", audio_file_id=job.audio_file_id, error=str(e))
            await self.audio.mark_failed(job.audio_file_id, job.uid)
            raise DatabaseException("Failed to download audio file")

        await self.audio.set_status(job.audio_file_id, job.uid, AudioStatusEnum.processing)

        async def generate() -> GeneratedTranscript:
            started = time.monotonic()
            result = await self.transcriber.transcribe(
                audio,
                job.filename,
                model=job.model,
                language=job.language,
                prompt=job.prompt,
                temperature=job.temperature,
                include_timestamps=job.include_timestamps,
            )
            return GeneratedTranscript(result=result, processing_time_ms=int((time.monotonic() - started) * 1000))

        def build_row(generated: GeneratedTranscript) -> Transcript:
            return Transcript(
                audio_file_id=job.audio_file_id,
                uid=job.uid,
                content=generated.result.text,
                language=generated.result.language or job.language or "en",
                word_count=count_words(generated.result.text),
                processing_time_ms=generated.processing_time_ms,
                model_used=job.model,
                cost_estimate_usd=job.cost_estimate.estimated_cost_usd,
            )

        try:
            outcome = await create_once(self.db, Transcript, job.audio_file_id, job.uid, generate, build_row)
        except asyncio.CancelledError:
            logger.warning("Transcription cancelled", uid=job.uid, audio_file_id=job.audio_file_id)
            await self.audio.mark_failed(job.audio_file_id, job.uid)
            raise
        except Exception as e:
            logger.error("Transcription failed", uid=job.uid, audio_file_id=job.audio_file_id, error=str(e))
            await self.audio.mark_failed(job.audio_file_id, job.uid)
            raise

        duration = outcome.payload.result.duration if outcome.payload is not None else None
        if outcome.persisted:
            await self.audio.set_status(
                job.audio_file_id, job.uid, AudioStatusEnum.completed, duration_seconds=duration
            )
        else:
            await self.audio.set_status(job.audio_file_id, job.uid, AudioStatusEnum.uploaded)

        # The provider call is paid for whether or not the transcript was saved
        if outcome.generated:
            await self.costs.update_cost_tracking(
                job.uid,
                actual_transcription_cost(duration, job.model, job.cost_estimate),
                service="transcription",
                reference_id=job.audio_file_id,
                details={"model": job.model, "file_size_bytes": job.file_size_bytes},
            )
        if outcome.source == SOURCE_GENERATED:
            await self.usage.add_usage(job.uid, minutes_for_duration(duration, job.estimated_minutes))

        return outcome

    async def list_transcripts(
        self, uid: str, limit: int = 50, offset: int = 0, audio_file_id: Optional[str] = None
    ) -> Tuple[List[Transcript], int]:
        conditions = [Transcript.uid == uid]
        if audio_file_id:
            conditions.append(Transcript.audio_file_id == audio_file_id)

        result = await self.db.execute(
            select(Transcript)
            .where(*conditions)
            .order_by(Transcript.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        total = await self.db.scalar(select(func.count()).select_from(Transcript).where(*conditions))
        return list(result.scalars().all()), total or 0

    async def get_transcript(self, transcript_id: str, uid: str) -> Transcript:
        result = await self.db.execute(
            select(Transcript)
            .where(Transcript.id == transcript_id, Transcript.uid == uid)
            .execution_options(populate_existing=True)
        )
        transcript = result.scalar_one_or_none()
        if transcript is None:
            raise ResourceNotFoundException(TRANSCRIPT_NOT_FOUND)
        return transcript

    async def save_transcript(self, uid: str, data: TranscriptCreate) -> Tuple[Transcript, bool]:
        """
        Create the transcript of an owned audio file, or replace its content.

        Returns the row and whether it was created. The audio file is marked
        ``completed`` either way.
        """
        await self.audio.get_audio_file(data.audio_file_id, uid)

        transcript = await find_for_audio_file(self.db, Transcript, data.audio_file_id, uid)
        created = transcript is None
        if created:
            transcript = Transcript(audio_file_id=data.audio_file_id, uid=uid)
            self.db.add(transcript)

        transcript.content = data.content
        transcript.language = data.language
        transcript.word_count = count_words(data.content)
        if data.processing_time_ms is not None:
            transcript.processing_time_ms = data.processing_time_ms
        if data.model_used is not None:
            transcript.model_used = data.model_used
        if data.cost_estimate_usd is not None:
            transcript.cost_estimate_usd = data.cost_estimate_usd

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save transcript", uid=uid, audio_file_id=data.audio_file_id, error=str(e))
            raise DatabaseException("Failed to save transcript")
        await self.db.refresh(transcript)

        await self.audio.set_status(data.audio_file_id, uid, AudioStatusEnum.completed)
        logger.info("Transcript saved", uid=uid, transcript_id=transcript.id, created=created)
        return transcript, created

    async def update_transcript(self, transcript_id: str, uid: str, data: TranscriptUpdate) -> Transcript:
        transcript = await self.get_transcript(transcript_id, uid)
        if data.content is None and data.language is None:
            raise ValidationException("No fields to update")

        if data.content is not None:
            transcript.content = data.content
            transcript.word_count = count_words(data.content)
        if data.language is not None:
            transcript.language = data.language

        await self.db.commit()
        await self.db.refresh(transcript)
        logger.info("Transcript updated", uid=uid, transcript_id=transcript_id)
        return transcript

    async def delete_transcript(self, transcript_id: str, uid: str) -> None:
        transcript = await self.get_transcript(transcript_id, uid)
        await self.db.delete(transcript)
        await self.db.commit()
        logger.info("Transcript deleted", uid=uid, transcript_id=transcript_id)
