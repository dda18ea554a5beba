"""
Audio file routes: upload, listing, rename, deletion and transcription.
"""
import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.dependencies import get_storage, get_transcriber
from core.exceptions import APIException, ValidationException
from core.file_utils import read_upload_limited, validate_audio_size, validate_audio_type
from core.security import get_current_user
from db_config import get_async_db
from schemas.audio import AudioFileRead, AudioFileUpdate, TranscribeRequest
from services.audio_service import AudioService, audio_file_summary
from services.identity import IdentityClaims
from services.storage import BlobStorage
from services.transcript_service import (
    TranscriptionJob, TranscriptService, existing_transcript_payload, transcription_payload,
)
from services.transcription import Transcriber

router = APIRouter(prefix="/api/audio", tags=["Audio"])
logger = structlog.get_logger("audio")


@router.post("/upload")
async def upload_audio(
    audio: UploadFile = File(None),
    current_user: IdentityClaims = Depends(get_current_user),
    storage: BlobStorage = Depends(get_storage),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Upload an audio file.

    - Multipart field ``audio``
    - Maximum file size: 50MB (configurable)
    - Allow-listed audio MIME types only
    """
    if audio is None or not audio.filename:
        raise ValidationException("No audio file provided")

    if not validate_audio_type(audio.content_type):
        raise ValidationException("Invalid file type. Please upload an audio file.")

    content, too_large = await read_upload_limited(audio, settings.max_upload_size_bytes)
    if too_large or not validate_audio_size(len(content)):
        message = (
            f"File too large. Maximum size is {settings.max_upload_size_mb}MB."
            if too_large else "Uploaded file is empty."
        )
        logger.warning("Upload rejected", uid=current_user.uid, filename=audio.filename, reason=message)
        raise ValidationException(message)

    audio_file = await AudioService(db, storage).create_audio_file(
        current_user.uid, audio.filename, content, audio.content_type.lower()
    )
    return {"success": True, "data": audio_file_summary(audio_file)}


@router.get("")
async def list_audio_files(
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's audio files, newest first."""
    audio_files = await AudioService(db, None).list_audio_files(current_user.uid)
    return {
        "success": True,
        "data": [AudioFileRead.model_validate(f).model_dump(mode="json") for f in audio_files],
    }


@router.get("/{audio_id}")
async def get_audio_file(
    audio_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    audio_file = await AudioService(db, None).get_audio_file(audio_id, current_user.uid)
    return {"success": True, "data": AudioFileRead.model_validate(audio_file).model_dump(mode="json")}


@router.patch("/{audio_id}")
async def rename_audio_file(
    audio_id: str,
    body: AudioFileUpdate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    audio_file = await AudioService(db, None).rename_audio_file(audio_id, current_user.uid, body.original_filename)
    return {
        "success": True,
        "message": "Audio file renamed successfully",
        "data": AudioFileRead.model_validate(audio_file).model_dump(mode="json"),
    }


@router.delete("/{audio_id}")
async def delete_audio_file(
    audio_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    storage: BlobStorage = Depends(get_storage),
    db: AsyncSession = Depends(get_async_db),
):
    """Delete an audio file with its transcript, learning content and stored blob."""
    await AudioService(db, storage).delete_audio_file(audio_id, current_user.uid)
    return {"success": True, "message": "Audio file deleted successfully"}


@router.post("/transcribe")
async def transcribe_audio(
    body: TranscribeRequest,
    current_user: IdentityClaims = Depends(get_current_user),
    storage: BlobStorage = Depends(get_storage),
    transcriber: Transcriber = Depends(get_transcriber),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Transcribe an uploaded audio file.

    Returns the stored transcript when the file was already transcribed.
    Usage and cost limits are checked before the provider is called.
    """
    service = TranscriptService(db, storage, transcriber)
    existing, job = await service.prepare_transcription(current_user.uid, body)
    if existing is not None:
        return {"success": True, "data": existing_transcript_payload(existing), "message": "Transcript already exists"}

    outcome = await service.run_transcription(job)
    response = {
        "success": True,
        "data": transcription_payload(job, outcome),
        "message": "Transcription completed successfully",
    }
    if outcome.warning:
        response["warning"] = outcome.warning
    return response


def sse_event(event_type: str, **data) -> str:
    return f"data: {json.dumps({'type': event_type, **data}, default=str)}\n\n"


# Streamed transcriptions outlive their client; strong references until done
pending_transcriptions = set()


async def run_on_own_session(session_factory, job: TranscriptionJob, storage: BlobStorage, transcriber: Transcriber):
    async with session_factory() as db:
        return await TranscriptService(db, storage, transcriber).run_transcription(job)


def _transcription_finished(task: asyncio.Task) -> None:
    pending_transcriptions.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Background transcription ended with an error", error=str(task.exception()))


async def transcription_events(session_factory, job: TranscriptionJob, storage: BlobStorage, transcriber: Transcriber):
    """
    Server-sent events for one transcription.

    The transcription runs as a separate task on its own database session
    (the request session is closed before a streamed body is sent). A client
    disconnect stops the events, not the task: the result is still stored
    and charged.
    """
    yield sse_event("progress", progress=0, message="Starting transcription...")

    task = asyncio.create_task(run_on_own_session(session_factory, job, storage, transcriber))
    pending_transcriptions.add(task)
    task.add_done_callback(_transcription_finished)

    try:
        while not task.done():
            done, _ = await asyncio.wait({task}, timeout=settings.stream_keepalive_seconds)
            if not done:
                yield sse_event("progress", progress=5, message="Transcribing audio...")
        outcome = task.result()
        payload = transcription_payload(job, outcome)
    except APIException as e:
        yield sse_event("error", error=e.detail)
        return
    except Exception as e:
        logger.error("Streaming transcription failed", audio_file_id=job.audio_file_id, error=str(e))
        yield sse_event("error", error="Transcription failed")
        return

    chunk_number = 0
    async for chunk in transcriber.stream_text(payload["text"]):
        chunk_number += 1
        yield sse_event("chunk", chunk=chunk, chunkNumber=chunk_number)
        yield sse_event("progress", progress=min(90, chunk_number * 5), message="Processing transcription...")

    complete = {"transcript": payload}
    if outcome.warning:
        complete["warning"] = outcome.warning
    yield sse_event("complete", **complete)


async def existing_transcript_events(payload: dict):
    yield sse_event("progress", progress=100, message="Transcript already exists")
    yield sse_event("complete", transcript=payload)


@router.post("/transcribe/stream")
async def transcribe_audio_stream(
    body: TranscribeRequest,
    request: Request,
    current_user: IdentityClaims = Depends(get_current_user),
    storage: BlobStorage = Depends(get_storage),
    transcriber: Transcriber = Depends(get_transcriber),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Transcribe with progress reported as server-sent events.

    Validation, ownership and limit errors are returned as regular JSON
    errors before the stream starts; later failures arrive as ``error`` events.
    """
    existing, job = await TranscriptService(db, storage, transcriber).prepare_transcription(current_user.uid, body)
    if existing is not None:
        events = existing_transcript_events(existing_transcript_payload(existing))
    else:
        events = transcription_events(request.app.state.session_factory, job, storage, transcriber)

    return StreamingResponse(
        events,
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
