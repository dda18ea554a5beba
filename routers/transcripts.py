"""
Transcript CRUD routes. Word counts are always recomputed server-side.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import get_current_user
from db_config import get_async_db
from schemas.transcript import TranscriptCreate, TranscriptUpdate
from services.identity import IdentityClaims
from services.transcript_service import TranscriptService, transcript_to_dict

router = APIRouter(prefix="/api/transcripts", tags=["Transcripts"])


@router.post("")
async def save_transcript(
    body: TranscriptCreate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Create the transcript of an audio file, or replace the existing one.

    Responds 201 on creation and 200 on update.
    """
    transcript, created = await TranscriptService(db).save_transcript(current_user.uid, body)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        content={
            "success": True,
            "data": transcript_to_dict(transcript),
            "message": "Transcript created successfully" if created else "Transcript updated successfully",
        },
    )


@router.get("")
async def list_transcripts(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    audio_file_id: Optional[str] = Query(None),
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    transcripts, total = await TranscriptService(db).list_transcripts(current_user.uid, limit, offset, audio_file_id)
    return {
        "success": True,
        "data": [transcript_to_dict(t) for t in transcripts],
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }


@router.get("/{transcript_id}")
async def get_transcript(
    transcript_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    transcript = await TranscriptService(db).get_transcript(transcript_id, current_user.uid)
    return {"success": True, "data": transcript_to_dict(transcript)}


@router.put("/{transcript_id}")
async def update_transcript(
    transcript_id: str,
    body: TranscriptUpdate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    transcript = await TranscriptService(db).update_transcript(transcript_id, current_user.uid, body)
    return {"success": True, "data": transcript_to_dict(transcript)}


@router.delete("/{transcript_id}")
async def delete_transcript(
    transcript_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await TranscriptService(db).delete_transcript(transcript_id, current_user.uid)
    return {"success": True, "message": "Transcript deleted successfully"}
