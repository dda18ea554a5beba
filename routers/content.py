"""
Learning content routes: fetch-or-generate and study pack PDF export.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from core.dependencies import get_content_generator, get_pdf_renderer
from core.security import get_current_user
from db_config import get_async_db
from schemas.content import LearningContentResponse, PDFExportRequest
from services.content_generation import ContentGenerator
from services.content_service import ContentService, content_document
from services.identity import IdentityClaims
from services.pdf_generation import PDFRenderer

router = APIRouter(prefix="/api/content", tags=["Learning Content"])


@router.get("/{audio_id}")
async def get_learning_content(
    audio_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    content_generator: ContentGenerator = Depends(get_content_generator),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Return the learning content for a transcribed audio file.

    The first request generates it (summaries, flashcards, concepts and
    study pack metadata); later requests return the stored copy.
    """
    outcome = await ContentService(db, content_generator=content_generator).get_or_generate(
        current_user.uid, audio_id
    )

    # An unsaved result only exists as the payload
    data = content_document(outcome.row.content) if outcome.row is not None else outcome.payload

    response = LearningContentResponse(
        data=data,
        source=outcome.source,
        content_id=outcome.row.id if outcome.row is not None else None,
        warning=outcome.warning,
    )
    return response.model_dump()


@router.post("/{audio_id}/pdf")
async def export_study_pack_pdf(
    audio_id: str,
    body: PDFExportRequest = PDFExportRequest(),
    current_user: IdentityClaims = Depends(get_current_user),
    pdf_renderer: PDFRenderer = Depends(get_pdf_renderer),
    db: AsyncSession = Depends(get_async_db),
):
    """Render the stored learning content as a downloadable PDF study pack."""
    pdf_bytes, filename = await ContentService(db, pdf_renderer=pdf_renderer).render_pdf(
        current_user.uid, audio_id, body
    )
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
