"""
Learning content: fetch-or-generate per audio file, and study pack PDF export.
"""

import json
import math
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import APIException, QuotaExceededException, ResourceNotFoundException, ValidationException
from core.file_utils import pdf_download_filename
from core.logging import get_logger
from models.models import LearningContent, Transcript, utcnow
from schemas.content import PDFExportRequest
from services.audio_service import AudioService
from services.content_generation import ContentGenerator, estimate_content_generation_cost
from services.cost_tracking import CostTracker
from services.idempotency import UpsertResult, create_once, find_for_audio_file
from services.pdf_generation import PDFGenerationError, PDFRenderer

logger = get_logger("content_generation")

REQUIRED_CONTENT_KEYS = ("summary", "flashcards", "concepts")


def format_duration(duration_seconds: Optional[float]) -> str:
    if not duration_seconds:
        return "Unknown"
    return f"{math.ceil(duration_seconds / 60)} minutes"


def content_document(row_content: Any) -> Dict[str, Any]:
    """Stored content as a dict; older rows may hold a JSON string."""
    if isinstance(row_content, str):
        try:
            return json.loads(row_content)
        except ValueError:
            raise APIException(status_code=500, detail="Invalid content format")
    return row_content


class ContentService:
    """Service for learning content generated from transcripts."""

    def __init__(
        self,
        db: AsyncSession,
        content_generator: Optional[ContentGenerator] = None,
        pdf_renderer: Optional[PDFRenderer] = None,
    ):
        self.db = db
        self.content_generator = content_generator
        self.pdf_renderer = pdf_renderer
        self.audio = AudioService(db, None)
        self.costs = CostTracker(db)

    async def get_or_generate(self, uid: str, audio_file_id: str) -> UpsertResult:
        """
        Return the learning content of an audio file, generating it on first request.

        Raises:
            ResourceNotFoundException: audio file or its transcript missing
            QuotaExceededException: the generation would exceed the cost limits
        """
        audio_file = await self.audio.get_audio_file(audio_file_id, uid)
        audio_title = audio_file.original_filename
        duration = format_duration(audio_file.duration_seconds)

        existing = await find_for_audio_file(self.db, LearningContent, audio_file_id, uid)
        if existing is not None:
            return UpsertResult(row=existing, payload=None, source="database", persisted=True, generated=False)

        transcript = await find_for_audio_file(self.db, Transcript, audio_file_id, uid)
        if transcript is None:
            raise ResourceNotFoundException("Transcript not found. Please transcribe the audio first.")
        transcript_text = transcript.content

        estimated_cost = estimate_content_generation_cost(len(transcript_text))
        cost_check = await self.costs.check_cost_limit(uid, estimated_cost)
        if not cost_check.allowed:
            raise QuotaExceededException(cost_check.message, error_type="COST_LIMIT_EXCEEDED")

        async def generate() -> Dict[str, Any]:
            content = await self.content_generator.generate(
                transcript_text,
                audio_title=audio_title,
                duration=duration,
                processed_at=utcnow().isoformat(),
            )
            return content.model_dump()

        def build_row(payload: Dict[str, Any]) -> LearningContent:
            return LearningContent(audio_file_id=audio_file_id, uid=uid, content=payload)

        outcome = await create_once(self.db, LearningContent, audio_file_id, uid, generate, build_row)

        if outcome.generated:
            await self.costs.update_cost_tracking(
                uid,
                estimated_cost,
                service="content_generation",
                reference_id=audio_file_id,
                details={"provider": self.content_generator.provider, "transcript_chars": len(transcript_text)},
            )
        return outcome

    async def render_pdf(self, uid: str, audio_file_id: str, options: PDFExportRequest) -> Tuple[bytes, str]:
        """Render the stored content as a PDF; returns the bytes and the download file name."""
        audio_file = await self.audio.get_audio_file(audio_file_id, uid)
        title = audio_file.original_filename

        row = await find_for_audio_file(self.db, LearningContent, audio_file_id, uid)
        if row is None:
            raise ResourceNotFoundException("Learning content not found. Please generate content first.")

        content = content_document(row.content)
        if any(content.get(key) is None for key in REQUIRED_CONTENT_KEYS):
            raise ValidationException("Incomplete content data. Please regenerate content.")

        try:
            pdf_bytes = await self.pdf_renderer.render(content, options)
        except PDFGenerationError as e:
            raise APIException(status_code=500, detail=str(e), error_type="PDF_GENERATION_FAILED")

        filename = pdf_download_filename(title, options.template)
        logger.info(
            "Study pack PDF generated",
            uid=uid,
            audio_file_id=audio_file_id,
            template=options.template,
            size_bytes=len(pdf_bytes),
        )
        return pdf_bytes, filename
