"""
Transcript Pydantic schemas.
"""
from typing import Optional

from pydantic import BaseModel, Field


class TranscriptCreate(BaseModel):
    """Create or replace the transcript of an audio file."""
    audio_file_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, description="Transcript text")
    language: str = Field(default="en", max_length=16)
    processing_time_ms: Optional[int] = Field(None, ge=0)
    model_used: Optional[str] = None
    cost_estimate_usd: Optional[float] = Field(None, ge=0)


class TranscriptUpdate(BaseModel):
    content: Optional[str] = Field(None, min_length=1)
    language: Optional[str] = Field(None, max_length=16)

