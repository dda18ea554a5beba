"""
Audio file Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from models.models import AudioStatusEnum


class AudioFileRead(BaseModel):
    """Schema for reading audio file data."""
    id: str
    uid: str
    original_filename: str
    file_path: str
    file_size_bytes: int
    mime_type: str
    duration_seconds: Optional[float] = None
    status: AudioStatusEnum
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


class AudioFileUpdate(BaseModel):
    """Rename an audio file."""
    original_filename: str = Field(..., description="New display name (1-255 characters)")

    @field_validator("original_filename")
    @classmethod
    def validate_filename(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Filename cannot be empty")
        if len(value) > 255:
            raise ValueError("Filename must be 255 characters or less")
        return value


class TranscriptionOptions(BaseModel):
    language: Optional[str] = Field(None, description="ISO-639-1 language hint")
    prompt: Optional[str] = Field(None, description="Optional prompt to guide the model")
    temperature: Optional[float] = Field(None, ge=0, le=1)
    high_quality: bool = Field(False, description="Prefer the higher quality model")
    speaker_diarization: bool = Field(False, description="Request speaker labels")
    include_timestamps: bool = Field(False, description="Request word and segment timestamps")


class TranscribeRequest(BaseModel):
    """Body of the transcribe endpoints."""
    audio_file_id: str = Field(..., min_length=1, description="Audio file to transcribe")
    options: TranscriptionOptions = Field(default_factory=TranscriptionOptions)
