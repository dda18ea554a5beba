"""
Speech-to-text adapter over the OpenAI audio transcription API.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional

import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel

from core.exceptions import AIServiceException
from services.ai_manager import AIRetryConfig, retry_with_backoff

logger = structlog.get_logger("transcription")

PROVIDER = "OpenAI"

WHISPER_1 = "whisper-1"
GPT_4O_MINI_TRANSCRIBE = "gpt-4o-mini-transcribe"
GPT_4O_TRANSCRIBE = "gpt-4o-transcribe"
GPT_4O_TRANSCRIBE_DIARIZE = "gpt-4o-transcribe-diarize"

# USD per audio minute
MODEL_COST_PER_MINUTE = {
    WHISPER_1: 0.006,
    GPT_4O_MINI_TRANSCRIBE: 0.012,
    GPT_4O_TRANSCRIBE: 0.024,
    GPT_4O_TRANSCRIBE_DIARIZE: 0.036,
}

# Only whisper-1 returns verbose_json with segments and duration
VERBOSE_JSON_MODELS = {WHISPER_1}

MAX_TRANSCRIPTION_BYTES = 25 * 1024 * 1024
SUPPORTED_TRANSCRIPTION_TYPES = [
    "audio/mp3",
    "audio/mpeg",
    "audio/mp4",
    "audio/m4a",
    "audio/wav",
    "audio/webm",
    "audio/ogg",
    "audio/aac",
]

STREAM_CHUNK_SIZE = 50


class TranscriptionResult(BaseModel):
    text: str
    language: Optional[str] = None
    duration: Optional[float] = None
    segments: Optional[List[Any]] = None
    words: Optional[List[Any]] = None


@dataclass
class CostEstimate:
    estimated_cost_usd: float
    file_size_mb: float
    estimated_minutes: float
    model: str

    def to_dict(self) -> dict:
        return {
            "estimated_cost_usd": round(self.estimated_cost_usd, 6),
            "file_size_mb": round(self.file_size_mb, 3),
            "estimated_minutes": round(self.estimated_minutes, 2),
            "model": self.model,
        }


def estimate_transcription_cost(file_size_bytes: int, mime_type: str, model: str = WHISPER_1) -> CostEstimate:
    """Rough cost estimate from file size; actual duration may differ."""
    file_size_mb = file_size_bytes / (1024 * 1024)
    mime_type = (mime_type or "").lower()

    if mime_type == "audio/wav":
        estimated_minutes = file_size_mb / 10
    elif mime_type in ("audio/m4a", "audio/aac"):
        estimated_minutes = file_size_mb * 1.2
    elif mime_type in ("audio/ogg", "audio/webm"):
        estimated_minutes = file_size_mb * 1.1
    else:
        # mp3 at 128 kbps is roughly 1 MB per minute
        estimated_minutes = file_size_mb

    cost_per_minute = MODEL_COST_PER_MINUTE.get(model, MODEL_COST_PER_MINUTE[WHISPER_1])
    return CostEstimate(
        estimated_cost_usd=max(0.001, estimated_minutes * cost_per_minute),
        file_size_mb=file_size_mb,
        estimated_minutes=max(0.1, estimated_minutes),
        model=model,
    )


def validate_file_for_transcription(file_size_bytes: int, mime_type: str) -> Optional[str]:
    """Return an error message if the provider cannot accept the file, else None."""
    if file_size_bytes > MAX_TRANSCRIPTION_BYTES:
        return (
            "File too large for transcription. Maximum size is 25MB, "
            f"but file is {file_size_bytes / (1024 * 1024):.1f}MB."
        )

    if (mime_type or "").lower() not in SUPPORTED_TRANSCRIPTION_TYPES:
        return (
            f"Unsupported file type: {mime_type}. "
            f"Supported types: {', '.join(SUPPORTED_TRANSCRIPTION_TYPES)}"
        )

    return None


def get_recommended_model(
    needs_speaker_diarization: bool = False,
    prioritize_cost: bool = False,
    needs_high_quality: bool = False,
    needs_streaming: bool = False,
) -> str:
    if needs_speaker_diarization:
        return GPT_4O_TRANSCRIBE_DIARIZE
    if prioritize_cost and not needs_high_quality:
        return WHISPER_1
    if needs_streaming:
        return GPT_4O_MINI_TRANSCRIBE
    if needs_high_quality:
        return GPT_4O_TRANSCRIBE
    return WHISPER_1


def split_into_chunks(text: str, chunk_size: int = STREAM_CHUNK_SIZE) -> List[str]:
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


class Transcriber:
    """
    OpenAI speech-to-text client.

    The SDK client is created on first use so the application can start
    without an API key configured.
    """

    def __init__(
        self,
        api_key: Optional[str],
        retry_config: Optional[AIRetryConfig] = None,
        client: Optional[AsyncOpenAI] = None,
        chunk_delay_seconds: float = 0.1,
    ):
        self.api_key = api_key
        self.retry_config = retry_config or AIRetryConfig()
        self.chunk_delay_seconds = chunk_delay_seconds
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise AIServiceException(detail="OpenAI API key is not configured", provider=PROVIDER)
            self._client = AsyncOpenAI(api_key=self.api_key)
            logger.info("OpenAI transcription client initialized")
        return self._client

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        model: str = WHISPER_1,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        include_timestamps: bool = False,
    ) -> TranscriptionResult:
        """Transcribe an audio file."""
        verbose = model in VERBOSE_JSON_MODELS
        params = {
            "file": (filename, audio),
            "model": model,
            "response_format": "verbose_json" if verbose else "json",
        }
        if language:
            params["language"] = language
        if prompt:
            params["prompt"] = prompt
        if temperature is not None:
            params["temperature"] = temperature
        if include_timestamps and verbose:
            params["timestamp_granularities"] = ["word", "segment"]

        async def _call():
            return await self.client.audio.transcriptions.create(**params)

        logger.info("Starting transcription", model=model, filename=filename, size_bytes=len(audio))
        response = await retry_with_backoff(_call, self.retry_config, PROVIDER, "Transcription")

        if isinstance(response, str):
            return TranscriptionResult(text=response)

        def _dump(items):
            if not items:
                return None
            return [item.model_dump() if hasattr(item, "model_dump") else item for item in items]

        result = TranscriptionResult(
            text=getattr(response, "text", "") or "",
            language=getattr(response, "language", None),
            duration=getattr(response, "duration", None),
            segments=_dump(getattr(response, "segments", None)),
            words=_dump(getattr(response, "words", None)),
        )
        logger.info("Transcription completed", model=model, characters=len(result.text), duration=result.duration)
        return result

    async def stream_text(self, text: str) -> AsyncIterator[str]:
        """Yield a finished transcript in small chunks for progressive display."""
        for chunk in split_into_chunks(text):
            yield chunk
            if self.chunk_delay_seconds:
                await asyncio.sleep(self.chunk_delay_seconds)
