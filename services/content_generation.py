"""
Learning content generation from transcripts.

Summaries (three tones), flashcards and concepts come from a text-generation
provider (OpenAI by default, Google Gemini as an alternative); study pack
metadata is derived locally from the transcript.
"""

import asyncio
import math
from collections import Counter
from typing import List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel

from core.config import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE, OPENAI_CONTENT_TEMPERATURE
from core.exceptions import AIServiceException
from schemas.content import (
    Concept, ConceptSet, Flashcard, FlashcardSet, LearningContentData, Summaries,
    SummaryTone, StudyPacks,
)
from services.ai_manager import AIRetryConfig, retry_with_backoff

T = TypeVar("T", bound=BaseModel)
logger = structlog.get_logger("content_generation")

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert content creator. Generate structured summary content "
    "based on the transcript provided."
)
FLASHCARD_SYSTEM_PROMPT = (
    "You are an educational content expert. Generate flashcards from the provided transcript."
)
CONCEPT_SYSTEM_PROMPT = (
    "You are a knowledge extraction expert. Extract key concepts from the provided transcript."
)

SUMMARY_TONE_PROMPTS = {
    "professional": (
        "Create a comprehensive professional summary of this transcript. Make it detailed, "
        "formal, and suitable for academic or professional use. Use markdown formatting for emphasis."
    ),
    "friendly": (
        "Create a friendly, conversational summary of this transcript. Make it approachable, "
        "use casual language, and include emojis where appropriate."
    ),
    "eli5": (
        'Create an "Explain Like I\'m 5" summary of this transcript. Use very simple language, '
        "analogies, and examples a child would understand."
    ),
}
FLASHCARD_PROMPT = (
    "Create educational flashcards from this transcript. Create 5-8 flashcards covering the "
    "most important concepts. Make questions test understanding, not just memorization."
)
CONCEPT_PROMPT = (
    "Extract key concepts and terms from this transcript. Extract 6-10 of the most important "
    "concepts with clear definitions and appropriate categories."
)

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does",
    "did", "will", "would", "could", "should",
}

STUDY_PACK_TEMPLATES = [
    {
        "id": "academic",
        "name": "Academic Paper",
        "description": "Clean, scholarly design with proper citations",
        "color": "blue",
        "features": ["Table of Contents", "References", "Clean Typography"],
    },
    {
        "id": "modern",
        "name": "Modern Magazine",
        "description": "Sleek, contemporary layout with visual elements",
        "color": "purple",
        "features": ["Visual Elements", "Modern Layout", "Color Accents"],
    },
    {
        "id": "minimal",
        "name": "Minimal Clean",
        "description": "Simple, distraction-free design for focus",
        "color": "gray",
        "features": ["Minimal Design", "High Readability", "Clean Spacing"],
    },
    {
        "id": "creative",
        "name": "Creative Studio",
        "description": "Vibrant, engaging design with illustrations",
        "color": "emerald",
        "features": ["Illustrations", "Vibrant Colors", "Engaging Layout"],
    },
]

WORDS_PER_MINUTE = 200
WORDS_PER_PAGE = 300


def topic_tags(transcript: str, limit: int = 4) -> List[str]:
    """Most frequent words longer than four letters, excluding stop words."""
    words = [w for w in transcript.lower().split() if len(w) > 4 and w not in STOP_WORDS]
    # most_common keeps first-seen order among equal counts
    return [word[0].upper() + word[1:] for word, _ in Counter(words).most_common(limit)]


def difficulty_level(word_count: int) -> str:
    if word_count > 2000:
        return "Advanced"
    if word_count > 1000:
        return "Intermediate"
    return "Beginner"


def build_study_pack(
    transcript: str,
    audio_title: str,
    duration: str,
    processed_at: str,
    flashcard_count: int,
    concept_count: int,
) -> StudyPacks:
    word_count = len(transcript.split())
    return StudyPacks.model_validate(
        {
            "metadata": {
                "title": audio_title,
                "subtitle": "Complete Study Guide",
                "author": "AI-Generated Content",
                "tags": topic_tags(transcript),
                "duration": duration,
                "level": difficulty_level(word_count),
                "generatedAt": processed_at,
            },
            "templates": STUDY_PACK_TEMPLATES,
            "stats": {
                "totalPages": math.ceil(word_count / WORDS_PER_PAGE),
                "wordCount": word_count,
                "readingTime": f"{math.ceil(word_count / WORDS_PER_MINUTE)} min",
                "concepts": concept_count,
                "flashcards": flashcard_count,
            },
        }
    )


def estimate_content_generation_cost(transcript_length: int) -> float:
    """Rough USD estimate for one full generation (four calls)."""
    input_tokens = transcript_length * 0.7
    output_tokens = 3000
    input_cost = (input_tokens / 1000) * 0.00015
    output_cost = (output_tokens / 1000) * 0.0006
    return (input_cost + output_cost) * 4


class ContentGenerator:
    """
    Generates learning content with the configured provider.

    Provider SDK clients are created lazily on first use.
    """

    def __init__(
        self,
        provider: str = "openai",
        openai_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        openai_model: str = "gpt-4o-2024-08-06",
        gemini_model: str = "gemini-2.0-flash",
        retry_config: Optional[AIRetryConfig] = None,
    ):
        if provider not in ("openai", "gemini"):
            raise ValueError(f"Unsupported content provider: {provider}")
        self.provider = provider
        self.openai_api_key = openai_api_key
        self.gemini_api_key = gemini_api_key
        self.openai_model = openai_model
        self.gemini_model = gemini_model
        self.retry_config = retry_config or AIRetryConfig()
        self._openai_client = None
        self._gemini_client = None

    @property
    def provider_name(self) -> str:
        return "OpenAI" if self.provider == "openai" else "Google"

    def _get_openai_client(self):
        if self._openai_client is None:
            if not self.openai_api_key:
                raise AIServiceException(detail="OpenAI API key is not configured", provider="OpenAI")
            from openai import AsyncOpenAI

            self._openai_client = AsyncOpenAI(api_key=self.openai_api_key)
            logger.info("OpenAI content client initialized")
        return self._openai_client

    def _get_gemini_client(self):
        if self._gemini_client is None:
            if not self.gemini_api_key:
                raise AIServiceException(detail="Gemini API key is not configured", provider="Google")
            from google import genai

            self._gemini_client = genai.Client(api_key=self.gemini_api_key)
            logger.info("Gemini content client initialized")
        return self._gemini_client

    async def _generate_with_openai(self, system_instruction: str, prompt: str, schema: Type[T], name: str) -> T:
        client = self._get_openai_client()
        completion = await client.chat.completions.create(
            model=self.openai_model,
            temperature=OPENAI_CONTENT_TEMPERATURE,
            messages=[
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": prompt},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {"name": name, "schema": schema.model_json_schema()},
            },
        )
        content = completion.choices[0].message.content
        if not content:
            raise AIServiceException(detail="Empty response from AI", provider="OpenAI")
        return schema.model_validate_json(content)

    async def _generate_with_gemini(self, system_instruction: str, prompt: str, schema: Type[T], name: str) -> T:
        from google.genai import types

        client = self._get_gemini_client()
        response = await client.aio.models.generate_content(
            model=self.gemini_model,
            contents=[prompt],
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                response_mime_type="application/json",
                response_schema=schema,
                temperature=GEMINI_TEMPERATURE,
                max_output_tokens=GEMINI_MAX_TOKENS,
            ),
        )
        if not response.text:
            raise AIServiceException(detail="Empty response from AI", provider="Google")
        return schema.model_validate_json(response.text)

    async def _generate(self, system_instruction: str, prompt: str, schema: Type[T], name: str) -> T:
        generate = self._generate_with_openai if self.provider == "openai" else self._generate_with_gemini

        async def _call():
            return await generate(system_instruction, prompt, schema, name)

        return await retry_with_backoff(_call, self.retry_config, self.provider_name, "Content generation")

    async def generate_summary(self, transcript: str, tone: str) -> SummaryTone:
        prompt = f"{SUMMARY_TONE_PROMPTS[tone]}\n\nTranscript: {transcript}"
        return await self._generate(SUMMARY_SYSTEM_PROMPT, prompt, SummaryTone, "summary_response")

    async def generate_flashcards(self, transcript: str) -> List[Flashcard]:
        prompt = f"{FLASHCARD_PROMPT}\n\nTranscript: {transcript}"
        result = await self._generate(FLASHCARD_SYSTEM_PROMPT, prompt, FlashcardSet, "flashcards_response")
        return result.flashcards

    async def generate_concepts(self, transcript: str) -> List[Concept]:
        prompt = f"{CONCEPT_PROMPT}\n\nTranscript: {transcript}"
        result = await self._generate(CONCEPT_SYSTEM_PROMPT, prompt, ConceptSet, "concepts_response")
        return result.concepts

    async def generate(
        self,
        transcript: str,
        audio_title: str,
        duration: str,
        processed_at: str,
    ) -> LearningContentData:
        """Generate the full learning content document for a transcript."""
        logger.info(
            "Generating learning content",
            provider=self.provider,
            audio_title=audio_title,
            transcript_chars=len(transcript),
        )

        professional, friendly, eli5, flashcards, concepts = await asyncio.gather(
            self.generate_summary(transcript, "professional"),
            self.generate_summary(transcript, "friendly"),
            self.generate_summary(transcript, "eli5"),
            self.generate_flashcards(transcript),
            self.generate_concepts(transcript),
        )

        content = LearningContentData(
            audioTitle=audio_title,
            duration=duration,
            processedAt=processed_at,
            summary=Summaries(professional=professional, friendly=friendly, eli5=eli5),
            flashcards=flashcards,
            concepts=concepts,
            studyPacks=build_study_pack(
                transcript, audio_title, duration, processed_at, len(flashcards), len(concepts)
            ),
        )
        logger.info("Learning content generated", flashcards=len(flashcards), concepts=len(concepts))
        return content
