"""
Learning content and study pack Pydantic schemas.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

SummaryToneName = Literal["professional", "friendly", "eli5"]
StudyPackTemplate = Literal["academic", "modern", "minimal", "creative"]


class SummarySection(BaseModel):
    heading: str = Field(..., description="Section heading")
    content: str = Field(..., description="Section body in markdown")


class SummaryTone(BaseModel):
    """One summary written in a specific tone."""
    title: str = Field(..., description="The title for this summary tone")
    sections: List[SummarySection] = Field(..., description="Summary sections")


class Summaries(BaseModel):
    professional: SummaryTone
    friendly: SummaryTone
    eli5: SummaryTone


class Flashcard(BaseModel):
    id: int
    question: str = Field(..., description="Question that tests understanding")
    answer: str = Field(..., description="Concise answer")


class FlashcardSet(BaseModel):
    flashcards: List[Flashcard] = Field(..., description="5-8 flashcards")


class Concept(BaseModel):
    term: str
    definition: str
    category: str = Field(..., description="Topic category of the concept")


class ConceptSet(BaseModel):
    concepts: List[Concept] = Field(..., description="6-10 key concepts")


class StudyPackMetadata(BaseModel):
    title: str
    subtitle: str
    author: str
    tags: List[str]
    duration: str
    level: str
    generatedAt: str


class StudyPackTemplateInfo(BaseModel):
    id: str
    name: str
    description: str
    color: str
    features: List[str]


class StudyPackStats(BaseModel):
    totalPages: int
    wordCount: int
    readingTime: str
    concepts: int
    flashcards: int


class StudyPacks(BaseModel):
    metadata: StudyPackMetadata
    templates: List[StudyPackTemplateInfo]
    stats: StudyPackStats


class LearningContentData(BaseModel):
    """The JSON document stored in ``learning_content.content``."""
    audioTitle: str
    duration: str
    processedAt: str
    summary: Summaries
    flashcards: List[Flashcard]
    concepts: List[Concept]
    studyPacks: StudyPacks


class PDFExportRequest(BaseModel):
    """Options for the study pack PDF export."""
    template: StudyPackTemplate = "academic"
    includeSummary: bool = True
    summaryTone: SummaryToneName = "professional"
    includeFlashcards: bool = True
    includeConcepts: bool = True
    includeMetadata: bool = True


class LearningContentResponse(BaseModel):
    success: bool = True
    data: dict
    source: str = Field(..., description="'database' if previously generated, else 'generated'")
    content_id: Optional[str] = None
    warning: Optional[str] = None
    message: Optional[str] = None
