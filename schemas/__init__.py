# Schemas package for Pydantic models
from .audio import AudioFileRead, AudioFileUpdate, TranscribeRequest, TranscriptionOptions
from .auth import IdTokenRequest, SignupRequest, SessionUser
from .content import LearningContentData, LearningContentResponse, PDFExportRequest
from .transcript import TranscriptCreate, TranscriptUpdate
from .usage import CostSummaryRead, UsageRead
from .user import PlanChangeRequest, UserRead, UserUpdate

__all__ = [
    "AudioFileRead", "AudioFileUpdate", "TranscribeRequest", "TranscriptionOptions",
    "IdTokenRequest", "SignupRequest", "SessionUser",
    "LearningContentData", "LearningContentResponse", "PDFExportRequest",
    "TranscriptCreate", "TranscriptUpdate",
    "CostSummaryRead", "UsageRead",
    "PlanChangeRequest", "UserRead", "UserUpdate",
]
