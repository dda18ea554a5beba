from .models import (
    User, UserSession, UsageRecord, CostRecord, CostLogEntry,
    AudioFile, Transcript, LearningContent,
    AudioStatusEnum, PlanEnum,
)
