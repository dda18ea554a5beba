"""
Database models for the application.

Every owned row carries the identity-provider ``uid`` and every query filters on
it. Users may own rows before their profile row exists, so ``uid`` is not a
foreign key. Relationships are not mapped: handlers run in async sessions, so
related rows are always loaded and deleted with explicit statements.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, DateTime, Enum as SAEnum, Float, ForeignKey, Index, Integer,
    Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from db_config import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def month_start(now: datetime = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _current_cycle_start() -> datetime:
    return month_start()


# --- ENUM Types ---
class AudioStatusEnum(enum.Enum):
    uploaded = "uploaded"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class PlanEnum(enum.Enum):
    free = "free"
    starter = "starter"
    pro = "pro"
    enterprise = "enterprise"


JSONType = JSON().with_variant(JSONB(), "postgresql")
MoneyType = Numeric(12, 6, asdecimal=False)


# --- Model Definitions ---

class User(Base):
    __tablename__ = "users"

    uid = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    uid = Column(String(128), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(String(36), primary_key=True, default=_uuid)
    uid = Column(String(128), nullable=False, unique=True)
    plan = Column(String(32), nullable=False, default=PlanEnum.free.value)
    allowed_minutes = Column(Integer, nullable=False, default=30)
    used_minutes = Column(Integer, nullable=False, default=0)
    cycle_start = Column(DateTime(timezone=True), nullable=False, default=_current_cycle_start)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class CostRecord(Base):
    __tablename__ = "cost_tracking"

    id = Column(String(36), primary_key=True, default=_uuid)
    uid = Column(String(128), nullable=False, unique=True)
    total_cost_usd = Column(MoneyType, nullable=False, default=0.0)
    monthly_cost_usd = Column(MoneyType, nullable=False, default=0.0)
    api_calls_count = Column(Integer, nullable=False, default=0)
    monthly_api_calls = Column(Integer, nullable=False, default=0)
    last_api_call = Column(DateTime(timezone=True), nullable=True)
    cycle_start = Column(DateTime(timezone=True), nullable=False, default=_current_cycle_start)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class CostLogEntry(Base):
    """Append-only audit trail of external spend."""
    __tablename__ = "cost_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    uid = Column(String(128), nullable=False, index=True)
    cost_usd = Column(MoneyType, nullable=False)
    service = Column(String(64), nullable=False)
    reference_id = Column(String(64), nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AudioFile(Base):
    __tablename__ = "audio_files"
    __table_args__ = (Index("ix_audio_files_uid_created", "uid", "created_at"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    uid = Column(String(128), nullable=False, index=True)
    original_filename = Column(String(255), nullable=False)
    file_path = Column(String(512), nullable=False, unique=True)
    file_size_bytes = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)
    duration_seconds = Column(Float, nullable=True)
    status = Column(
        SAEnum(AudioStatusEnum, name="audio_status_enum", native_enum=False, validate_strings=True),
        nullable=False,
        default=AudioStatusEnum.uploaded,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Transcript(Base):
    __tablename__ = "transcripts"
    __table_args__ = (UniqueConstraint("audio_file_id", name="uq_transcripts_audio_file_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    audio_file_id = Column(String(36), ForeignKey("audio_files.id", ondelete="CASCADE"), nullable=False)
    uid = Column(String(128), nullable=False, index=True)
    content = Column(Text, nullable=False)
    language = Column(String(16), nullable=False, default="en")
    word_count = Column(Integer, nullable=False, default=0)
    processing_time_ms = Column(Integer, nullable=True)
    model_used = Column(String(64), nullable=True)
    cost_estimate_usd = Column(MoneyType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class LearningContent(Base):
    __tablename__ = "learning_content"
    __table_args__ = (UniqueConstraint("audio_file_id", name="uq_learning_content_audio_file_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    audio_file_id = Column(String(36), ForeignKey("audio_files.id", ondelete="CASCADE"), nullable=False)
    uid = Column(String(128), nullable=False, index=True)
    content = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


__all__ = [
    "User", "UserSession", "UsageRecord", "CostRecord", "CostLogEntry",
    "AudioFile", "Transcript", "LearningContent",
    "AudioStatusEnum", "PlanEnum",
    "utcnow", "as_utc", "month_start",
]
