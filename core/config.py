"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database settings
    db_host: str = "localhost"
    db_port: str = "5432"
    db_user: str = "user"
    db_password: str = "password"
    db_name: str = "voiceframe"
    database_url: Optional[str] = None  # full URL, overrides the db_* parts
    db_timeout_seconds: int = 30

    # Identity provider settings (signed ID tokens)
    identity_token_secret: str = "change-this-in-production"
    identity_token_algorithm: str = "HS256"
    identity_token_issuer: str = "voiceframe-identity"
    identity_token_expire_minutes: int = 60
    session_cookie_name: str = "session"
    session_expire_days: int = 5

    # AI settings
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    content_provider: str = "openai"  # openai or gemini
    default_transcription_model: str = "whisper-1"
    content_generation_model: str = "gpt-4o-2024-08-06"
    gemini_content_model: str = "gemini-2.0-flash"
    ai_max_retries: int = 2
    ai_timeout_seconds: float = 120.0

    # Upload / storage settings
    max_upload_size_mb: int = 50
    allowed_audio_types: list[str] = [
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/m4a",
        "audio/aac",
        "audio/ogg",
        "audio/webm",
    ]
    storage_directory: str = "cache/audio-files"

    # Streaming settings
    stream_keepalive_seconds: float = 2.0

    # Application settings
    app_name: str = "VoiceFrame API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    enable_request_logging: bool = True
    enable_sql_logging: bool = False
    enable_file_logging: bool = True
    log_directory: str = "logs"
    app_log_file: str = "app.log"
    error_log_file: str = "error.log"
    security_log_file: str = "security.log"
    ai_log_file: str = "ai.log"
    billing_log_file: str = "billing.log"
    database_log_file: str = "database.log"
    access_log_file: str = "access.log"
    log_file_max_size_mb: int = 10
    log_file_backup_count: int = 5
    log_rotation_when: str = "size"  # size, or a TimedRotatingFileHandler "when" value
    log_rotation_interval: int = 1
    log_compression: bool = True

    # Security settings
    enable_security_headers: bool = True
    enable_request_size_limit: bool = True
    # Slightly above the upload limit to allow for multipart overhead
    max_request_size_bytes: int = 55 * 1024 * 1024
    enable_session_redirect: bool = True
    cors_origins: list[str] = ["*"]

    @property
    def sqlalchemy_database_url(self) -> str:
        """Construct the async database URL from individual components."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()


# OpenAI settings
OPENAI_CONTENT_TEMPERATURE = 0.3
OPENAI_CONTENT_MAX_TOKENS = 4096

# Gemini settings
GEMINI_MAX_TOKENS = 8192
GEMINI_TEMPERATURE = 0.3
