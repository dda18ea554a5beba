"""
Centralized logging: rotating compressed file handlers, JSON output, secret redaction.

Two front-ends share the same standard-library handlers:

- ``get_logger(name)`` returns a :class:`StructuredLogger` that accepts keyword
  fields (``logger.info("Upload stored", uid=uid, size=size)``).
- ``structlog.get_logger(name)`` is configured by :func:`setup_logging` to hand
  its events to the standard library, so modules that prefer structlog end up
  in the same files.
"""
import gzip
import logging
import logging.handlers
import os
import re
import shutil
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from core.config import settings

# Logger names routed to each component file
COMPONENT_LOGGERS = {
    "security": ["security", "auth"],
    "ai": ["ai", "transcription", "content_generation", "openai", "gemini"],
    "billing": ["billing", "usage", "cost_tracking"],
    "database": ["database", "sqlalchemy.engine"],
    "access": ["access", "middleware", "uvicorn.access"],
}

# Component loggers that should not also reach the root handlers
ISOLATED_LOGGERS = {"security", "auth", "ai", "billing"}


class ComponentFilter(logging.Filter):
    """Ensure every record has a ``component`` attribute."""

    def __init__(self, default_component: str = "app"):
        super().__init__()
        self.default_component = default_component

    def filter(self, record):
        if not hasattr(record, "component"):
            name = record.name
            if name.startswith("sqlalchemy"):
                record.component = "database"
            elif name.startswith("uvicorn") or name == "httpx":
                record.component = "http"
            else:
                record.component = self.default_component
        return True


class SecurityFilter(logging.Filter):
    """Redact tokens, keys and passwords from log records."""

    SENSITIVE_KEYS = {
        "password", "token", "secret", "key", "api_key", "authorization",
        "cookie", "credential", "jwt", "bearer", "session", "id_token",
    }

    _LONG_SECRET = re.compile(r"\b[A-Za-z0-9]{32,}\b")
    _BEARER = re.compile(r"Bearer\s+[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+")
    _JWT = re.compile(r"\beyJ[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+")
    _URL_CREDENTIALS = re.compile(r"://[^:/@\s]+:[^@\s]+@")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self.sanitize_message(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = self._sanitize_value(record.args)
            else:
                record.args = tuple(self._sanitize_value(arg) for arg in record.args)
        for key in list(record.__dict__):
            if self._is_sensitive(key):
                setattr(record, key, "[REDACTED]")
        return True

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(sensitive in lowered for sensitive in self.SENSITIVE_KEYS)

    def sanitize_message(self, message: str) -> str:
        message = self._BEARER.sub("Bearer [REDACTED]", message)
        message = self._JWT.sub("[REDACTED]", message)
        message = self._LONG_SECRET.sub("[REDACTED]", message)
        message = self._URL_CREDENTIALS.sub("://[REDACTED]:[REDACTED]@", message)
        return message

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.sanitize_message(value)
        if isinstance(value, dict):
            return {
                k: "[REDACTED]" if self._is_sensitive(str(k)) else self._sanitize_value(v)
                for k, v in value.items()
            }
        return value


def _gzip_file(path: str) -> None:
    with open(path, "rb") as f_in:
        with gzip.open(f"{path}.gz", "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    os.remove(path)


class CompressedRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Size-based rotation that gzips rotated files."""

    def __init__(self, *args, compress_logs: bool = True, **kwargs):
        self.compress_logs = compress_logs
        super().__init__(*args, **kwargs)

    def doRollover(self):
        super().doRollover()
        if not self.compress_logs or self.backupCount <= 0:
            return

        # Shift older archives up one slot before compressing the new backup
        for i in range(self.backupCount - 1, 0, -1):
            older = f"{self.baseFilename}.{i}.gz"
            newer = f"{self.baseFilename}.{i + 1}.gz"
            if os.path.exists(older):
                if os.path.exists(newer):
                    os.remove(newer)
                os.rename(older, newer)

        backup_file = f"{self.baseFilename}.1"
        if os.path.exists(backup_file):
            try:
                _gzip_file(backup_file)
            except OSError as e:
                sys.stderr.write(f"Failed to compress log file {backup_file}: {e}\n")


class CompressedTimedRotatingFileHandler(logging.handlers.TimedRotatingFileHandler):
    """Time-based rotation that gzips rotated files."""

    def __init__(self, *args, compress_logs: bool = True, **kwargs):
        self.compress_logs = compress_logs
        super().__init__(*args, **kwargs)

    def doRollover(self):
        super().doRollover()
        if not self.compress_logs:
            return

        directory = os.path.dirname(self.baseFilename)
        prefix = os.path.basename(self.baseFilename) + "."
        for name in os.listdir(directory):
            if name.startswith(prefix) and not name.endswith(".gz"):
                try:
                    _gzip_file(os.path.join(directory, name))
                except OSError as e:
                    sys.stderr.write(f"Failed to compress log file {name}: {e}\n")


class StructuredLogger:
    """A logger wrapper that accepts keyword fields."""

    def __init__(self, name: str, logger: logging.Logger):
        self.name = name
        self._logger = logger

    def _log(self, level: int, msg: str, *args, **kwargs):
        exc_info = kwargs.pop("exc_info", False)
        extra = dict(kwargs.pop("extra", {}))
        extra.setdefault("component", self.name)

        if settings.log_format == "json":
            # JsonFormatter serializes extra attributes as fields
            for key, value in kwargs.items():
                extra[key if key not in _RESERVED_ATTRS else f"field_{key}"] = value
        elif kwargs:
            fields = ", ".join(f"{key}={value}" for key, value in kwargs.items())
            msg = f"{msg} [{fields}]"

        self._logger.log(level, msg, *args, exc_info=exc_info, extra=extra)

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)


# Attributes of logging.LogRecord that extra= must not overwrite
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class CentralizedLogManager:
    """Singleton owning all handlers and structured loggers."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._initialized = False
                    cls._instance = instance
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            self._loggers: Dict[str, StructuredLogger] = {}
            self._handlers: Dict[str, logging.Handler] = {}
            self._log_directory: Optional[Path] = None

            if settings.enable_file_logging:
                self._log_directory = Path(settings.log_directory)
                self._log_directory.mkdir(parents=True, exist_ok=True)

            self._setup_root_logger()
            self._setup_component_loggers()
            self._configure_structlog()
            self._initialized = True

    def _create_formatter(self, include_component: bool = True) -> logging.Formatter:
        if settings.log_format == "json":
            fmt = "%(asctime)s %(name)s %(levelname)s %(message)s"
            if include_component:
                fmt = "%(asctime)s %(name)s %(levelname)s %(component)s %(message)s"
            return jsonlogger.JsonFormatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%S")

        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        if include_component:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(component)s] - %(message)s"
        return logging.Formatter(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def _create_rotating_handler(self, log_file: str, level: int = logging.INFO) -> logging.Handler:
        file_path = str(self._log_directory / log_file)

        if settings.log_rotation_when == "size":
            handler = CompressedRotatingFileHandler(
                filename=file_path,
                maxBytes=settings.log_file_max_size_mb * 1024 * 1024,
                backupCount=settings.log_file_backup_count,
                compress_logs=settings.log_compression,
                encoding="utf-8",
            )
        else:
            handler = CompressedTimedRotatingFileHandler(
                filename=file_path,
                when=settings.log_rotation_when,
                interval=settings.log_rotation_interval,
                backupCount=settings.log_file_backup_count,
                compress_logs=settings.log_compression,
                encoding="utf-8",
            )

        handler.setLevel(level)
        handler.addFilter(ComponentFilter())
        handler.addFilter(SecurityFilter())
        handler.setFormatter(self._create_formatter(include_component=True))
        return handler

    def _create_console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
        handler.addFilter(ComponentFilter())
        handler.addFilter(SecurityFilter())
        handler.setFormatter(self._create_formatter(include_component=False))
        return handler

    def _setup_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

        console_handler = self._create_console_handler()
        root_logger.addHandler(console_handler)
        self._handlers["console"] = console_handler

        if settings.enable_file_logging:
            app_handler = self._create_rotating_handler(settings.app_log_file)
            root_logger.addHandler(app_handler)
            self._handlers["app"] = app_handler

            error_handler = self._create_rotating_handler(settings.error_log_file, logging.ERROR)
            root_logger.addHandler(error_handler)
            self._handlers["error"] = error_handler

    def _setup_component_loggers(self):
        if not settings.enable_file_logging:
            return

        component_files = {
            "security": settings.security_log_file,
            "ai": settings.ai_log_file,
            "billing": settings.billing_log_file,
            "database": settings.database_log_file,
            "access": settings.access_log_file,
        }

        for component, logger_names in COMPONENT_LOGGERS.items():
            level = logging.INFO
            if component == "database" and not settings.enable_sql_logging:
                level = logging.WARNING

            handler = self._create_rotating_handler(component_files[component], level)
            self._handlers[component] = handler

            for logger_name in logger_names:
                logger = logging.getLogger(logger_name)
                logger.addHandler(handler)
                if logger_name in ISOLATED_LOGGERS:
                    # Still echo to the console, but keep them out of app.log
                    logger.addHandler(self._handlers["console"])
                    logger.propagate = False

    def _configure_structlog(self):
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> StructuredLogger:
        if name not in self._loggers:
            self._loggers[name] = StructuredLogger(name, logging.getLogger(name))
        return self._loggers[name]

    def shutdown(self):
        """Close every handler this manager created."""
        root_logger = logging.getLogger()
        for handler in self._handlers.values():
            for logger_names in COMPONENT_LOGGERS.values():
                for logger_name in logger_names:
                    logging.getLogger(logger_name).removeHandler(handler)
            root_logger.removeHandler(handler)
            handler.close()

        self._handlers.clear()
        self._loggers.clear()
        self._initialized = False


_log_manager: Optional[CentralizedLogManager] = None


def setup_logging() -> CentralizedLogManager:
    """Setup the centralized logging system (idempotent)."""
    global _log_manager
    if _log_manager is None:
        _log_manager = CentralizedLogManager()
    return _log_manager


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return setup_logging().get_logger(name)


def shutdown_logging():
    """Shutdown logging system gracefully."""
    global _log_manager
    if _log_manager is not None:
        _log_manager.shutdown()
        _log_manager = None


# Pre-configured logger instances for common components
app_logger = get_logger("app")
security_logger = get_logger("security")
ai_logger = get_logger("ai")
billing_logger = get_logger("billing")
database_logger = get_logger("database")
access_logger = get_logger("access")
