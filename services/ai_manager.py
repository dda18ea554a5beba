"""
Shared plumbing for calls to AI providers: retries with backoff and error mapping.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import status

from core.exceptions import AIServiceException

logger = structlog.get_logger("ai")


class AIRetryConfig:
    """Configuration for AI service retry logic."""

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        timeout_seconds: float = 120.0,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.timeout_seconds = timeout_seconds


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    code = getattr(exc, "code", None)
    if code:
        parts.append(str(code))
    body = getattr(exc, "body", None)
    if body:
        parts.append(str(body))
    return " ".join(parts).lower()


def is_quota_error(exc: BaseException) -> bool:
    return "insufficient_quota" in _error_text(exc)


def is_rate_limit_error(exc: BaseException) -> bool:
    if getattr(exc, "status_code", None) == 429 and not is_quota_error(exc):
        return True
    text = _error_text(exc)
    return "rate limit" in text or "rate_limit" in text


def is_retryable(exc: BaseException) -> bool:
    """Timeouts, rate limits and 5xx responses are worth another attempt."""
    if isinstance(exc, AIServiceException) or is_quota_error(exc):
        return False
    if isinstance(exc, asyncio.TimeoutError) or is_rate_limit_error(exc):
        return True
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        return status_code >= 500
    # Connection-level failures carry no status
    return True


def map_provider_error(exc: BaseException, provider: str, operation: str) -> AIServiceException:
    """Translate a provider SDK error into an API error with a readable message."""
    if isinstance(exc, AIServiceException):
        return exc

    if is_quota_error(exc):
        return AIServiceException(
            detail="API quota exceeded. Please check your AI provider account billing.",
            provider=provider,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_type="QUOTA_EXCEEDED",
        )

    if is_rate_limit_error(exc):
        return AIServiceException(
            detail="API rate limit exceeded. Please try again in a moment.",
            provider=provider,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type="RATE_LIMIT",
        )

    if isinstance(exc, asyncio.TimeoutError):
        return AIServiceException(
            detail=f"{operation} timed out. Please try again.",
            provider=provider,
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_type="TIMEOUT",
        )

    return AIServiceException(
        detail=f"{operation} failed: {exc}",
        provider=provider,
        error_type="UNKNOWN",
    )


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    retry_config: AIRetryConfig,
    provider: str,
    operation: str,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Any:
    """
    Await ``func()`` with a timeout, retrying retryable failures with
    exponential backoff. The final failure is raised as AIServiceException.
    """
    sleep = sleep or asyncio.sleep
    last_exception: Optional[BaseException] = None

    for attempt in range(retry_config.max_retries + 1):
        try:
            return await asyncio.wait_for(func(), timeout=retry_config.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exception = e
            logger.warning(
                "AI request failed",
                provider=provider,
                operation=operation,
                attempt=attempt + 1,
                error=str(e) or type(e).__name__,
            )
            if not is_retryable(e):
                break

        if attempt < retry_config.max_retries:
            delay = min(
                retry_config.base_delay * (retry_config.backoff_multiplier ** attempt),
                retry_config.max_delay,
            )
            logger.info("Retrying AI request", provider=provider, delay_seconds=delay, attempt=attempt + 1)
            await sleep(delay)

    logger.error("AI request gave up", provider=provider, operation=operation, error=str(last_exception))
    raise map_provider_error(last_exception, provider, operation)
