"""Central retry policy for Graph API calls."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from app.config import get_settings
from app.services.fb_errors import (
    FacebookErrorType,
    GraphAPIError,
    TokenRejectedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when an operation keeps failing; carries a dashboard-safe message."""

    def __init__(self, message: str, *, user_message: str, error_type: FacebookErrorType, attempts: int):
        super().__init__(message)
        self.message = message
        self.user_message = user_message
        self.error_type = error_type
        self.attempts = attempts


def backoff_delay(error_type: FacebookErrorType, attempt: int) -> float:
    """Seconds to wait before retry number ``attempt + 1`` (attempt is 0-based)."""
    settings = get_settings()
    if error_type == FacebookErrorType.RATE_LIMIT:
        return min(2 ** attempt + random.uniform(0, 1), settings.retry_rate_limit_max_delay)
    if error_type == FacebookErrorType.TEMPORARY:
        return min(attempt + 1, settings.retry_temporary_max_delay)
    if error_type == FacebookErrorType.NETWORK:
        return min(0.5 * (attempt + 1), settings.retry_network_max_delay)
    return 0.0


async def handle_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    context: str = "",
) -> T:
    """Run ``operation``, retrying rate-limit / temporary / network failures.

    Credential rejections are re-raised untouched on the first occurrence: only
    the token service decides what an expired token means.  Any other failure
    that survives ``max_attempts`` becomes :class:`RetryExhaustedError`, with the
    original exception chained as ``__cause__``.
    """
    attempts = max(1, max_attempts or get_settings().retry_max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except TokenRejectedError:
            raise
        except GraphAPIError as e:
            error_type = e.error_type
            if not e.retryable or attempt == attempts - 1:
                logger.warning(
                    "Facebook call %s failed after %d attempt(s): %r", context or "<op>", attempt + 1, e
                )
                raise RetryExhaustedError(
                    e.message, user_message=e.user_message, error_type=error_type, attempts=attempt + 1
                ) from e
            delay = backoff_delay(error_type, attempt)
            logger.info(
                "Retrying Facebook call %s in %.1fs (attempt %d/%d, %s)",
                context or "<op>", delay, attempt + 1, attempts, error_type.value,
            )
            await sleep(delay)
