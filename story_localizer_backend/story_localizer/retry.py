import asyncio, logging, random
from typing import Awaitable, Callable, Optional, TypeVar
import httpx
import openai
from pydantic import BaseModel
from .errors import (
    LengthMismatchError,
    MaxRetriesExceededError,
    ProviderPermanentError,
    ProviderTransientError,
    StorageError,
    StoryLocalizerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = {408, 409, 425, 429}


class RetryPolicy(BaseModel):
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.25
    timeout: Optional[float] = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (ProviderPermanentError,)):
        return False
    if isinstance(exc, (ProviderTransientError, StorageError, LengthMismatchError)):
        return True
    if isinstance(exc, StoryLocalizerError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code in RETRYABLE_STATUS
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError,
                        openai.RateLimitError, openai.InternalServerError)):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code >= 500 or exc.status_code in RETRYABLE_STATUS
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return False
    # Unknown failures from a provider call are most often transient
    return True


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> T:
    """Run ``fn`` up to ``policy.max_attempts`` times.

    Each attempt is bounded by ``policy.timeout``; a timeout counts as a
    retryable failure. Non-retryable errors propagate on the first attempt.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout:
                return await asyncio.wait_for(fn(), timeout=policy.timeout)
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_retryable(e):
                logger.error(f"{label} failed with non-retryable error: {e}")
                raise
            last_error = e
            if attempt >= policy.max_attempts:
                break
            wait_time = policy.delay_for(attempt)
            logger.warning(
                f"{label} attempt {attempt}/{policy.max_attempts} failed: {e!r}. Retrying in {wait_time:.2f}s"
            )
            if on_retry is not None:
                await on_retry(attempt, e)
            await asyncio.sleep(wait_time)
    logger.error(f"{label} exhausted {policy.max_attempts} attempts")
    raise MaxRetriesExceededError(label, policy.max_attempts, last_error)
