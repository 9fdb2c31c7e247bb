import asyncio
import functools
from typing import Any, Callable, Dict, Optional

from dxtrade.constants import MAX_RETRY_ATTEMPTS, RETRY_BACKOFF_SECONDS
from dxtrade.data.transport import HttpResponse, is_rate_limit_error
from dxtrade.exceptions import RateLimitError
from dxtrade.monitoring.logger import get_logger

logger = get_logger(__name__)


def retry_on_transient_errors(
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    backoff_unit: float = RETRY_BACKOFF_SECONDS,
):
    """
    Decorator to retry async functions with linear backoff.

    A rate-limit signal (HTTP 429) is never retried: it is converted into
    RateLimitError and raised at once. Any other failure is retried until
    max_attempts is exhausted, then the last error propagates unchanged.

    Args:
        max_attempts: Total number of attempts (>= 1)
        backoff_unit: Wait before attempt N+1 is N * backoff_unit seconds
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max(1, max_attempts)

            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except RateLimitError:
                    raise
                except Exception as e:
                    if is_rate_limit_error(e):
                        logger.warning("Rate limited, not retrying", call=func.__name__, attempt=attempt)
                        raise RateLimitError(f"Rate limited (HTTP 429): {e}") from e

                    logger.warning(
                        f"Attempt {attempt}/{attempts} failed for {func.__name__}",
                        error=str(e),
                    )
                    if attempt >= attempts:
                        raise

                    await asyncio.sleep(backoff_unit * attempt)

        return wrapper
    return decorator


async def retry_request(
    transport,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    json_body: Any = None,
    retries: int = MAX_RETRY_ATTEMPTS,
) -> HttpResponse:
    """Issue a REST request through the transport with the retry policy above."""

    @retry_on_transient_errors(max_attempts=retries)
    async def send() -> HttpResponse:
        return await transport.request(method, url, headers=headers, json_body=json_body)

    return await send()
