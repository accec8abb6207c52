import asyncio
import json
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import ValidationError

from utils.logger import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class FetchError(Exception):
    """Base class for upstream fetch failures."""


class TransientFetchError(FetchError):
    """A failure worth retrying (transport error, non-success status)."""


class PermanentFetchError(FetchError):
    """A failure that will not improve by retrying.

    ``reason`` is one of ``"decode"``, ``"not_found"`` or ``"exhausted"``.
    """

    def __init__(self, message: str, *, reason: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.reason = reason
        self.cause = cause


class PayloadDecodeError(ValueError):
    """Upstream answered successfully but the payload has the wrong shape."""


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 6,
        base_delay: float = 0.5,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[BaseException], ...] = (
            httpx.RequestError,
            ConnectionError,
            asyncio.TimeoutError,
            TransientFetchError,
        ),
        permanent_status_codes: Tuple[int, ...] = (),
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions
        self.permanent_status_codes = permanent_status_codes

    @classmethod
    def from_settings(cls, **overrides) -> "RetryConfig":
        from config import settings

        params = {
            "max_attempts": settings.MAX_RETRY_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY,
            "max_delay": settings.RETRY_MAX_DELAY,
        }
        params.update(overrides)
        return cls(**params)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff and optional jitter"""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_decode_error(error: BaseException) -> bool:
    # A 2xx body that is not UTF-8 fails in response.json() before JSON parsing
    return isinstance(
        error, (PayloadDecodeError, ValidationError, json.JSONDecodeError, UnicodeDecodeError)
    )


def decode_payload(decoder: Callable[[object], T], data: object, *, what: str) -> T:
    """Run a payload decoder over a successful response body.

    Shape errors a decoder did not anticipate (a scalar where a list was
    expected, a missing key) are reported as ``PayloadDecodeError`` so the
    retry policy treats them as permanent.
    """
    try:
        return decoder(data)
    except PayloadDecodeError:
        raise
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise PayloadDecodeError(f"malformed {what}: {e}") from e


def is_retryable_error(error: BaseException, config: RetryConfig) -> bool:
    """Check if an error should be retried"""
    if is_decode_error(error):
        return False

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code not in config.permanent_status_codes

    return isinstance(error, config.retryable_exceptions)


async def retry_fetch(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    description: str = "fetch",
) -> T:
    """Run ``operation`` under the backoff policy.

    Decode failures and configured permanent statuses raise
    ``PermanentFetchError`` immediately. Transient failures are retried until
    the attempt budget runs out, which also raises ``PermanentFetchError``.
    Anything else propagates unchanged.
    """
    config = config or RetryConfig()
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_attempts):
        try:
            return await operation()
        except Exception as e:
            if is_decode_error(e):
                logger.warning(
                    "Payload failed to decode",
                    target=description,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise PermanentFetchError(
                    f"{description}: undecodable payload", reason="decode", cause=e
                ) from e

            if isinstance(e, httpx.HTTPStatusError) and not is_retryable_error(e, config):
                status = e.response.status_code
                logger.debug("Permanent HTTP status", target=description, status=status)
                raise PermanentFetchError(
                    f"{description}: HTTP {status}",
                    reason="not_found" if status == 404 else "status",
                    cause=e,
                ) from e

            if not is_retryable_error(e, config):
                raise

            last_error = e
            if attempt < config.max_attempts - 1:
                delay = calculate_delay(attempt, config)

                # Honor upstream rate-limit hints
                if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            delay = min(max(delay, float(retry_after)), config.max_delay)
                        except ValueError:
                            pass

                logger.debug(
                    "Retrying after error",
                    target=description,
                    attempt=attempt + 1,
                    max_attempts=config.max_attempts,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await asyncio.sleep(delay)

    logger.warning(
        "All retry attempts exhausted",
        target=description,
        attempts=config.max_attempts,
        error=str(last_error),
    )
    raise PermanentFetchError(
        f"{description}: retries exhausted", reason="exhausted", cause=last_error
    ) from last_error

