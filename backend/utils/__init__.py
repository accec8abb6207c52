from .logger import setup_logging, get_logger
from .retry import (
    RetryConfig,
    retry_fetch,
    decode_payload,
    FetchError,
    TransientFetchError,
    PermanentFetchError,
    PayloadDecodeError,
)
from .concurrency import bounded_fetch, fetch_all

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",

    # Retry
    "RetryConfig",
    "retry_fetch",
    "decode_payload",
    "FetchError",
    "TransientFetchError",
    "PermanentFetchError",
    "PayloadDecodeError",

    # Concurrency
    "bounded_fetch",
    "fetch_all",
]
