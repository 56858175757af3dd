"""
Backoff and transient-error detection for courier API calls.

Only idempotent reads (tracking, nomenclature) go through the retry loop.
Shipment creation is never retried: a duplicate AWB is billed by the courier.
"""
import asyncio
import random
from typing import Tuple, Type

import aiohttp

from app.exceptions import CourierAPIError


TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)

TRANSIENT_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: bool = True
) -> float:
    """
    Seconds to wait before the next attempt.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base_delay: Delay after the first failure
        max_delay: Upper bound before jitter
        jitter: Add up to 25% on top so parallel syncs do not retry in lockstep

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(error: Exception) -> bool:
    """
    True for network failures, timeouts, rate limiting and courier 5xx.

    A CourierAPIError without a transient status (validation rejections,
    403, unknown AWB) is final.
    """
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True

    if isinstance(error, aiohttp.ClientResponseError):
        return error.status in TRANSIENT_STATUS_CODES

    if isinstance(error, CourierAPIError):
        return error.status in TRANSIENT_STATUS_CODES

    message = str(error).lower()
    return "rate limit" in message or "too many requests" in message
