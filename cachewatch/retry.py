"""
cachewatch - Resilient call wrapper
Exponential backoff, error classification and the per-call retry loop
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import openai

from .core import CallError, CallOutcome, ErrorKind, UsageSample

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


def calculate_backoff_delay(attempt: int, initial_delay: float) -> float:
    """Delay before retrying after the given 0-indexed attempt"""
    return initial_delay * (2 ** attempt)


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 2.0,
    should_retry: Optional[Callable[[Exception, int], bool]] = None,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run operation(attempt) at most max_retries times with exponential backoff.

    The last error is re-raised once attempts run out or should_retry says no.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(max_retries):
        try:
            return await operation(attempt)
        except Exception as e:
            can_retry = attempt < max_retries - 1
            if not can_retry or (should_retry is not None and not should_retry(e, attempt)):
                raise
            delay = calculate_backoff_delay(attempt, initial_delay)
            if on_retry is not None:
                on_retry(e, attempt, delay)
            await sleep(delay)

    raise AssertionError("unreachable")


def _kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.API_ERROR


def classify_exception(error: Exception, request_id: str = "") -> CallError:
    """Map a transport or SDK exception onto the error taxonomy"""
    prefix = f"[{request_id}] " if request_id else ""

    if isinstance(error, CallError):
        return error
    # APITimeoutError derives from APIConnectionError, so it goes first
    if isinstance(error, (asyncio.TimeoutError, openai.APITimeoutError, httpx.TimeoutException)):
        return CallError(f"{prefix}Request timeout", ErrorKind.TIMEOUT)
    if isinstance(error, openai.APIStatusError):
        kind = _kind_for_status(error.status_code)
        return CallError(f"{prefix}HTTP {error.status_code}", kind, error.status_code)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return CallError(f"{prefix}HTTP {status}", _kind_for_status(status), status)
    if isinstance(error, (openai.APIConnectionError, httpx.TransportError)):
        return CallError(f"{prefix}Connection error: {error}", ErrorKind.SERVER_ERROR)
    return CallError(f"{prefix}{type(error).__name__}: {error}", ErrorKind.API_ERROR)


def is_retryable(error: Exception, attempt: int = 0) -> bool:
    return isinstance(error, CallError) and error.retryable


class ResilientCaller:
    """Send one chat request with a hard timeout, classified errors and backoff.

    Never raises for API failures: the final failure comes back as a
    CallOutcome with zeroed usage, the error text and its kind.
    """

    def __init__(self, client, max_retries: int = 3, initial_delay: float = 2.0,
                 telemetry=None, sleep: SleepFn = asyncio.sleep):
        self.client = client
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.telemetry = telemetry
        self.sleep = sleep

    async def call(self, request, timeout: float) -> CallOutcome:
        payload = request.build_payload()
        request_id = request.request_id

        async def attempt_call(attempt: int) -> UsageSample:
            try:
                return await asyncio.wait_for(self.client.chat_completion(request, timeout), timeout)
            except asyncio.TimeoutError as e:
                raise CallError(f"[{request_id}] Request timeout after {timeout:g}s", ErrorKind.TIMEOUT) from e

        def log_retry(error: Exception, attempt: int, delay: float):
            logger.warning(
                "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                request.model_id, attempt + 1, self.max_retries, error, delay,
            )

        try:
            usage = await with_retry(
                attempt_call,
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
                should_retry=is_retryable,
                on_retry=log_retry,
                sleep=self.sleep,
            )
        except Exception as e:
            error = classify_exception(e, request_id)
            message = str(error)
            if error.retryable and self.max_retries > 1:
                message += " (after retries)"
            if self.telemetry is not None:
                self.telemetry.record_error(error.kind, request.model_id)
            logger.warning("%s: request failed: %s", request.model_id, message)
            return CallOutcome(payload=payload, usage=UsageSample(), error=message, error_kind=error.kind)

        return CallOutcome(payload=payload, usage=usage)
