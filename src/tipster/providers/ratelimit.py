from __future__ import annotations
import logging
import time
from collections import deque
from typing import Callable

import httpx

log = logging.getLogger(__name__)

# Network errors worth retrying (DNS, connect, reset, timeout)
TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
)

_DEFAULT_BACKOFF = (1.0, 3.0, 8.0)


class RateLimiter:
    """Sliding-window limiter for per-minute provider caps."""

    def __init__(self, max_calls: int, period_seconds: int,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_calls = max_calls
        self.period = period_seconds
        self.sleep = sleep
        self.calls: deque[float] = deque()

    def wait(self):
        now = time.monotonic()
        while self.calls and now - self.calls[0] > self.period:
            self.calls.popleft()
        if len(self.calls) >= self.max_calls:
            self.sleep(max(0.0, self.period - (now - self.calls[0]) + 0.01))
        self.calls.append(time.monotonic())


def retry_request(
    fn,
    *,
    max_retries: int = 3,
    backoff: tuple[float, ...] = _DEFAULT_BACKOFF,
    label: str = "HTTP",
    sleep: Callable[[float], None] = time.sleep,
):
    """Call *fn*, retrying on transient network errors.

    Args:
        fn: callable that performs the HTTP request
        max_retries: total attempts (including first)
        backoff: sleep durations between retries
        label: provider name for log messages
        sleep: injectable for tests

    Returns:
        Whatever *fn* returns on success.

    Raises:
        The last transient exception once all attempts are used; any other
        exception from *fn* immediately.
    """
    last_exc: Exception | None = None
    for attempt in range(max_retries):
        try:
            return fn()
        except TRANSIENT_ERRORS as exc:
            last_exc = exc
            if attempt + 1 >= max_retries:
                break
            wait = backoff[min(attempt, len(backoff) - 1)]
            log.warning("%s transient error (attempt %d/%d): %s, retrying in %.1fs",
                        label, attempt + 1, max_retries, exc, wait)
            sleep(wait)
    raise last_exc  # type: ignore[misc]
