"""
RETRY UTILITY
=============

The retry configuration shared by every HTTP call the project makes, plus the
backoff arithmetic. The loop that actually issues requests lives in
relaychat.services.fetch_client; this module only decides how long to wait and
whether a response or an exception deserves another attempt.

Example:
  policy = RetryPolicy(max_retries=3, should_retry_response=retry_on_server_error)
  list(itertools.islice(backoff_delays(policy), 5))  # [1000, 2000, 4000, 8000, 10000]
"""

import logging
from typing import Callable, Iterator, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from config import BACKOFF_FACTOR, INITIAL_DELAY_MS, MAX_DELAY_MS, MAX_RETRIES


logger = logging.getLogger("relaychat")

RetryCallback = Callable[[int, float, Optional[BaseException]], None]


# ==============================================================================
# RETRY PREDICATES
# ==============================================================================

def default_should_retry_response(response: httpx.Response) -> bool:
    """Retry anything that is not 2xx."""
    return not response.is_success


def retry_on_server_error(response: httpx.Response) -> bool:
    """Retry 5xx and 429 only; other 4xx are the caller's fault and will not improve."""
    return response.status_code >= 500 or response.status_code == 429


# Envelope types the relay uses for failures that no retry can fix.
PERMANENT_ERROR_TYPES = frozenset({"configuration_error", "malformed_response_error", "invalid_request_error"})


def envelope_error_type(response: httpx.Response) -> Optional[str]:
    """error.type from a {error: {message, type}} body, or None."""
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and isinstance(error.get("type"), str):
        return error["type"]
    return None


def retry_relay_response(response: httpx.Response) -> bool:
    """retry_on_server_error, minus relay errors whose envelope marks them permanent."""
    if not retry_on_server_error(response):
        return False
    return envelope_error_type(response) not in PERMANENT_ERROR_TYPES


def default_should_retry_on_error(error: BaseException) -> bool:
    """
    Retry transport failures (connect errors, read errors, timeouts).
    Anything else, including a deliberate cancel, is final.
    """
    return isinstance(error, httpx.TransportError)


def _ignore_retry(attempt: int, delay_ms: float, error: Optional[BaseException] = None) -> None:
    return None


# ==============================================================================
# RETRY POLICY
# ==============================================================================

class RetryPolicy(BaseModel):
    """
    Immutable per-call retry configuration.

    max_retries is the number of *extra* attempts: max_retries=3 means at most
    four requests. on_retry(attempt, delay_ms, error) runs before each sleep;
    attempt is 1 for the first retry. error is None when the retry was caused
    by a response rather than an exception.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    initial_delay_ms: float = Field(default=INITIAL_DELAY_MS, gt=0)
    max_delay_ms: float = Field(default=MAX_DELAY_MS, gt=0)
    backoff_factor: float = Field(default=BACKOFF_FACTOR, ge=1)
    should_retry_response: Callable[[httpx.Response], bool] = default_should_retry_response
    should_retry_on_error: Callable[[BaseException], bool] = default_should_retry_on_error
    on_retry: RetryCallback = _ignore_retry

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "RetryPolicy":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


# ==============================================================================
# BACKOFF ARITHMETIC
# ==============================================================================

def backoff_delays(policy: RetryPolicy) -> Iterator[float]:
    """Yield the wait (ms) before retry 1, 2, 3, ... forever."""
    delay = policy.initial_delay_ms
    while True:
        yield delay
        delay = min(delay * policy.backoff_factor, policy.max_delay_ms)


def delay_for_retry(policy: RetryPolicy, retry: int) -> float:
    """Closed form of backoff_delays: the wait (ms) before retry number `retry` (1-based)."""
    if retry < 1:
        raise ValueError("retry numbers start at 1")
    return min(policy.initial_delay_ms * policy.backoff_factor ** (retry - 1), policy.max_delay_ms)
