"""
RETRYING FETCH CLIENT
=====================

Async HTTP executor with exponential backoff, built on httpx.AsyncClient. Used
by the relay to reach the upstream API and by the client-side session to reach
the relay, so both hops share one retry behaviour.

CONTRACT:
  execute(method, url, policy, **kwargs) -> httpx.Response
    - Up to policy.max_retries + 1 attempts, one at a time; each sleep finishes
      before the next attempt starts.
    - A response the policy does not want retried is returned immediately.
    - When retries run out on a bad response, that response is RETURNED so the
      caller can read its status and error body.
    - When retries run out on a transport failure (or the failure is not
      retryable), it is RAISED as relaychat.errors.TransportError.
  execute_json(method, url, policy, **kwargs) -> parsed JSON
    - Same, then raises ApiError unless the final status is 2xx.

Timeouts come from httpx (REQUEST_TIMEOUT_SECONDS by default) and surface as
httpx.TimeoutException, which is a transport error and therefore retryable.
Cancelling the awaiting task raises CancelledError, which is never retried.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config import REQUEST_TIMEOUT_SECONDS
from relaychat.errors import ApiError, MalformedResponseError, TransportError
from relaychat.utils.retry import RetryPolicy, backoff_delays

logger = logging.getLogger("relaychat")

Sleep = Callable[[float], Awaitable[Any]]


def response_body(response: httpx.Response) -> Any:
    """Parsed JSON body if there is one, else the raw text (or None when empty)."""
    try:
        return response.json()
    except ValueError:
        return response.text or None


class RetryingFetchClient:
    """
    Wraps one httpx.AsyncClient. Pass `transport` to fake the network in tests
    and `sleep` to skip the real backoff waits.
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._sleep = sleep

    async def __aenter__(self) -> "RetryingFetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(
        self,
        method: str,
        url: str,
        policy: Optional[RetryPolicy] = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """Issue the request, retrying per policy. See the module docstring for the contract."""
        policy = policy or RetryPolicy()
        delays = backoff_delays(policy)

        for attempt in range(policy.max_attempts):
            is_last = attempt == policy.max_retries
            try:
                response = await self._client.request(method, url, **request_kwargs)
            except Exception as exc:
                if is_last or not policy.should_retry_on_error(exc):
                    if isinstance(exc, httpx.TransportError):
                        raise TransportError(f"Network error calling {url}: {exc}") from exc
                    raise
                delay = next(delays)
                logger.warning(
                    "Attempt %s/%s to %s %s failed (%s). Retrying in %.0fms",
                    attempt + 1,
                    policy.max_attempts,
                    method,
                    url,
                    exc,
                    delay,
                )
                policy.on_retry(attempt + 1, delay, exc)
                await self._sleep(delay / 1000)
                continue

            if not policy.should_retry_response(response):
                return response
            if is_last:
                logger.warning(
                    "Giving up on %s %s after %s attempts (status %s)",
                    method,
                    url,
                    policy.max_attempts,
                    response.status_code,
                )
                return response

            delay = next(delays)
            logger.warning(
                "Attempt %s/%s to %s %s returned %s. Retrying in %.0fms",
                attempt + 1,
                policy.max_attempts,
                method,
                url,
                response.status_code,
                delay,
            )
            policy.on_retry(attempt + 1, delay, None)
            await self._sleep(delay / 1000)

        # range() always ends in one of the returns/raises above.
        raise AssertionError("retry loop exited without a result")

    async def execute_json(
        self,
        method: str,
        url: str,
        policy: Optional[RetryPolicy] = None,
        **request_kwargs: Any,
    ) -> Any:
        """execute(), then parse the JSON body; non-2xx raises ApiError with the parsed body attached."""
        response = await self.execute(method, url, policy, **request_kwargs)
        if not response.is_success:
            raise ApiError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response_body(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Response from {url} is not valid JSON") from exc
