import itertools

import httpx
import pytest
from pydantic import ValidationError

from relaychat.utils.retry import (
    RetryPolicy,
    backoff_delays,
    default_should_retry_on_error,
    default_should_retry_response,
    delay_for_retry,
    envelope_error_type,
    retry_on_server_error,
    retry_relay_response,
)


def test_backoff_sequence_doubles_then_caps():
    policy = RetryPolicy(initial_delay_ms=1000, backoff_factor=2, max_delay_ms=8000)
    assert list(itertools.islice(backoff_delays(policy), 6)) == [1000, 2000, 4000, 8000, 8000, 8000]


@pytest.mark.parametrize("initial,factor,cap", [(1000, 2, 8000), (250, 1.5, 2000), (100, 1, 100), (300, 3, 10000)])
def test_closed_form_matches_sequence(initial, factor, cap):
    policy = RetryPolicy(initial_delay_ms=initial, backoff_factor=factor, max_delay_ms=cap)
    delays = list(itertools.islice(backoff_delays(policy), 10))
    for k, delay in enumerate(delays, start=1):
        assert delay == pytest.approx(delay_for_retry(policy, k))
        assert delay == pytest.approx(min(initial * factor ** (k - 1), cap))


def test_delay_for_retry_rejects_zero():
    with pytest.raises(ValueError):
        delay_for_retry(RetryPolicy(), 0)


def test_policy_defaults():
    policy = RetryPolicy()
    assert policy.max_retries == 3
    assert policy.max_attempts == 4
    assert policy.initial_delay_ms == 1000
    assert policy.max_delay_ms == 10000
    assert policy.backoff_factor == 2


@pytest.mark.parametrize(
    "options",
    [
        {"max_retries": -1},
        {"initial_delay_ms": 0},
        {"backoff_factor": 0.5},
        {"initial_delay_ms": 5000, "max_delay_ms": 1000},
    ],
)
def test_policy_rejects_invalid_values(options):
    with pytest.raises(ValidationError):
        RetryPolicy(**options)


def test_policy_is_immutable():
    policy = RetryPolicy()
    with pytest.raises(ValidationError):
        policy.max_retries = 10


def test_response_predicates():
    request = httpx.Request("GET", "http://x.test")
    ok = httpx.Response(200, request=request)
    bad_request = httpx.Response(400, request=request)
    throttled = httpx.Response(429, request=request)
    server_error = httpx.Response(503, request=request)

    assert not default_should_retry_response(ok)
    assert default_should_retry_response(bad_request)
    assert not retry_on_server_error(bad_request)
    assert retry_on_server_error(throttled)
    assert retry_on_server_error(server_error)


def relay_error(status, error_type):
    return httpx.Response(status, json={"error": {"message": "x", "type": error_type}})


@pytest.mark.parametrize(
    "response,retried",
    [
        (relay_error(500, "configuration_error"), False),
        (relay_error(502, "malformed_response_error"), False),
        (relay_error(500, "api_error"), True),
        (relay_error(503, "overloaded_error"), True),
        (httpx.Response(500, text="<html>Internal Server Error</html>"), True),
        (httpx.Response(429), True),
        (relay_error(400, "invalid_request_error"), False),
    ],
)
def test_relay_predicate_skips_permanent_errors(response, retried):
    assert retry_relay_response(response) is retried


def test_envelope_error_type():
    assert envelope_error_type(relay_error(500, "configuration_error")) == "configuration_error"
    assert envelope_error_type(httpx.Response(500, text="busy")) is None
    assert envelope_error_type(httpx.Response(500, json=["not", "an", "envelope"])) is None
    assert envelope_error_type(httpx.Response(500, json={"error": "flat string"})) is None


def test_error_predicate_retries_transport_errors_only():
    request = httpx.Request("GET", "http://x.test")
    assert default_should_retry_on_error(httpx.ConnectError("down", request=request))
    assert default_should_retry_on_error(httpx.ReadTimeout("slow", request=request))
    assert not default_should_retry_on_error(ValueError("bug"))
