import httpx
import pytest

from relaychat.services.fetch_client import RetryingFetchClient


class SleepRecorder:
    """Stands in for asyncio.sleep: records the requested waits and returns at once."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(sleeper):
    """Build a RetryingFetchClient whose network is the given MockTransport handler."""

    def build(handler, base_url="http://relay.test"):
        return RetryingFetchClient(base_url=base_url, transport=httpx.MockTransport(handler), sleep=sleeper)

    return build
