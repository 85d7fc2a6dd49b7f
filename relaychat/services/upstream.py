"""
UPSTREAM CLIENT
===============

The relay's side of the conversation: authenticated calls to the
OpenAI-compatible inference API. The bearer token is added here and never
leaves the server.

  chat(messages, model)               -> upstream JSON (POST /v1/chat/completions, stream off)
  vision(messages, model)             -> upstream JSON (POST UPSTREAM_VISION_PATH)
  generate_image(prompt, model, size) -> NormalizedImageResult (POST /v1/images/generations)
  list_models()                       -> upstream JSON (GET /v1/models)

Every method raises ConfigurationError when no API key is configured, except
generate_image in mock mode, which answers with the local placeholder image.

The client-side session already retries every relay call, so by default the
relay makes a single upstream attempt (RELAY_MAX_RETRIES=0).
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import (
    API_BASE_URL,
    API_KEY,
    RELAY_MAX_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    UPSTREAM_CHAT_PATH,
    UPSTREAM_IMAGE_PATH,
    UPSTREAM_MODELS_PATH,
    UPSTREAM_VISION_PATH,
    USE_MOCK_DATA,
)
from relaychat.errors import ConfigurationError
from relaychat.models import NormalizedImageResult
from relaychat.services.fetch_client import RetryingFetchClient, Sleep
from relaychat.services.normalizer import extract_image
from relaychat.utils.media import placeholder_data_url
from relaychat.utils.retry import RetryPolicy, retry_on_server_error

logger = logging.getLogger("relaychat")


class UpstreamClient:

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        api_key: str = API_KEY,
        use_mock_data: bool = USE_MOCK_DATA,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        max_retries: int = RELAY_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.api_key = api_key
        self.use_mock_data = use_mock_data
        self.max_retries = max_retries
        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        client_options = {"base_url": base_url, "headers": headers, "timeout": timeout, "transport": transport}
        if sleep is not None:
            client_options["sleep"] = sleep
        self._client = RetryingFetchClient(**client_options)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _require_key(self) -> None:
        if not self.api_key:
            logger.error("Upstream API key is not configured (set REDBUILDER_API_KEY or OPENAI_API_KEY)")
            raise ConfigurationError("API key not configured")

    def _policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, should_retry_response=retry_on_server_error)

    async def chat(self, messages: List[Dict[str, Any]], model: str) -> Any:
        self._require_key()
        payload = {"model": model, "messages": messages, "stream": False}
        return await self._client.execute_json("POST", UPSTREAM_CHAT_PATH, self._policy(), json=payload)

    async def vision(self, messages: List[Dict[str, Any]], model: str) -> Any:
        self._require_key()
        payload = {"model": model, "messages": messages, "max_tokens": 1000}
        return await self._client.execute_json("POST", UPSTREAM_VISION_PATH, self._policy(), json=payload)

    async def generate_image(self, prompt: str, model: Optional[str] = None, size: str = "512x512") -> NormalizedImageResult:
        if not self.api_key and self.use_mock_data:
            logger.info("No API key available, answering with placeholder image")
            return NormalizedImageResult(url=placeholder_data_url(prompt), revised_prompt=prompt, substituted_mock=True)
        self._require_key()
        payload = {"prompt": prompt, "n": 1, "size": size, "response_format": "url"}
        if model:
            payload["model"] = model
        raw = await self._client.execute_json("POST", UPSTREAM_IMAGE_PATH, self._policy(), json=payload)
        return extract_image(raw, prompt)

    async def list_models(self) -> Any:
        self._require_key()
        return await self._client.execute_json("GET", UPSTREAM_MODELS_PATH, self._policy())
