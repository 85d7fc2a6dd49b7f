"""
RESPONSE NORMALIZER
===================

The upstream does not keep to one JSON shape. This module turns whatever came
back into one canonical result, trying each known shape in a fixed priority
order and taking the first that fits.

CHAT (normalize_chat) - never raises:
  id      : raw.id, else "assistant-<epoch ms>"
  content : raw.content, else raw.choices[0].message.content, else FALLBACK_CHAT_CONTENT

IMAGE (normalize_image) - raises NoImageUrlError when no URL can be found:
  url     : raw.data[0].url, else raw.url, else raw.imageUrl
  then    : mock URLs become the local SVG placeholder (MockUrlPolicy),
            URLs on a known-bad CDN are moved under a good base URL (CdnRewriteRule),
            keeping the original in fallback_url.
  revised : raw.data[0].revised_prompt, else the prompt we sent.
"""

import logging
import time
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

from config import CDN_REWRITES, GENUINE_URL_MARKERS, MOCK_URL_MARKERS
from relaychat.errors import NoImageUrlError
from relaychat.models import NormalizedChatResult, NormalizedImageResult
from relaychat.utils.media import placeholder_data_url

logger = logging.getLogger("relaychat")

FALLBACK_CHAT_CONTENT = "Sorry, I encountered an error processing your request."


# ==============================================================================
# URL POLICIES
# ==============================================================================

class MockUrlPolicy(BaseModel):
    """
    Decides whether an image URL is a mock/demo value.

    A URL is mock when it contains any of `markers` and none of
    `genuine_markers`.
    """

    model_config = ConfigDict(frozen=True)

    markers: Tuple[str, ...] = ()
    genuine_markers: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls) -> "MockUrlPolicy":
        return cls(markers=tuple(MOCK_URL_MARKERS), genuine_markers=tuple(GENUINE_URL_MARKERS))

    def is_mock(self, url: str) -> bool:
        if not any(marker in url for marker in self.markers):
            return False
        return not any(marker in url for marker in self.genuine_markers)

    def __call__(self, url: str) -> bool:
        return self.is_mock(url)


class CdnRewriteRule(BaseModel):
    """
    Moves images served from `source_host` under `target_base`, keeping only
    the file name: with target_base "https://multi.redbuilder.io/generations",
    "https://api.redbuilder.io/files/abc.png" becomes
    "https://multi.redbuilder.io/generations/abc.png". A target_base without a
    scheme is treated as a host and keeps the original URL's scheme.
    """

    model_config = ConfigDict(frozen=True)

    source_host: str
    target_base: str

    def matches(self, url: str) -> bool:
        return (urlsplit(url).hostname or "") == self.source_host

    def rewrite(self, url: str) -> str:
        parts = urlsplit(url)
        filename = parts.path.rstrip("/").rsplit("/", 1)[-1]
        base = self.target_base.rstrip("/")
        if "://" not in base:
            base = f"{parts.scheme or 'https'}://{base}"
        return f"{base}/{filename}"


def rewrite_rules_from_config() -> Tuple[CdnRewriteRule, ...]:
    return tuple(CdnRewriteRule(source_host=src, target_base=dst) for src, dst in CDN_REWRITES)


# ==============================================================================
# FIELD ACCESS
# ==============================================================================

def _first_item(raw: Any, key: str) -> Optional[dict]:
    """raw[key][0] when raw[key] is a non-empty list whose first item is a dict."""
    if not isinstance(raw, dict):
        return None
    items = raw.get(key)
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


# ==============================================================================
# CHAT
# ==============================================================================

def normalize_chat(raw: Any, now_ms: Optional[int] = None) -> NormalizedChatResult:
    """Extract {id, role, content} from a simplified or OpenAI-style chat body. Never raises."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    body = raw if isinstance(raw, dict) else {}

    raw_id = body.get("id")
    message_id = str(raw_id) if raw_id not in (None, "") else f"assistant-{now_ms}"

    content = _text(body.get("content"))
    if content is None:
        choice = _first_item(body, "choices")
        message = choice.get("message") if choice else None
        if isinstance(message, dict):
            content = _text(message.get("content"))
    if content is None:
        logger.warning("Chat response had no usable content; keys=%s", list(body.keys()))
        content = FALLBACK_CHAT_CONTENT

    return NormalizedChatResult(id=message_id, content=content)


# ==============================================================================
# IMAGE
# ==============================================================================

def extract_image_url(raw: Any) -> str:
    """First URL found in data[0].url, url, imageUrl (in that order)."""
    first = _first_item(raw, "data")
    candidates = [first.get("url") if first else None]
    if isinstance(raw, dict):
        candidates += [raw.get("url"), raw.get("imageUrl")]
    for candidate in candidates:
        url = _text(candidate)
        if url:
            return url
    raise NoImageUrlError()


def extract_image(raw: Any, prompt: str) -> NormalizedImageResult:
    """URL and revised prompt exactly as the upstream sent them, no corrections applied."""
    url = extract_image_url(raw)
    first = _first_item(raw, "data")
    revised_prompt = _text(first.get("revised_prompt")) if first else None
    return NormalizedImageResult(url=url, revised_prompt=revised_prompt or prompt)


def normalize_image(
    raw: Any,
    prompt: str,
    is_mock: Optional[Callable[[str], bool]] = None,
    rewrites: Optional[Iterable[CdnRewriteRule]] = None,
) -> NormalizedImageResult:
    """
    Extract {url, revised_prompt} and apply the mock and CDN corrections.

    is_mock defaults to MockUrlPolicy.from_config(); rewrites default to the
    configured CDN_REWRITES. Pass your own to override either.
    """
    extracted = extract_image(raw, prompt)
    url = extracted.url
    revised_prompt = extracted.revised_prompt

    if is_mock is None:
        is_mock = MockUrlPolicy.from_config()
    if is_mock(url):
        logger.info("Replacing mock image URL with local placeholder: %s", url)
        return NormalizedImageResult(
            url=placeholder_data_url(prompt),
            revised_prompt=revised_prompt,
            substituted_mock=True,
        )

    rules: Sequence[CdnRewriteRule] = tuple(rewrites) if rewrites is not None else rewrite_rules_from_config()
    for rule in rules:
        if rule.matches(url):
            rewritten = rule.rewrite(url)
            logger.info("Rewrote image URL %s -> %s", url, rewritten)
            return NormalizedImageResult(url=rewritten, revised_prompt=revised_prompt, fallback_url=url)

    return NormalizedImageResult(url=url, revised_prompt=revised_prompt)
