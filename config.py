"""
CONFIGURATION MODULE
====================

PURPOSE:
  Central place for all relay chat settings: upstream URL and API key, retry
  defaults, default models, the mock/CDN URL rules and the system prompt.
  Both halves of the project read from here: the FastAPI relay (relaychat.main)
  and the client-side session (relaychat.services.session).

WHAT THIS FILE DOES:
  - Loads environment variables from .env (so API keys stay out of code).
  - Exposes API_BASE_URL and API_KEY for the upstream OpenAI-compatible service.
  - Decides whether the relay may answer with mock placeholder images.
  - Defines retry/backoff defaults and the per-request timeout.
  - Holds the default model catalog used when /v1/models is unreachable.
  - Holds the URL rules the response normalizer applies to image URLs.

USAGE:
  Import what you need: `from config import API_KEY, MAX_RETRIES, SYSTEM_PROMPT`
"""

import os
import logging
from typing import Dict, List, Tuple
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# ENVIRONMENT
# -----------------------------------------------------------------------------
# Load environment variables from .env file (if it exists).
load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    """Read a comma-separated env var into a list of non-empty, stripped items."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_rewrites(name: str, default: str) -> List[Tuple[str, str]]:
    """
    Read CDN rewrite pairs in the form "bad.host=>https://good.host/path,other=>alt".
    Entries without "=>" are skipped with a warning.
    """
    pairs = []
    for item in _env_list(name, default):
        if "=>" not in item:
            logger.warning("Ignoring malformed %s entry: %s", name, item)
            continue
        source, target = item.split("=>", 1)
        pairs.append((source.strip(), target.strip()))
    return pairs


# ============================================================================
# UPSTREAM API CONFIGURATION
# ============================================================================
# The upstream is an OpenAI-compatible inference service (chat, vision, images,
# model list). The relay adds the bearer token; the browser never sees it.
# REDBUILDER_API_KEY wins over OPENAI_API_KEY when both are set.

API_BASE_URL = os.getenv("API_BASE_URL", "https://api.redbuilder.io").rstrip("/")
API_KEY = (os.getenv("REDBUILDER_API_KEY", "").strip() or os.getenv("OPENAI_API_KEY", "").strip())

UPSTREAM_CHAT_PATH = "/v1/chat/completions"
UPSTREAM_VISION_PATH = os.getenv("UPSTREAM_VISION_PATH", "/v1/chat/completions/vision")
UPSTREAM_IMAGE_PATH = "/v1/images/generations"
UPSTREAM_MODELS_PATH = "/v1/models"

# development | production. Mock data is only allowed in development.
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
USE_MOCK_DATA = _env_bool("USE_MOCK_DATA", APP_ENV == "development" and not API_KEY)

# Where the client-side session finds the relay.
RELAY_BASE_URL = os.getenv("RELAY_BASE_URL", "http://localhost:8000").rstrip("/")


# ============================================================================
# RETRY CONFIGURATION
# ============================================================================
# Delay before retry k is min(INITIAL_DELAY_MS * BACKOFF_FACTOR**(k-1), MAX_DELAY_MS).
# A request that takes longer than REQUEST_TIMEOUT_SECONDS counts as a transport
# error and is retried like a dropped connection.
#
# Only the client retries. The relay makes RELAY_MAX_RETRIES extra upstream
# attempts (none by default) so the two hops never multiply. The client waits
# RELAY_TIMEOUT_SECONDS for the relay, which must outlast one upstream call.

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RELAY_MAX_RETRIES = int(os.getenv("RELAY_MAX_RETRIES", "0"))
RELAY_TIMEOUT_SECONDS = float(os.getenv("RELAY_TIMEOUT_SECONDS", str(REQUEST_TIMEOUT_SECONDS + 5)))
INITIAL_DELAY_MS = int(os.getenv("INITIAL_DELAY_MS", "1000"))
MAX_DELAY_MS = int(os.getenv("MAX_DELAY_MS", "10000"))
BACKOFF_FACTOR = float(os.getenv("BACKOFF_FACTOR", "2"))


# ============================================================================
# MODEL CONFIGURATION
# ============================================================================
# DEFAULT_BEST_MODELS is the built-in catalog fallback: when /v1/models cannot
# be reached, the router resolves every operation type from this map.

DEFAULT_CHAT_MODEL = os.getenv("DEFAULT_CHAT_MODEL", "@cf/meta/llama-4-scout-17b-16e-instruct")
DEFAULT_IMAGE_MODEL = os.getenv("DEFAULT_IMAGE_MODEL", "@cf/stabilityai/stable-diffusion-xl-base-1.0")

DEFAULT_BEST_MODELS: Dict[str, str] = {
    "text-to-text": DEFAULT_CHAT_MODEL,
    "text-to-image": DEFAULT_IMAGE_MODEL,
    "inpainting": DEFAULT_IMAGE_MODEL,
    "image-to-image": DEFAULT_IMAGE_MODEL,
    "other": DEFAULT_CHAT_MODEL,
}

# Short display names for the model picker.
MODEL_SHORT_NAMES: Dict[str, str] = {
    "@cf/meta/llama-4-scout-17b-16e-instruct": "Llama 4",
    "@cf/meta/llama-3-70b-instruct": "Llama 3.3",
    "@cf/meta/llama-3-8b-instruct": "Llama 3.1",
    "@cf/mistral/mistral-7b-instruct-v0.2": "Mistral",
    "@cf/stabilityai/stable-diffusion-xl-base-1.0": "SD XL",
    "@cf/stabilityai/stable-diffusion-inpainting": "SD Inpaint",
    "@cf/stabilityai/stable-diffusion-img2img": "SD Img2Img",
}


# ============================================================================
# IMAGE URL RULES
# ============================================================================
# MOCK_URL_MARKERS: substrings that mark an image URL as a demo/sandbox value.
# GENUINE_URL_MARKERS: substrings that mark a URL as a real vendor URL even if
#   it also contains a mock marker. Empty by default; whether the upstream's own
#   domain counts as genuine is a deployment decision.
# CDN_REWRITES: "unreliable.host=>https://good.host/prefix" pairs. The image's file
#   name is appended to the target; a bare target host keeps the original scheme.

MOCK_URL_MARKERS = _env_list("MOCK_URL_MARKERS", "mock-error,mock-image,placeholder.mock")
GENUINE_URL_MARKERS = _env_list("GENUINE_URL_MARKERS", "")
CDN_REWRITES = _env_rewrites("CDN_REWRITES", "api.redbuilder.io=>https://multi.redbuilder.io/generations")


# ============================================================================
# CHAT CONFIGURATION
# ============================================================================

SYSTEM_PROMPT = os.getenv("SYSTEM_PROMPT", "You are a helpful AI assistant.")

# Uploaded images are returned as data URLs; cap their size.
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
