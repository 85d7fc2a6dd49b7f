"""
RELAY CHAT MAIN API
===================

This module defines the FastAPI relay that sits between the browser and the
upstream OpenAI-compatible inference API. It adds the bearer token, applies
the retry policy, and reshapes the upstream's answers into what the chat UI
expects. It stores nothing: every request is forwarded and forgotten.

ENDPOINTS:
  GET  /                    - Returns API name and list of endpoints.
  GET  /health              - Whether an API key and the upstream client are configured.
  POST /api/chat            - Chat turn: {messages, model?} -> {id, role, content, createdAt}.
  POST /api/vision          - Chat turn with image parts; upstream JSON passed through.
  POST /api/image/generate  - {prompt, model?, size?} -> {created, data: [{url, revised_prompt}]}.
  GET  /api/models          - Upstream model list as {object, data, bestModels?}.
  POST /api/image/upload    - multipart "file" -> {success, url, data: [{url}]} with a data URL.

ERRORS:
  Every failure answers {"error": {"message": ..., "type": ...}}. The HTTP status
  mirrors the upstream's when there was one, 400 for bad input, else 500.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import API_BASE_URL, DEFAULT_CHAT_MODEL, DEFAULT_IMAGE_MODEL, MAX_UPLOAD_BYTES, MODEL_SHORT_NAMES
from relaychat.errors import HttpError, RelayChatError, ValidationError
from relaychat.models import ChatReply, ChatRequest, ImageGenerateRequest
from relaychat.services.normalizer import normalize_chat
from relaychat.services.upstream import UpstreamClient
from relaychat.utils.media import to_data_url


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("relaychat")


# -----------------------------------------------------------------------------
# GLOBAL SERVICE REFERENCES
# -----------------------------------------------------------------------------
# Set during startup (lifespan) and used by all route handlers. Tests may set
# it directly to an UpstreamClient with a fake transport.
upstream_client: UpstreamClient = None


def get_upstream() -> UpstreamClient:
    """Return the shared upstream client, creating it on first use if startup did not."""
    global upstream_client
    if upstream_client is None:
        upstream_client = UpstreamClient()
    return upstream_client


# -------------------------------------------------------------------------
# LIFESPAN (STARTUP / SHUTDOWN)
# -------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the upstream client on startup and close its connection pool on
    shutdown. A missing API key is only a warning here: the relay still starts
    and answers each call with a configuration_error envelope.
    """
    global upstream_client

    logger.info("=" * 60)
    logger.info("Relay Chat - Starting Up...")
    logger.info("=" * 60)

    upstream_client = UpstreamClient()
    logger.info("Upstream: %s", API_BASE_URL)
    if upstream_client.configured:
        logger.info("API key: configured")
    elif upstream_client.use_mock_data:
        logger.warning("API key missing: image generation will answer with placeholder images")
    else:
        logger.warning("API key missing: all upstream calls will fail with configuration_error")

    yield

    logger.info("Shutting down relay...")
    if upstream_client is not None:
        await upstream_client.aclose()
        upstream_client = None


# -------------------------------------------------------------------------
# FASTAPI APP AND CORS
# -------------------------------------------------------------------------
app = FastAPI(
    title="Relay Chat API",
    description="Relay between the chat UI and an OpenAI-compatible inference API",
    lifespan=lifespan
)

# Allow any origin so a front end served from another port can call the relay.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================================================
# ERROR ENVELOPE
# =========================================================================

def error_response(message: str, error_type: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message, "type": error_type}})


@app.exception_handler(RelayChatError)
async def relay_error_handler(request: Request, exc: RelayChatError):
    if isinstance(exc, HttpError):
        # Mirror the upstream's status and, when it sent one, its own error message.
        logger.warning("Upstream error on %s: %s", request.url.path, exc)
        return error_response(exc.upstream_message() or exc.message, exc.upstream_type() or exc.error_type, exc.status_code)
    if exc.status_code >= 500:
        logger.error("Error processing %s: %s", request.url.path, exc, exc_info=exc)
    return error_response(exc.message or type(exc).__name__, exc.error_type, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return error_response("Invalid request: " + "; ".join(problems), "invalid_request_error", 400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
    return error_response(str(exc) or "An internal error occurred", "internal_error", 500)


# =========================================================================
# API ENDPOINTS
# =========================================================================

@app.get("/")
async def root():
    """Return the API name and a short description of each endpoint (for discovery)."""
    return {
        "message": "Relay Chat API",
        "endpoints": {
            "/api/chat": "Chat completion (non-streaming)",
            "/api/vision": "Chat completion with image input",
            "/api/image/generate": "Text-to-image generation",
            "/api/models": "Available models",
            "/api/image/upload": "Upload an image, get a data URL back",
            "/health": "Relay health check"
        }
    }


@app.get("/health")
async def health():
    client = upstream_client
    return {
        "status": "healthy",
        "upstream_client": client is not None,
        "api_key_configured": bool(client and client.configured),
        "mock_images": bool(client and not client.configured and client.use_mock_data),
    }


@app.post("/api/chat", response_model=ChatReply)
async def chat(request: ChatRequest):
    """
    Forward a chat turn upstream and answer in the simplified shape.

    REQUEST BODY:
    {
        "messages": [{"role": "user", "content": "Hello"}],
        "model": "optional-model-id"
    }

    RESPONSE:
    {
        "id": "chatcmpl-123",
        "role": "assistant",
        "content": "Hi! How can I help?",
        "createdAt": "2025-01-01T00:00:00+00:00"
    }
    """
    messages = [message.model_dump() for message in request.messages]
    model = request.model or DEFAULT_CHAT_MODEL
    logger.info("Chat request: %d messages, model=%s", len(messages), model)

    raw = await get_upstream().chat(messages, model)
    result = normalize_chat(raw)

    created = raw.get("created") if isinstance(raw, dict) else None
    if not isinstance(created, (int, float)) or isinstance(created, bool):
        created = time.time()
    elif created > 1e11:
        created = created / 1000  # milliseconds
    return ChatReply(
        id=result.id,
        content=result.content,
        created_at=datetime.fromtimestamp(created, tz=timezone.utc).isoformat(),
    )


@app.post("/api/vision")
async def vision(request: ChatRequest):
    """Forward a chat turn whose content may include image_url parts; the upstream JSON is returned as-is."""
    messages = [message.model_dump() for message in request.messages]
    model = request.model or DEFAULT_CHAT_MODEL
    logger.info("Vision request: %d messages, model=%s", len(messages), model)
    return await get_upstream().vision(messages, model)


@app.post("/api/image/generate")
async def generate_image(request: ImageGenerateRequest):
    """
    Generate one image from a prompt.

    RESPONSE:
    {
        "created": 1735689600000,
        "data": [{"url": "https://...", "revised_prompt": "..."}]
    }
    """
    prompt = (request.prompt or "").strip()
    if not prompt:
        raise ValidationError("Prompt is required")

    logger.info("Image generation request: %r", prompt[:80])
    result = await get_upstream().generate_image(prompt, request.model or DEFAULT_IMAGE_MODEL, request.size)
    return {
        "created": int(time.time() * 1000),
        "data": [{"url": result.url, "revised_prompt": result.revised_prompt}],
    }


@app.get("/api/models")
async def list_models():
    """Upstream model list in OpenAI list format; bestModels is passed through when the upstream sends it."""
    raw = await get_upstream().list_models()
    body = raw if isinstance(raw, dict) else {}

    # Some upstream builds answer {models: [...]}, others the OpenAI {data: [...]}.
    entries = body.get("data")
    if not isinstance(entries, list):
        entries = body.get("models")
    models = []
    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        model = {
            "id": entry["id"],
            "name": entry.get("name") or MODEL_SHORT_NAMES.get(entry["id"], entry["id"]),
            "owned_by": entry.get("owned_by") or entry.get("provider") or "upstream",
        }
        if entry.get("type"):
            model["type"] = entry["type"]
        models.append(model)

    response = {"object": "list", "data": models}
    if isinstance(body.get("bestModels"), dict):
        response["bestModels"] = body["bestModels"]
    return response


@app.post("/api/image/upload")
async def upload_image(request: Request):
    """
    Accept one image as multipart/form-data (field "file") and return it as a
    data URL, so the composer can attach it to a vision question.
    """
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        raise ValidationError("Request must be multipart/form-data")

    form = await request.form()
    upload = form.get("file")
    if upload is None or isinstance(upload, str):
        raise ValidationError("No file provided")
    file_type = upload.content_type or ""
    if not file_type.startswith("image/"):
        raise ValidationError("File must be an image")

    data = await upload.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"File is larger than {MAX_UPLOAD_BYTES} bytes")

    data_url = to_data_url(data, file_type)
    logger.info("Uploaded %s (%d bytes) as data URL", upload.filename, len(data))
    return {"success": True, "url": data_url, "data": [{"url": data_url}]}


# -------------------------------------------------------------------------
# STANDALONE RUN (python -m relaychat.main)
# -------------------------------------------------------------------------
def run():
    """Start the uvicorn server (same as run.py); used if someone does python -m relaychat.main"""
    uvicorn.run(
        "relaychat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

if __name__ == "__main__":
    run()
