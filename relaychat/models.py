"""
DATA MODELS MODULE
==================

Pydantic models for the relay's request/response bodies and for the
client-side conversation state. FastAPI uses the request models to validate
incoming JSON; the controller and normalizer use the rest internally.

MODELS:
  Message                - One chat bubble: id, role, markdown content, is_generating flag.
  NormalizedChatResult   - Canonical assistant reply extracted from any upstream chat shape.
  NormalizedImageResult  - Canonical image result (url + revised prompt) from any image shape.
  OperationType          - What the user is asking for: text-to-text, text-to-image, ...
  ModelInfo/ModelCatalog - The upstream model list plus the best model per operation type.
  ChatRequest            - Body of POST /api/chat and POST /api/vision.
  ImageGenerateRequest   - Body of POST /api/image/generate.
  ChatReply              - Body returned by POST /api/chat.
  ErrorEnvelope          - {error: {message, type}}, the error body of every relay endpoint.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# ==============================================================================
# CONVERSATION STATE
# ==============================================================================

Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """
    A single message in the conversation.

    Only the controller creates or mutates these. is_generating marks the
    placeholder bubble shown while an image is being generated; at most one
    message has it set at any time.
    """
    id: str
    role: Role
    content: str            # Markdown; may embed image references.
    is_generating: bool = False
    # Where the UI should retry an embedded image that fails to load.
    fallback_url: Optional[str] = None

    def to_wire(self) -> Dict[str, str]:
        """The {role, content} pair sent upstream."""
        return {"role": self.role, "content": self.content}


# ==============================================================================
# NORMALIZED RESULTS
# ==============================================================================

class NormalizedChatResult(BaseModel):
    id: str
    role: Literal["assistant"] = "assistant"
    content: str


class NormalizedImageResult(BaseModel):
    """
    url is what the UI should show. fallback_url holds the URL as the upstream
    sent it when a CDN rewrite replaced it. substituted_mock is True when url
    is the local placeholder rather than anything the upstream returned.
    """
    url: str
    revised_prompt: str
    fallback_url: Optional[str] = None
    substituted_mock: bool = False


# ==============================================================================
# MODEL CATALOG
# ==============================================================================

class OperationType(str, Enum):
    TEXT_TO_TEXT = "text-to-text"
    TEXT_TO_IMAGE = "text-to-image"
    INPAINTING = "inpainting"
    IMAGE_TO_IMAGE = "image-to-image"
    OTHER = "other"


class ModelInfo(BaseModel):
    id: str
    name: str
    type: OperationType = OperationType.TEXT_TO_TEXT


class ModelCatalog(BaseModel):
    models: List[ModelInfo] = Field(default_factory=list)
    best_by_type: Dict[OperationType, str] = Field(default_factory=dict)


# ==============================================================================
# RELAY REQUEST / RESPONSE BODIES
# ==============================================================================

class WireMessage(BaseModel):
    """A message as the browser sends it. Vision turns use a list of content parts."""
    role: str
    content: Union[str, List[Dict[str, Any]]]


class ChatRequest(BaseModel):
    """
    Request body for POST /api/chat and POST /api/vision.

    - messages: Required list of {role, content}.
    - model: Optional; the relay falls back to DEFAULT_CHAT_MODEL.
    """
    messages: List[WireMessage]
    model: Optional[str] = None


class ImageGenerateRequest(BaseModel):
    # Optional here so a missing prompt gets our own 400 message instead of a schema error.
    prompt: Optional[str] = None
    model: Optional[str] = None
    size: str = "512x512"


class ChatReply(BaseModel):
    id: str
    role: Literal["assistant"] = "assistant"
    content: str
    created_at: str = Field(serialization_alias="createdAt")


class ErrorBody(BaseModel):
    message: str
    type: str


class ErrorEnvelope(BaseModel):
    error: ErrorBody
