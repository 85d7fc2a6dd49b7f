"""
MODEL ROUTER
============

Picks which backend model serves a request. The operation type is guessed from
the composer text with plain string heuristics; the model comes from the
catalog the relay reports at GET /api/models, fetched once per session.

If the catalog cannot be fetched the router quietly uses the built-in
DEFAULT_BEST_MODELS; conversation never waits on or fails because of it.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from config import DEFAULT_BEST_MODELS, DEFAULT_CHAT_MODEL, MODEL_SHORT_NAMES
from relaychat.errors import RelayChatError
from relaychat.models import ModelCatalog, ModelInfo, OperationType
from relaychat.services.commands import parse_image_command
from relaychat.services.events import EventBus, InputChanged, ModelChanged, Topic
from relaychat.services.fetch_client import RetryingFetchClient
from relaychat.utils.retry import RetryPolicy, retry_relay_response

logger = logging.getLogger("relaychat")

INPAINTING_HINTS = ("inpaint", "mask")
IMAGE_TO_IMAGE_HINTS = ("style", "transform image")


# ==============================================================================
# PURE ROUTING FUNCTIONS
# ==============================================================================

def detect_operation_type(text: str) -> OperationType:
    if not text or not text.strip():
        return OperationType.TEXT_TO_TEXT
    if parse_image_command(text) is not None:
        return OperationType.TEXT_TO_IMAGE
    lowered = text.lower()
    if any(hint in lowered for hint in INPAINTING_HINTS):
        return OperationType.INPAINTING
    if any(hint in lowered for hint in IMAGE_TO_IMAGE_HINTS):
        return OperationType.IMAGE_TO_IMAGE
    return OperationType.TEXT_TO_TEXT


def resolve_model(operation_type: OperationType, catalog: ModelCatalog) -> str:
    """Catalog's best model for the type, else the first catalog entry of that type, else the built-in default."""
    best = catalog.best_by_type.get(operation_type)
    if best:
        return best
    for model in catalog.models:
        if model.type == operation_type:
            return model.id
    return DEFAULT_BEST_MODELS.get(operation_type.value, DEFAULT_CHAT_MODEL)


def default_catalog() -> ModelCatalog:
    models = []
    seen = set()
    for type_name, model_id in DEFAULT_BEST_MODELS.items():
        if model_id in seen:
            continue
        seen.add(model_id)
        models.append(ModelInfo(id=model_id, name=MODEL_SHORT_NAMES.get(model_id, model_id), type=OperationType(type_name)))
    best = {OperationType(type_name): model_id for type_name, model_id in DEFAULT_BEST_MODELS.items()}
    return ModelCatalog(models=models, best_by_type=best)


def _operation_type(value: Any) -> Optional[OperationType]:
    try:
        return OperationType(value)
    except ValueError:
        return None


def parse_catalog(raw: Any) -> ModelCatalog:
    """
    Build a catalog from {data: [{id, name, type?}], bestModels?: {type: id}}.

    Entries without an id are skipped; unknown or missing types become "other".
    When data is empty but bestModels is present, the models are synthesized
    from bestModels so the picker is never empty.
    """
    if not isinstance(raw, dict):
        raise ValueError("model list response is not an object")

    best_by_type = {}
    best_models = raw.get("bestModels")
    if isinstance(best_models, dict):
        for type_name, model_id in best_models.items():
            op_type = _operation_type(type_name)
            if op_type is not None and isinstance(model_id, str) and model_id:
                best_by_type[op_type] = model_id

    models = []
    entries = raw.get("data")
    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        model_id = str(entry["id"])
        models.append(
            ModelInfo(
                id=model_id,
                name=str(entry.get("name") or MODEL_SHORT_NAMES.get(model_id, model_id)),
                type=_operation_type(entry.get("type")) or OperationType.OTHER,
            )
        )

    if not models and best_by_type:
        models = [
            ModelInfo(id=model_id, name=MODEL_SHORT_NAMES.get(model_id, op_type.value), type=op_type)
            for op_type, model_id in best_by_type.items()
        ]

    return ModelCatalog(models=models, best_by_type=best_by_type)


# ==============================================================================
# SESSION ROUTER
# ==============================================================================

class ModelRouter:
    """
    Holds the session's catalog and the currently selected model.

    The selection follows what the user types (via INPUT_CHANGED) until the user
    picks a model explicitly with select_model(); unpin() resumes following.
    """

    def __init__(
        self,
        fetch_client: Optional[RetryingFetchClient] = None,
        bus: Optional[EventBus] = None,
        models_url: str = "/api/models",
        policy: Optional[RetryPolicy] = None,
    ):
        self._fetch_client = fetch_client
        self._bus = bus
        self._models_url = models_url
        # One quick retry; the fallback catalog is always good enough.
        self._policy = policy or RetryPolicy(
            max_retries=1, initial_delay_ms=500, max_delay_ms=500, should_retry_response=retry_relay_response
        )
        self._catalog: Optional[ModelCatalog] = None
        self._lock = asyncio.Lock()
        self.operation_type = OperationType.TEXT_TO_TEXT
        self.selected_model = DEFAULT_CHAT_MODEL
        self.pinned = False
        if bus is not None:
            bus.subscribe(Topic.INPUT_CHANGED, self._on_input_changed)

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog if self._catalog is not None else default_catalog()

    async def load_catalog(self, refresh: bool = False) -> ModelCatalog:
        """Fetch the catalog once; later calls reuse it. Failures fall back to the defaults."""
        async with self._lock:
            if self._catalog is not None and not refresh:
                return self._catalog
            if self._fetch_client is None:
                self._catalog = default_catalog()
                return self._catalog
            try:
                raw = await self._fetch_client.execute_json("GET", self._models_url, self._policy)
                catalog = parse_catalog(raw)
                if not catalog.models and not catalog.best_by_type:
                    raise ValueError("model list is empty")
                self._catalog = catalog
                logger.info("Loaded %d models from %s", len(catalog.models), self._models_url)
            except (RelayChatError, httpx.HTTPError, ValueError) as e:
                logger.warning("Could not load model catalog, using built-in defaults: %s", e)
                self._catalog = default_catalog()
            if not self.pinned:
                self._select(resolve_model(self.operation_type, self._catalog))
            return self._catalog

    def resolve(self, operation_type: OperationType) -> str:
        return resolve_model(operation_type, self.catalog)

    def select_for_input(self, text: str) -> str:
        self.operation_type = detect_operation_type(text)
        if not self.pinned:
            self._select(self.resolve(self.operation_type))
        return self.selected_model

    def select_model(self, model_id: str) -> None:
        """Explicit user choice; stays until unpin()."""
        self.pinned = True
        self._select(model_id)

    def unpin(self) -> None:
        self.pinned = False
        self._select(self.resolve(self.operation_type))

    def _select(self, model_id: str) -> None:
        if model_id == self.selected_model:
            return
        self.selected_model = model_id
        logger.info("Selected model %s for %s", model_id, self.operation_type.value)
        if self._bus is not None:
            self._bus.publish(Topic.MODEL_CHANGED, ModelChanged(model_id=model_id, operation_type=self.operation_type.value))

    def _on_input_changed(self, event: InputChanged) -> None:
        self.select_for_input(event.text)
