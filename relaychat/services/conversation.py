"""
CONVERSATION CONTROLLER
=======================

Owns one conversation on the client side: the message list, the composer
buffer (text + optional attached image), and the loading/error flags. Every
submit goes through here, one at a time.

SUBMIT FLOW:
  1. Ignore the submit if a request is already in flight or there is nothing to send.
  2. Classify: "/imagine <prompt>" or "/img <prompt>" -> image generation;
     attached image -> vision question; anything else -> plain chat.
     An image command with no prompt is rejected with a validation message.
  3. Clear the composer and append the user's message right away.
  4. Image generation: append a "Generating image..." placeholder, call
     POST /api/image/generate, then replace the placeholder with the image
     (or an error message). Chat/vision: call POST /api/chat or /api/vision
     with the history and append the assistant's reply. On failure the error
     flag is set, plus an error bubble if append_error_messages is on. A relay
     configuration_error always gets the generic "service unavailable" bubble.
  5. Whatever happens, the loading flags are cleared and focus returns to the composer.

STATUS:
  `status` is derived on every read from the flags plus two short flashes
  (new message 400ms, recovered 800ms); it is never stored.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

import httpx

from config import MAX_RETRIES, SYSTEM_PROMPT
from relaychat.errors import ConfigurationError, HttpError, RelayChatError, TransportError, ValidationError
from relaychat.models import Message, OperationType
from relaychat.services.commands import parse_image_command
from relaychat.services.events import (
    EventBus,
    FocusComposer,
    InputChanged,
    MessagesChanged,
    NewChat,
    StatusChanged,
    Topic,
)
from relaychat.services.fetch_client import RetryingFetchClient
from relaychat.services.model_router import ModelRouter
from relaychat.services.normalizer import CdnRewriteRule, normalize_chat, normalize_image
from relaychat.utils.media import image_markdown
from relaychat.utils.retry import RetryCallback, RetryPolicy, retry_relay_response

logger = logging.getLogger("relaychat")

SYSTEM_MESSAGE_ID = "system-0"
PLACEHOLDER_TEXT = "Generating image..."
DEFAULT_VISION_QUESTION = "What's in this image?"
EMPTY_PROMPT_MESSAGE = "Please provide a prompt after the command, e.g. /imagine a red fox"
SERVICE_UNAVAILABLE_MESSAGE = "The service is currently unavailable. Please try again later."
NETWORK_ERROR_MESSAGE = "Could not reach the server. Please check your connection."
INTERRUPTED_MESSAGE = "Image generation was interrupted."

NEW_MESSAGE_FLASH_SECONDS = 0.4
RECOVERED_FLASH_SECONDS = 0.8


# ==============================================================================
# STATUS
# ==============================================================================

class ConversationStatus(str, Enum):
    IDLE = "idle"
    AWAITING_TEXT = "awaiting-text-response"
    AWAITING_IMAGE = "awaiting-image-response"
    ERROR = "error"
    NEW_MESSAGE = "new-message"
    RECOVERED = "recovered"

    @property
    def led(self) -> str:
        """Colour state of the status LED: idle, waiting, error, new-message or recovered."""
        if self in (ConversationStatus.AWAITING_TEXT, ConversationStatus.AWAITING_IMAGE):
            return "waiting"
        return self.value


def derive_status(
    error: bool,
    is_loading: bool,
    is_generating_image: bool,
    new_message_flash: bool,
    recovered_flash: bool,
) -> ConversationStatus:
    if error:
        return ConversationStatus.ERROR
    if is_generating_image:
        return ConversationStatus.AWAITING_IMAGE
    if is_loading:
        return ConversationStatus.AWAITING_TEXT
    if recovered_flash:
        return ConversationStatus.RECOVERED
    if new_message_flash:
        return ConversationStatus.NEW_MESSAGE
    return ConversationStatus.IDLE


# ==============================================================================
# INTENT
# ==============================================================================

class IntentKind(str, Enum):
    CHAT = "chat"
    VISION = "vision"
    IMAGE = "image"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    text: str
    prompt: str = ""
    image: Optional[str] = None


def classify(text: str, image: Optional[str] = None) -> Intent:
    """Decide what a submit is asking for. Raises ValidationError for an image command with no prompt."""
    text = text.strip()
    prompt = parse_image_command(text)
    if prompt is not None:
        if not prompt:
            raise ValidationError(EMPTY_PROMPT_MESSAGE)
        return Intent(IntentKind.IMAGE, text, prompt=prompt)
    if image:
        return Intent(IntentKind.VISION, text, image=image)
    return Intent(IntentKind.CHAT, text)


# ==============================================================================
# CONTROLLER
# ==============================================================================

class ConversationController:

    def __init__(
        self,
        fetch_client: RetryingFetchClient,
        router: ModelRouter,
        bus: Optional[EventBus] = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_retries: int = MAX_RETRIES,
        append_error_messages: bool = False,
        is_mock: Optional[Callable[[str], bool]] = None,
        rewrites: Optional[Iterable[CdnRewriteRule]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = fetch_client
        self.router = router
        self.bus = bus or EventBus()
        self._system_prompt = system_prompt
        self._max_retries = max_retries
        self.append_error_messages = append_error_messages
        self._is_mock = is_mock
        self._rewrites = tuple(rewrites) if rewrites is not None else None
        self._clock = clock
        self._id_counter = 0
        self._last_id = ""
        # Bumped by new_chat(); replies that belong to an older conversation are dropped.
        self._epoch = 0
        self._last_status: Optional[ConversationStatus] = None
        self._refresh_handles: List[asyncio.TimerHandle] = []
        self._reset_state()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self._cancel_status_refresh()
        self._messages: List[Message] = [Message(id=SYSTEM_MESSAGE_ID, role="system", content=self._system_prompt)]
        self.input = ""
        self.attached_image: Optional[str] = None
        self.validation_message: Optional[str] = None
        self.is_loading = False
        self.is_generating_image = False
        self.error = False
        self.last_error: Optional[str] = None
        self._previous_error = False
        self._new_message_until = 0.0
        self._recovered_until = 0.0

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def is_busy(self) -> bool:
        return self.is_loading or self.is_generating_image

    @property
    def is_empty(self) -> bool:
        """True when only the system message is present."""
        return len(self._messages) == 1

    @property
    def status(self) -> ConversationStatus:
        now = self._clock()
        return derive_status(
            error=self.error,
            is_loading=self.is_loading,
            is_generating_image=self.is_generating_image,
            new_message_flash=now < self._new_message_until,
            recovered_flash=now < self._recovered_until,
        )

    def set_input(self, text: str) -> None:
        self.input = text
        self.validation_message = None
        self.bus.publish(Topic.INPUT_CHANGED, InputChanged(text=text))

    def attach_image(self, image_ref: str) -> None:
        self.attached_image = image_ref

    def clear_image(self) -> None:
        self.attached_image = None

    def new_chat(self) -> None:
        """Back to a fresh conversation holding only the system message."""
        self._epoch += 1
        self._reset_state()
        self.bus.publish(Topic.NEW_CHAT, NewChat())
        self.bus.publish(Topic.INPUT_CHANGED, InputChanged(text=""))
        self._messages_changed()
        self._publish_status()

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(self, text: Optional[str] = None, image: Optional[str] = None) -> bool:
        """
        Submit text (default: the composer buffer) and an optional image
        reference (default: the attached image). Returns True when the submit
        was accepted, False when it was ignored or rejected.
        """
        text = (self.input if text is None else text).strip()
        image = self.attached_image if image is None else image

        if self.is_busy:
            logger.info("Submit ignored: a request is already in flight")
            return False
        if not text and not image:
            return False
        try:
            intent = classify(text, image)
        except ValidationError as e:
            self.validation_message = e.message
            return False

        epoch = self._epoch
        self.validation_message = None
        self.error = False
        if intent.kind is IntentKind.IMAGE:
            self.is_generating_image = True
        else:
            self.is_loading = True
        self.input = ""
        self.attached_image = None
        self.bus.publish(Topic.INPUT_CHANGED, InputChanged(text=""))
        self._publish_status()

        try:
            if intent.kind is IntentKind.IMAGE:
                await self._generate_image(intent, epoch)
            else:
                await self._ask(intent, epoch)
        finally:
            if epoch == self._epoch:
                self.is_loading = False
                self.is_generating_image = False
                self._publish_status()
            self.bus.publish(Topic.FOCUS_COMPOSER, FocusComposer())
        return True

    # ------------------------------------------------------------------
    # Chat / vision
    # ------------------------------------------------------------------

    async def _ask(self, intent: Intent, epoch: int) -> None:
        if intent.kind is IntentKind.VISION:
            question = intent.text or DEFAULT_VISION_QUESTION
            self._append("user", f"{question}\n\n{image_markdown('Attached image', intent.image)}")
            history = self._history()[:-1]
            history.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": question},
                    {"type": "image_url", "image_url": {"url": intent.image}},
                ],
            })
            url = "/api/vision"
        else:
            self._append("user", intent.text)
            history = self._history()
            url = "/api/chat"

        payload = {"messages": history, "model": self.router.selected_model}
        try:
            raw = await self._client.execute_json("POST", url, self._policy(), json=payload)
        except (RelayChatError, httpx.HTTPError) as e:
            if epoch != self._epoch:
                return
            logger.error("Chat request to %s failed: %s", url, e)
            self._mark_failure(e)
            if self._is_configuration_error(e):
                self._append("assistant", SERVICE_UNAVAILABLE_MESSAGE)
            elif self.append_error_messages:
                self._append("assistant", f"Sorry, something went wrong: {self._describe(e)}")
            return

        if epoch != self._epoch:
            return
        result = normalize_chat(raw)
        message_id = result.id if not self._has_id(result.id) else None
        self._append("assistant", result.content, message_id=message_id)
        self._mark_success()

    # ------------------------------------------------------------------
    # Image generation
    # ------------------------------------------------------------------

    async def _generate_image(self, intent: Intent, epoch: int) -> None:
        self._append("user", intent.text)
        placeholder = self._append("assistant", PLACEHOLDER_TEXT, is_generating=True)

        def show_retry(attempt: int, delay_ms: float, error: Optional[BaseException] = None) -> None:
            placeholder.content = f"{PLACEHOLDER_TEXT} (retry {attempt}/{self._max_retries})"
            self._messages_changed()

        payload = {"prompt": intent.prompt, "model": self.router.resolve(OperationType.TEXT_TO_IMAGE)}
        try:
            raw = await self._client.execute_json(
                "POST", "/api/image/generate", self._policy(on_retry=show_retry), json=payload
            )
            result = normalize_image(raw, intent.prompt, is_mock=self._is_mock, rewrites=self._rewrites)
        except (RelayChatError, httpx.HTTPError) as e:
            logger.error("Image generation failed: %s", e)
            self._finish_placeholder(placeholder, f"Sorry, I couldn't generate that image: {self._describe(e)}")
            if epoch == self._epoch:
                self._mark_failure(e)
            return
        except BaseException:
            # Cancellation or an unexpected bug: never leave the spinner running.
            self._finish_placeholder(placeholder, INTERRUPTED_MESSAGE)
            raise

        content = image_markdown(intent.prompt, result.url)
        if result.revised_prompt and result.revised_prompt != intent.prompt:
            content += f"\n\n*{result.revised_prompt}*"
        self._finish_placeholder(placeholder, content, fallback_url=result.fallback_url)
        if epoch == self._epoch:
            self._mark_success()

    def _finish_placeholder(self, placeholder: Message, content: str, fallback_url: Optional[str] = None) -> None:
        placeholder.content = content
        placeholder.fallback_url = fallback_url
        placeholder.is_generating = False
        self._messages_changed()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _policy(self, on_retry: Optional[RetryCallback] = None) -> RetryPolicy:
        """Retry transient relay failures (5xx, 429, transport errors); a fresh policy per request."""
        options = {"max_retries": self._max_retries, "should_retry_response": retry_relay_response}
        if on_retry is not None:
            options["on_retry"] = on_retry
        return RetryPolicy(**options)

    def _history(self) -> List[dict]:
        return [message.to_wire() for message in self._messages if not message.is_generating]

    def _has_id(self, message_id: str) -> bool:
        return any(message.id == message_id for message in self._messages)

    def _next_id(self, role: str) -> str:
        candidate = f"{role}-{int(time.time() * 1000)}"
        if candidate == self._last_id or self._has_id(candidate):
            self._id_counter += 1
            candidate = f"{candidate}-{self._id_counter}"
        self._last_id = candidate
        return candidate

    def _append(self, role: str, content: str, is_generating: bool = False, message_id: Optional[str] = None) -> Message:
        message = Message(
            id=message_id or self._next_id(role),
            role=role,
            content=content,
            is_generating=is_generating,
        )
        self._messages.append(message)
        self._messages_changed()
        return message

    def _mark_success(self) -> None:
        now = self._clock()
        self.error = False
        self.last_error = None
        self._new_message_until = now + NEW_MESSAGE_FLASH_SECONDS
        if self._previous_error:
            self._previous_error = False
            self._recovered_until = now + RECOVERED_FLASH_SECONDS
        self._schedule_status_refresh(max(NEW_MESSAGE_FLASH_SECONDS, RECOVERED_FLASH_SECONDS))

    def _mark_failure(self, error: BaseException) -> None:
        self.error = True
        self._previous_error = True
        self.last_error = self._describe(error)

    @staticmethod
    def _is_configuration_error(error: BaseException) -> bool:
        if isinstance(error, ConfigurationError):
            return True
        return isinstance(error, HttpError) and error.upstream_type() == "configuration_error"

    @classmethod
    def _describe(cls, error: BaseException) -> str:
        """User-facing text for a failure. Never exposes configuration details."""
        if cls._is_configuration_error(error):
            return SERVICE_UNAVAILABLE_MESSAGE
        if isinstance(error, HttpError):
            return error.upstream_message() or error.message
        if isinstance(error, (TransportError, httpx.TransportError)):
            return NETWORK_ERROR_MESSAGE
        return str(error) or type(error).__name__

    def _messages_changed(self) -> None:
        generating = next((m.id for m in self._messages if m.is_generating), None)
        self.bus.publish(Topic.MESSAGES_CHANGED, MessagesChanged(count=len(self._messages), generating_id=generating))

    def _publish_status(self) -> None:
        status = self.status
        if status is self._last_status:
            return
        self._last_status = status
        self.bus.publish(Topic.STATUS_CHANGED, StatusChanged(status=status.value))

    def _schedule_status_refresh(self, delay: float) -> None:
        """Re-publish the status once the flashes have expired."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_status_refresh()
        self._refresh_handles = [
            loop.call_later(NEW_MESSAGE_FLASH_SECONDS, self._publish_status),
            loop.call_later(delay, self._publish_status),
        ]

    def _cancel_status_refresh(self) -> None:
        for handle in self._refresh_handles:
            handle.cancel()
        self._refresh_handles = []
