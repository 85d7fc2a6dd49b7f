"""
SESSION EVENTS
==============

A small typed publish/subscribe channel owned by one ChatSession. Components
announce changes here (input typed, model switched, new chat, status changed)
instead of reaching into each other. Every topic has exactly one payload type;
publishing the wrong payload type is a programming error and raises TypeError.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, DefaultDict, Dict, List, Optional, Type

logger = logging.getLogger("relaychat")


class Topic(str, Enum):
    INPUT_CHANGED = "input-changed"
    MODEL_CHANGED = "model-changed"
    NEW_CHAT = "new-chat"
    STATUS_CHANGED = "status-changed"
    MESSAGES_CHANGED = "messages-changed"
    FOCUS_COMPOSER = "focus-composer"


@dataclass(frozen=True)
class InputChanged:
    text: str


@dataclass(frozen=True)
class ModelChanged:
    model_id: str
    operation_type: str


@dataclass(frozen=True)
class NewChat:
    pass


@dataclass(frozen=True)
class StatusChanged:
    status: str


@dataclass(frozen=True)
class MessagesChanged:
    count: int
    generating_id: Optional[str] = None


@dataclass(frozen=True)
class FocusComposer:
    pass


PAYLOAD_TYPES: Dict[Topic, Type] = {
    Topic.INPUT_CHANGED: InputChanged,
    Topic.MODEL_CHANGED: ModelChanged,
    Topic.NEW_CHAT: NewChat,
    Topic.STATUS_CHANGED: StatusChanged,
    Topic.MESSAGES_CHANGED: MessagesChanged,
    Topic.FOCUS_COMPOSER: FocusComposer,
}

Handler = Callable[[object], None]


class EventBus:
    """Synchronous in-process pub/sub; handlers run in subscription order."""

    def __init__(self):
        self._handlers: DefaultDict[Topic, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        """Register handler for topic. Returns a function that unsubscribes it."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return unsubscribe

    def publish(self, topic: Topic, payload: object) -> None:
        expected = PAYLOAD_TYPES[topic]
        if not isinstance(payload, expected):
            raise TypeError(f"{topic.value} expects {expected.__name__}, got {type(payload).__name__}")
        for handler in list(self._handlers[topic]):
            try:
                handler(payload)
            except Exception:
                # One broken listener must not stop the others or the publisher.
                logger.exception("Handler for %s failed", topic.value)
