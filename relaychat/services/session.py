"""
CHAT SESSION
============

The single session-scoped object a front end holds. It builds and owns:

  bus         - EventBus for this session only.
  client      - RetryingFetchClient pointed at the relay (RELAY_BASE_URL).
  router      - ModelRouter (catalog + selected model), listening on the bus.
  controller  - ConversationController (messages, composer, status).

USAGE:
  async with ChatSession() as session:
      await session.start()                  # loads the model catalog (never fails)
      await session.controller.submit("/imagine a red fox")
"""

import logging
from typing import Optional

import httpx

from config import RELAY_BASE_URL, RELAY_TIMEOUT_SECONDS
from relaychat.services.conversation import ConversationController
from relaychat.services.events import EventBus
from relaychat.services.fetch_client import RetryingFetchClient, Sleep
from relaychat.services.model_router import ModelRouter

logger = logging.getLogger("relaychat")


class ChatSession:

    def __init__(
        self,
        base_url: str = RELAY_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleep] = None,
        timeout: float = RELAY_TIMEOUT_SECONDS,
        append_error_messages: bool = False,
    ):
        self.bus = EventBus()
        client_options = {"base_url": base_url, "timeout": timeout, "transport": transport}
        if sleep is not None:
            client_options["sleep"] = sleep
        self.client = RetryingFetchClient(**client_options)
        self.router = ModelRouter(fetch_client=self.client, bus=self.bus)
        self.controller = ConversationController(
            fetch_client=self.client,
            router=self.router,
            bus=self.bus,
            append_error_messages=append_error_messages,
        )

    async def start(self) -> None:
        await self.router.load_catalog()
        logger.info("Chat session ready (model: %s)", self.router.selected_model)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
