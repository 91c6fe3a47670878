"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

import httpx

from ae_chat.ai.dispatcher import ProviderDispatcher
from ae_chat.ai.request_queue import RateLimiter, RequestQueue
from ae_chat.chat.session import ChatSession
from ae_chat.config import AppConfig
from ae_chat.host.bridge import Evaluator, HostBridge
from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore
from ae_chat.storage.conversation_store import ConversationStore
from ae_chat.storage.factory import create_store
from ae_chat.storage.settings_store import SettingsStore

logger = get_logger(__name__)


class ChatApp:
    """Top-level application orchestrator.

    Every service is constructed here and handed to its consumers; nothing
    is reached through module globals.
    """

    def __init__(
        self,
        config: AppConfig,
        kv: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        evaluator: Optional[Evaluator] = None,
    ):
        self.config = config
        self.kv = kv or create_store(config.storage)
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=config.http.timeout)
        self.store = ConversationStore(
            self.kv,
            max_messages=config.storage.max_messages,
            backup_on_clear=config.storage.backup_on_clear,
        )
        self.settings = SettingsStore(self.kv)
        self.dispatcher = ProviderDispatcher(self.http, config.http, config.providers)
        self.queue = RequestQueue(config.queue.pacing_ms)
        self.rate_limiter = RateLimiter(
            config.queue.rate_limits_ms, default_ms=config.queue.default_rate_limit_ms
        )
        self.session = ChatSession(
            self.store,
            self.settings,
            self.dispatcher,
            self.queue,
            self.rate_limiter,
            config.chat,
        )
        # only set when embedded in a host that can evaluate scripts
        self.host: Optional[HostBridge] = HostBridge(evaluator) if evaluator else None

    async def start(self) -> None:
        """Initialize storage and load persisted state."""
        await self.kv.initialize()
        await self.store.initialize()
        logger.info("ae_chat_started", backend=self.kv.backend_name)

    async def stop(self) -> None:
        """Release the HTTP client and storage backend."""
        if self._owns_http:
            await self.http.aclose()
        await self.kv.close()
        logger.info("ae_chat_stopped")

    async def __aenter__(self) -> ChatApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
