"""Chat session: prompt -> store -> provider -> store -> HTML."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ae_chat.ai.client import AIResponse
from ae_chat.ai.dispatcher import ProviderDispatcher
from ae_chat.ai.providers import resolve_provider
from ae_chat.ai.request_queue import RateLimiter, RequestQueue
from ae_chat.config import ChatConfig
from ae_chat.core.errors import (
    ChatBusyError,
    ChatError,
    ConversationNotFoundError,
    EmptyMessageError,
    ProviderError,
    classify_error,
    user_message,
)
from ae_chat.core.types import ErrorKind, Role
from ae_chat.log import get_logger
from ae_chat.render.markdown import render_markdown
from ae_chat.storage.conversation_store import ConversationStore
from ae_chat.storage.models import Message
from ae_chat.storage.settings_store import SettingsStore, settings_to_options

logger = get_logger(__name__)


@dataclass
class ChatReply:
    conversation_id: str
    message: Message
    html: str
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_prompt(system: str, history: list[Message], user_text: str) -> str:
    """Fold the system prompt and recent history into a single prompt string."""
    parts: list[str] = []

    if system:
        parts.append(f"[System Instructions]\n{system}\n")

    for msg in history:
        if msg.meta.get("error"):
            continue
        if msg.role is Role.USER:
            parts.append(f"[User]\n{msg.content}")
        elif msg.role is Role.ASSISTANT:
            parts.append(f"[Assistant]\n{msg.content}")

    parts.append(f"[User]\n{user_text}")
    return "\n\n".join(parts)


def make_title(text: str, length: int) -> str:
    flat = " ".join(text.split())
    if len(flat) <= length:
        return flat
    return flat[: length - 3].rstrip() + "..."


class ChatSession:
    """Handles the full flow for one panel: validate -> persist -> dispatch -> persist -> render."""

    def __init__(
        self,
        store: ConversationStore,
        settings_store: SettingsStore,
        dispatcher: ProviderDispatcher,
        queue: RequestQueue,
        rate_limiter: RateLimiter,
        config: ChatConfig | None = None,
    ):
        self._store = store
        self._settings_store = settings_store
        self._dispatcher = dispatcher
        self._queue = queue
        self._rate_limiter = rate_limiter
        self._config = config or ChatConfig()
        self._active_id: Optional[str] = None
        self._in_flight = False

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._active_id

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def new_chat(self, title: str = "New Conversation") -> str:
        self._active_id = await self._store.create_conversation(title)
        return self._active_id

    def select(self, conversation_id: str) -> None:
        if not self._store.has_conversation(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        self._active_id = conversation_id

    def history(self) -> list[Message]:
        if self._active_id is None:
            return []
        conv = self._store.get_conversation(self._active_id)
        return conv.messages if conv else []

    async def send(
        self,
        text: str,
        image_data: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ChatReply:
        """Send one user prompt and return the assistant (or error) message.

        Raises EmptyMessageError for blank input and ChatBusyError while a
        previous send is still running. Provider failures are returned as a
        system message, never raised.
        """
        if not text or not text.strip():
            raise EmptyMessageError("Message is empty")
        if self._in_flight:
            raise ChatBusyError("A request is already in flight")

        self._in_flight = True
        try:
            return await self._send(text.strip(), image_data, conversation_id)
        finally:
            self._in_flight = False

    async def _send(self, text: str, image_data: Optional[str], conversation_id: Optional[str]) -> ChatReply:
        if conversation_id is not None:
            self.select(conversation_id)
        if self._active_id is None:
            await self.new_chat(make_title(text, self._config.title_length))
        conv_id: str = self._active_id

        window = self._config.history_window
        prior = self.history()[-window:] if window else []

        user_meta = {"attachments": ["image"]} if image_data else {}
        await self._store.append_message(conv_id, Role.USER, text, user_meta)

        settings = await self._settings_store.load()
        provider = resolve_provider(settings.provider)
        prompt = build_prompt(self._config.system_prompt, prior, text)

        try:
            if self._rate_limiter.is_limited(provider):
                raise ProviderError(f"Rate limit: wait before calling {provider} again", provider, ErrorKind.RATE_LIMITED)

            async def _job() -> AIResponse:
                self._rate_limiter.record(provider)
                return await self._dispatcher.send_request(
                    provider,
                    prompt,
                    settings.api_key,
                    settings_to_options(settings),
                    image_data=image_data,
                )

            response = await self._queue.submit(_job)
        except (ChatError, OSError) as e:
            kind = classify_error(e)
            logger.error("chat_send_failed", conversation_id=conv_id, provider=provider, kind=kind.value, error=str(e))
            notice = user_message(e)
            message = await self._store.append_message(
                conv_id, Role.SYSTEM, notice, {"error": kind.value, "provider": provider}
            )
            return ChatReply(conv_id, message, render_markdown(notice), error=kind)

        message = await self._store.append_message(
            conv_id,
            Role.ASSISTANT,
            response.text,
            {
                "provider": response.provider or provider,
                "model": response.model,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
            },
        )
        logger.info(
            "chat_reply",
            conversation_id=conv_id,
            provider=provider,
            model=response.model,
            length=len(response.text),
        )
        return ChatReply(conv_id, message, render_markdown(response.text))
