import json
from typing import Callable

import httpx
import pytest

from ae_chat.ai.dispatcher import ProviderDispatcher
from ae_chat.ai.request_queue import RateLimiter, RequestQueue
from ae_chat.chat.session import ChatSession
from ae_chat.config import ChatConfig
from ae_chat.storage.base import MemoryKeyValueStore
from ae_chat.storage.conversation_store import ConversationStore
from ae_chat.storage.settings_store import Settings, SettingsStore

OPENAI_KEY = "sk-test-0123456789abcdefghij"


def openai_reply(text: str, prompt_tokens: int = 3, completion_tokens: int = 5) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


class Recorder:
    """MockTransport handler that records requests and answers from a queue of responses."""

    def __init__(self, *responses: httpx.Response | Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            return httpx.Response(200, json=openai_reply("default reply"))
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if callable(response):
            return response(request)
        # fresh copy so the last response can be served repeatedly
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def add(self, *responses) -> None:
        self._responses.extend(responses)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
async def store(kv):
    conv_store = ConversationStore(kv)
    await conv_store.initialize()
    return conv_store


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def http_client(recorder):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    yield client
    await client.aclose()


@pytest.fixture
def dispatcher(http_client):
    return ProviderDispatcher(http_client)


@pytest.fixture
async def settings_store(kv):
    settings = SettingsStore(kv)
    await settings.save(Settings(provider="openai", model="gpt-3.5-turbo", api_key=OPENAI_KEY))
    return settings


@pytest.fixture
def session(store, settings_store, dispatcher):
    return ChatSession(
        store,
        settings_store,
        dispatcher,
        RequestQueue(pacing_ms=0),
        RateLimiter(default_ms=0),
        ChatConfig(system_prompt="Be brief."),
    )
