import asyncio

import httpx
import pytest

from ae_chat.ai.request_queue import RateLimiter, RequestQueue
from ae_chat.chat.session import ChatSession, build_prompt, make_title
from ae_chat.core.errors import ChatBusyError, ConversationNotFoundError, EmptyMessageError
from ae_chat.core.types import ErrorKind, Role
from ae_chat.storage.models import Message

from conftest import OPENAI_KEY, openai_reply

PNG = "data:image/png;base64,iVBORw0KGgo="


def prompt_of(recorder, index=-1) -> str:
    return recorder.body(index)["messages"][0]["content"]


async def test_send_stores_both_sides_and_renders(session, store, recorder):
    recorder.add(httpx.Response(200, json=openai_reply("Use **wiggle**:\n```js\nwiggle(2, 30)\n```")))

    reply = await session.send("  How do I shake a layer?  ")

    assert reply.ok
    assert reply.message.role is Role.ASSISTANT
    assert reply.message.meta == {
        "provider": "openai",
        "model": "gpt-3.5-turbo",
        "input_tokens": 3,
        "output_tokens": 5,
    }
    assert "<strong>wiggle</strong>" in reply.html
    assert 'data-kind="expression"' in reply.html

    conv = store.get_conversation(reply.conversation_id)
    assert conv.title == "How do I shake a layer?"
    assert [m.role for m in conv.messages] == [Role.USER, Role.ASSISTANT]
    assert conv.messages[0].content == "How do I shake a layer?"

    prompt = prompt_of(recorder)
    assert prompt.startswith("[System Instructions]\nBe brief.")
    assert prompt.endswith("[User]\nHow do I shake a layer?")


async def test_history_is_folded_into_prompt(session, recorder):
    recorder.add(
        httpx.Response(200, json=openai_reply("reply one")),
        httpx.Response(200, json=openai_reply("reply two")),
    )

    first = await session.send("first question")
    second = await session.send("second question")

    assert first.conversation_id == second.conversation_id
    prompt = prompt_of(recorder)
    assert "[User]\nfirst question" in prompt
    assert "[Assistant]\nreply one" in prompt
    assert prompt.endswith("[User]\nsecond question")
    assert session.history()[-1].content == "reply two"


async def test_empty_message_is_rejected(session, store, recorder):
    with pytest.raises(EmptyMessageError):
        await session.send("   \n ")
    assert store.get_conversation_list() == []
    assert recorder.requests == []


async def test_second_send_while_in_flight_is_rejected(session, recorder):
    release = asyncio.Event()

    async def slow(request):
        await release.wait()
        return httpx.Response(200, json=openai_reply("late"))

    recorder.add(slow)
    task = asyncio.create_task(session.send("first"))
    while not recorder.requests:
        await asyncio.sleep(0)

    assert session.busy
    with pytest.raises(ChatBusyError):
        await session.send("second")

    release.set()
    reply = await task
    assert reply.ok
    assert not session.busy


async def test_missing_key_becomes_system_message(session, settings_store, store, recorder):
    await settings_store.update(api_key="")

    reply = await session.send("hello")

    assert not reply.ok
    assert reply.error is ErrorKind.MISSING_API_KEY
    assert reply.message.role is Role.SYSTEM
    assert reply.message.meta == {"error": "missing_api_key", "provider": "openai"}
    assert "API Key Error" in reply.html
    assert recorder.requests == []
    roles = [m.role for m in store.get_conversation(reply.conversation_id).messages]
    assert roles == [Role.USER, Role.SYSTEM]


async def test_error_messages_stay_out_of_later_prompts(session, settings_store, recorder):
    await settings_store.update(api_key="")
    await session.send("hello")
    await settings_store.update(api_key="sk-restored-0123456789abcdef")

    reply = await session.send("hello again")

    assert reply.ok
    prompt = prompt_of(recorder)
    assert "API Key Error" not in prompt
    assert "[User]\nhello\n" in prompt


async def test_provider_failure_is_classified(session, recorder):
    recorder.add(httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}}))

    reply = await session.send("hello")

    assert reply.error is ErrorKind.AUTH
    assert reply.message.content.startswith("**Authentication Error**")


async def test_switching_provider_uses_its_default_model(session, settings_store, recorder):
    await settings_store.clear()
    await settings_store.update(provider="openai", api_key=OPENAI_KEY)

    reply = await session.send("hello")

    assert reply.ok
    assert recorder.body()["model"] == "gpt-3.5-turbo"


async def test_unsupported_provider_setting(session, settings_store, recorder):
    await settings_store.update(provider="skynet")
    reply = await session.send("hello")
    assert reply.error is ErrorKind.UNSUPPORTED_PROVIDER
    assert recorder.requests == []


async def test_rate_limited_provider_is_not_called(store, settings_store, dispatcher, recorder):
    session = ChatSession(
        store,
        settings_store,
        dispatcher,
        RequestQueue(pacing_ms=0),
        RateLimiter(default_ms=60_000),
    )

    assert (await session.send("one")).ok
    second = await session.send("two")

    assert second.error is ErrorKind.RATE_LIMITED
    assert len(recorder.requests) == 1


async def test_explicit_conversation_selection(session, store):
    mine = await session.new_chat("Mine")
    other = await store.create_conversation("Other")

    reply = await session.send("in other", conversation_id=other)
    assert reply.conversation_id == other
    assert session.active_conversation_id == other
    assert store.get_conversation(mine).messages == []

    session.select(mine)
    assert (await session.send("in mine")).conversation_id == mine


async def test_unknown_conversation(session):
    with pytest.raises(ConversationNotFoundError):
        session.select("c_missing")
    with pytest.raises(ConversationNotFoundError):
        await session.send("hi", conversation_id="c_missing")
    assert not session.busy


async def test_image_is_attached(session, store, recorder):
    reply = await session.send("what is on screen?", image_data=PNG)

    user = store.get_conversation(reply.conversation_id).messages[0]
    assert user.meta == {"attachments": ["image"]}
    content = prompt_of(recorder)
    assert content[1]["image_url"]["url"] == PNG


def test_build_prompt_skips_errors_and_system():
    history = [
        Message(Role.USER, "q1"),
        Message(Role.ASSISTANT, "a1"),
        Message(Role.SYSTEM, "**Network Error**", {"error": "network"}),
        Message(Role.ASSISTANT, "bad", {"error": "parse"}),
    ]
    prompt = build_prompt("", history, "q2")
    assert prompt == "[User]\nq1\n\n[Assistant]\na1\n\n[User]\nq2"


def test_make_title():
    assert make_title("  several   spaced\nwords ", 40) == "several spaced words"
    title = make_title("x" * 100, 40)
    assert len(title) == 40
    assert title.endswith("...")
