"""Request/response templates for the hosted LLM REST APIs.

Each template turns (message, key, options, image) into one HTTP request and
pulls the reply text back out of the vendor's JSON. Templates never perform
I/O themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ae_chat.core.errors import ProviderError
from ae_chat.core.types import ErrorKind

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048

_DATA_URL = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass
class HttpRequestSpec:
    url: str
    json: Any
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


def option(options: dict[str, Any], key: str, default: Any) -> Any:
    """Option value, falling back to *default* only when missing or None (0 is kept)."""
    value = options.get(key)
    return default if value is None else value


def parse_data_url(provider: str, data_url: str) -> tuple[str, str]:
    """Split ``data:<mime>;base64,<payload>`` into (mime, payload)."""
    match = _DATA_URL.match(data_url or "")
    if not match:
        raise ProviderError(
            "Invalid image data URL (missing MIME type or base64 payload)",
            provider,
            ErrorKind.PARSE,
        )
    return match.group(1), match.group(2)


@dataclass(frozen=True)
class ProviderTemplate:
    name: str
    display_name: str
    default_model: str
    build_request: Callable[[str, str, dict[str, Any], Optional[str]], HttpRequestSpec]
    extract_reply: Callable[[Any], str]
    extract_usage: Callable[[Any], tuple[int, int]] = lambda payload: (0, 0)
    requires_key: bool = True
    supports_images: bool = False


def _bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


# --------------------------------------------------------------------------
# Google Gemini
# --------------------------------------------------------------------------

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def _gemini_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    model = option(options, "model", "gemini-1.5-flash")
    parts: list[dict[str, Any]] = [{"text": message}]
    if image:
        mime, data = parse_data_url("google", image)
        parts.append({"inline_data": {"mime_type": mime, "data": data}})
    body = {
        "contents": [{"parts": parts}],
        "generationConfig": {
            "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
            "maxOutputTokens": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
        },
    }
    url = option(options, "endpoint", GEMINI_URL.format(model=model))
    return HttpRequestSpec(
        url=url,
        json=body,
        headers={"Content-Type": "application/json"},
        params={"key": api_key},
    )


def _gemini_reply(payload: Any) -> str:
    return payload["candidates"][0]["content"]["parts"][0]["text"]


def _gemini_usage(payload: Any) -> tuple[int, int]:
    usage = payload.get("usageMetadata") or {}
    return usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)


# --------------------------------------------------------------------------
# OpenAI-compatible chat completions (OpenAI, Groq, local servers)
# --------------------------------------------------------------------------

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
LOCAL_URL = "http://localhost:1234/v1/chat/completions"


def _chat_completion_body(model: str, content: Any, options: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [{"role": "user", "content": content}],
        "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
        "max_tokens": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
    }


def _openai_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    if image:
        parse_data_url("openai", image)
        content: Any = [
            {"type": "text", "text": message},
            {"type": "image_url", "image_url": {"url": image}},
        ]
        model = option(options, "model", "gpt-4o")
    else:
        content = message
        model = option(options, "model", "gpt-3.5-turbo")
    return HttpRequestSpec(
        url=option(options, "endpoint", OPENAI_URL),
        json=_chat_completion_body(model, content, options),
        headers=_bearer(api_key),
    )


def _groq_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    model = option(options, "model", "mixtral-8x7b-32768")
    return HttpRequestSpec(
        url=option(options, "endpoint", GROQ_URL),
        json=_chat_completion_body(model, message, options),
        headers=_bearer(api_key),
    )


def _local_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    model = option(options, "model", "local-model")
    headers = _bearer(api_key) if api_key else {"Content-Type": "application/json"}
    return HttpRequestSpec(
        url=option(options, "endpoint", LOCAL_URL),
        json=_chat_completion_body(model, message, options),
        headers=headers,
    )


def _chat_completion_reply(payload: Any) -> str:
    content = payload["choices"][0]["message"]["content"]
    if content is None:
        raise KeyError("content")
    return content


def _chat_completion_usage(payload: Any) -> tuple[int, int]:
    usage = payload.get("usage") or {}
    return usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)


# --------------------------------------------------------------------------
# Anthropic (request shape only; the SDK performs the call)
# --------------------------------------------------------------------------

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def _claude_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    content: Any = message
    if image:
        mime, data = parse_data_url("claude", image)
        content = [
            {"type": "image", "source": {"type": "base64", "media_type": mime, "data": data}},
            {"type": "text", "text": message},
        ]
    body = {
        "model": option(options, "model", "claude-3-5-sonnet-latest"),
        "max_tokens": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
        "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
        "messages": [{"role": "user", "content": content}],
    }
    return HttpRequestSpec(
        url=option(options, "endpoint", ANTHROPIC_URL),
        json=body,
        headers={
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        },
    )


def _claude_reply(payload: Any) -> str:
    for block in payload["content"]:
        if block.get("type") == "text":
            return block["text"]
    raise KeyError("text")


def _claude_usage(payload: Any) -> tuple[int, int]:
    usage = payload.get("usage") or {}
    return usage.get("input_tokens", 0), usage.get("output_tokens", 0)


# --------------------------------------------------------------------------
# Completion-style APIs
# --------------------------------------------------------------------------

COHERE_URL = "https://api.cohere.ai/v1/generate"
HUGGINGFACE_URL = "https://api-inference.huggingface.co/models/{model}"
TOGETHER_URL = "https://api.together.xyz/inference"
OLLAMA_URL = "http://localhost:11434/api/generate"


def _cohere_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=option(options, "endpoint", COHERE_URL),
        json={
            "model": option(options, "model", "command"),
            "prompt": message,
            "max_tokens": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
            "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
        },
        headers=_bearer(api_key),
    )


def _cohere_reply(payload: Any) -> str:
    return payload["generations"][0]["text"]


def _huggingface_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    model = option(options, "model", "microsoft/DialoGPT-medium")
    return HttpRequestSpec(
        url=option(options, "endpoint", HUGGINGFACE_URL.format(model=model)),
        json={
            "inputs": message,
            "parameters": {
                "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
                "max_length": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
            },
        },
        headers=_bearer(api_key),
    )


def _huggingface_reply(payload: Any) -> str:
    if isinstance(payload, list):
        return payload[0]["generated_text"]
    return payload["generated_text"]


def _together_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    return HttpRequestSpec(
        url=option(options, "endpoint", TOGETHER_URL),
        json={
            "model": option(options, "model", "togethercomputer/RedPajama-INCITE-Chat-3B-v1"),
            "prompt": message,
            "max_tokens": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
            "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
        },
        headers=_bearer(api_key),
    )


def _together_reply(payload: Any) -> str:
    return payload["output"]["choices"][0]["text"]


def _ollama_request(message: str, api_key: str, options: dict[str, Any], image: Optional[str]) -> HttpRequestSpec:
    body: dict[str, Any] = {
        "model": option(options, "model", "llama2"),
        "prompt": message,
        "stream": False,
        "options": {
            "temperature": option(options, "temperature", DEFAULT_TEMPERATURE),
            "num_predict": option(options, "max_tokens", DEFAULT_MAX_TOKENS),
        },
    }
    if image:
        _, data = parse_data_url("ollama", image)
        body["images"] = [data]
    return HttpRequestSpec(
        url=option(options, "endpoint", OLLAMA_URL),
        json=body,
        headers={"Content-Type": "application/json"},
    )


def _ollama_reply(payload: Any) -> str:
    reply = payload["response"]
    if not isinstance(reply, str):
        raise TypeError("response is not a string")
    return reply


def _ollama_usage(payload: Any) -> tuple[int, int]:
    return payload.get("prompt_eval_count", 0), payload.get("eval_count", 0)


PROVIDER_TEMPLATES: dict[str, ProviderTemplate] = {
    t.name: t
    for t in (
        ProviderTemplate(
            "google", "Gemini", "gemini-1.5-flash",
            _gemini_request, _gemini_reply, _gemini_usage, supports_images=True,
        ),
        ProviderTemplate(
            "openai", "OpenAI", "gpt-3.5-turbo",
            _openai_request, _chat_completion_reply, _chat_completion_usage, supports_images=True,
        ),
        ProviderTemplate(
            "groq", "Groq", "mixtral-8x7b-32768",
            _groq_request, _chat_completion_reply, _chat_completion_usage,
        ),
        ProviderTemplate(
            "claude", "Claude", "claude-3-5-sonnet-latest",
            _claude_request, _claude_reply, _claude_usage, supports_images=True,
        ),
        ProviderTemplate("cohere", "Cohere", "command", _cohere_request, _cohere_reply),
        ProviderTemplate(
            "huggingface", "HuggingFace", "microsoft/DialoGPT-medium",
            _huggingface_request, _huggingface_reply,
        ),
        ProviderTemplate(
            "together", "Together", "togethercomputer/RedPajama-INCITE-Chat-3B-v1",
            _together_request, _together_reply,
        ),
        ProviderTemplate(
            "local", "Local", "local-model",
            _local_request, _chat_completion_reply, _chat_completion_usage, requires_key=False,
        ),
        ProviderTemplate(
            "ollama", "Ollama", "llama2",
            _ollama_request, _ollama_reply, _ollama_usage, requires_key=False, supports_images=True,
        ),
    )
}

PROVIDER_ALIASES = {"gemini": "google", "anthropic": "claude"}


def resolve_provider(name: str) -> str:
    key = (name or "").strip().lower()
    return PROVIDER_ALIASES.get(key, key)
