"""Exception hierarchy and user-facing error messages."""

from __future__ import annotations

from typing import Optional

import httpx

from ae_chat.core.types import ErrorKind


class ChatError(Exception):
    """Base class for every error raised by the chat core."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class EmptyMessageError(ChatError):
    kind = ErrorKind.EMPTY_MESSAGE


class ChatBusyError(ChatError):
    kind = ErrorKind.BUSY


class ConversationNotFoundError(ChatError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class SchemaError(ChatError):
    kind = ErrorKind.PARSE


class ProviderError(ChatError):
    """A provider call failed (HTTP status, transport or response shape)."""

    def __init__(
        self,
        message: str,
        provider: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, kind)
        self.provider = provider
        self.status_code = status_code


class UnsupportedProviderError(ProviderError):
    def __init__(self, provider: str, known: list[str] | None = None):
        message = f"Unsupported provider: {provider}"
        if known:
            message += f". Use one of: {', '.join(known)}"
        super().__init__(message, provider, ErrorKind.UNSUPPORTED_PROVIDER)


class MissingApiKeyError(ProviderError):
    def __init__(self, provider: str):
        super().__init__(
            f"API key required for provider: {provider}",
            provider,
            ErrorKind.MISSING_API_KEY,
        )


class HostBridgeError(ChatError):
    kind = ErrorKind.HOST


# Checked in order; the first matching needle wins.
_MESSAGE_PATTERNS: list[tuple[tuple[str, ...], ErrorKind]] = [
    (("api key",), ErrorKind.MISSING_API_KEY),
    (("unsupported provider", "provider"), ErrorKind.UNSUPPORTED_PROVIDER),
    (("401", "403", "unauthorized"), ErrorKind.AUTH),
    (("429", "rate limit"), ErrorKind.RATE_LIMITED),
    (("network", "fetch", "connect", "timed out"), ErrorKind.NETWORK),
    (("json", "parse", "invalid response"), ErrorKind.PARSE),
]


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception to an ErrorKind.

    Typed errors carry their kind. Foreign exceptions fall back to a
    substring match on the lower-cased message.
    """
    if isinstance(exc, ChatError) and exc.kind is not ErrorKind.UNKNOWN:
        return exc.kind
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK

    text = str(exc).lower()
    for needles, kind in _MESSAGE_PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    return ErrorKind.UNKNOWN


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MISSING_API_KEY: (
        "**API Key Error**: Please set your API key in Settings.\n\n"
        "**How to fix:**\n"
        "1. Get an API key from your AI provider\n"
        "2. Run `ae-chat settings --api-key <key>`\n"
        "3. Check it with `ae-chat test-key`"
    ),
    ErrorKind.UNSUPPORTED_PROVIDER: (
        "**Provider Error**: Invalid AI provider selected.\n\n"
        "**How to fix:** pick one of the providers listed by `ae-chat providers`."
    ),
    ErrorKind.NETWORK: (
        "**Network Error**: Could not connect to the AI service.\n\n"
        "**Possible solutions:**\n"
        "- Check your internet connection\n"
        "- Verify your API key is valid\n"
        "- Try again in a moment"
    ),
    ErrorKind.AUTH: (
        "**Authentication Error**: Invalid API key.\n\n"
        "**How to fix:**\n"
        "1. Get a new API key from your AI provider\n"
        "2. Update it in Settings\n"
        "3. Make sure it has the correct permissions"
    ),
    ErrorKind.RATE_LIMITED: (
        "**Rate Limit**: Too many requests. Please wait a moment and try again.\n\n"
        "**Tip:** Free API tiers have usage limits."
    ),
    ErrorKind.PARSE: (
        "**Response Error**: The AI service returned a response that could not be read."
    ),
    ErrorKind.EMPTY_MESSAGE: "Please type a message first.",
    ErrorKind.BUSY: "Still waiting for the previous reply.",
    ErrorKind.HOST: "**Host Error**: After Effects could not run the script.",
}


def user_message(exc: BaseException) -> str:
    """Canned markdown text shown in the chat for a failed action."""
    kind = classify_error(exc)
    if kind in _USER_MESSAGES:
        return _USER_MESSAGES[kind]
    return (
        f"**Error**: {exc}\n\n"
        "**What to try:**\n"
        "- Check your Settings configuration\n"
        "- Verify your internet connection\n"
        "- Try a different AI provider"
    )
