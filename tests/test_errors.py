import httpx
import pytest

from ae_chat.core.errors import (
    ChatBusyError,
    EmptyMessageError,
    HostBridgeError,
    MissingApiKeyError,
    ProviderError,
    UnsupportedProviderError,
    classify_error,
    user_message,
)
from ae_chat.core.types import ErrorKind


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (MissingApiKeyError("openai"), ErrorKind.MISSING_API_KEY),
        (UnsupportedProviderError("skynet"), ErrorKind.UNSUPPORTED_PROVIDER),
        (ProviderError("boom", "groq", ErrorKind.RATE_LIMITED), ErrorKind.RATE_LIMITED),
        (EmptyMessageError("empty"), ErrorKind.EMPTY_MESSAGE),
        (ChatBusyError("busy"), ErrorKind.BUSY),
        (HostBridgeError("no host"), ErrorKind.HOST),
        (httpx.ReadTimeout("slow"), ErrorKind.NETWORK),
    ],
)
def test_typed_errors_carry_their_kind(exc, kind):
    assert classify_error(exc) is kind


@pytest.mark.parametrize(
    ("text", "kind"),
    [
        ("Invalid API key supplied", ErrorKind.MISSING_API_KEY),
        ("Request failed with status 401", ErrorKind.AUTH),
        ("HTTP 429 Too Many Requests", ErrorKind.RATE_LIMITED),
        ("Failed to fetch", ErrorKind.NETWORK),
        ("Unexpected token < in JSON at position 0", ErrorKind.PARSE),
        ("something odd happened", ErrorKind.UNKNOWN),
    ],
)
def test_foreign_errors_classified_by_message(text, kind):
    assert classify_error(RuntimeError(text)) is kind


def test_untyped_provider_error_falls_back_to_message():
    error = ProviderError("Groq API error (401): bad key", "groq")
    assert classify_error(error) is ErrorKind.AUTH


def test_user_message_is_canned_per_kind():
    assert user_message(MissingApiKeyError("google")).startswith("**API Key Error**")
    assert user_message(httpx.ConnectError("refused")).startswith("**Network Error**")
    assert "Rate Limit" in user_message(ProviderError("x", "openai", ErrorKind.RATE_LIMITED))


def test_user_message_fallback_includes_detail():
    text = user_message(RuntimeError("disk on fire"))
    assert text.startswith("**Error**: disk on fire")
