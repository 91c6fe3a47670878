"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ErrorKind(StrEnum):
    MISSING_API_KEY = "missing_api_key"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    PARSE = "parse"
    EMPTY_MESSAGE = "empty_message"
    BUSY = "busy"
    HOST = "host"
    UNKNOWN = "unknown"


class CodeKind(StrEnum):
    EXPRESSION = "expression"
    SCRIPT = "script"
    PANEL = "panel"
    PLAIN = "plain"
