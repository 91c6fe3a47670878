"""Data models for storage layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ae_chat.core.types import Role


def utc_now() -> str:
    """Timezone-aware UTC timestamp with trailing Z."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass
class Message:
    role: Role
    content: str
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("m"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.content,
            "meta": dict(self.meta),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data["text"],
            meta=dict(data.get("meta") or {}),
            timestamp=data["timestamp"],
        )


@dataclass
class Conversation:
    id: str
    title: str
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""
    messages: list[Message] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            id=data["id"],
            title=data["title"],
            created_at=data["createdAt"],
            updated_at=data.get("updatedAt") or data["createdAt"],
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
        )

    def summary(self) -> ConversationSummary:
        return ConversationSummary(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            message_count=len(self.messages),
        )


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int


@dataclass(frozen=True, slots=True)
class SearchHit:
    conversation_id: str
    conversation_title: str
    message: Message
