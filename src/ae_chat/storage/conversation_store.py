"""Conversation store: ordered, append-only message history over a key-value backend."""

from __future__ import annotations

import copy
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ae_chat.core.errors import ConversationNotFoundError, SchemaError
from ae_chat.core.types import Role
from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore
from ae_chat.storage.models import Conversation, ConversationSummary, Message, SearchHit, new_id, utc_now
from ae_chat.storage.schema import SCHEMA_VERSION, STORE_KEY, load_document, upgrade

logger = get_logger(__name__)

BACKUP_PREFIX = STORE_KEY + "_backup_"
REDACTED = "REDACTED"
SECRET_META_KEYS = ("apiKey", "api_key", "token", "password", "secret")

# Errors a backend write may raise; these are logged, never propagated.
_WRITE_ERRORS = (OSError, sqlite3.Error, TypeError, ValueError)


def redact_meta(meta: dict[str, Any]) -> dict[str, Any]:
    """Copy of *meta* with secret-looking fields replaced."""
    clean = dict(meta)
    for key in SECRET_META_KEYS:
        if clean.get(key):
            clean[key] = REDACTED
    return clean


class ConversationStore:
    """CRUD over conversations, persisted as one JSON document.

    The whole document is held in memory and written through to the backend
    after every mutation. Write failures are logged and reported through
    ``last_write_ok`` or a ``False`` return; callers are never interrupted.
    """

    def __init__(self, kv: KeyValueStore, max_messages: int = 0, backup_on_clear: bool = True):
        self._kv = kv
        self._max_messages = max_messages
        self._backup_on_clear = backup_on_clear
        self._conversations: dict[str, Conversation] = {}
        self._loaded = False
        self.last_write_ok = True

    async def initialize(self) -> None:
        """Load (and if needed upgrade) the persisted document."""
        document = await load_document(self._kv)
        self._conversations = {}
        for data in document["conversations"]:
            try:
                conv = Conversation.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("conversation_skipped", conversation_id=data.get("id"), error=str(e))
                continue
            self._conversations[conv.id] = conv
        self._loaded = True
        logger.info("conversation_store_loaded", conversations=len(self._conversations))

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise RuntimeError("ConversationStore not initialized. Call initialize() first.")

    def _document(self) -> dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "conversations": [c.to_dict() for c in self._conversations.values()],
        }

    async def _persist(self) -> bool:
        try:
            await self._kv.set(STORE_KEY, json.dumps(self._document()))
        except _WRITE_ERRORS as e:
            logger.error("store_write_failed", backend=self._kv.backend_name, error=str(e))
            self.last_write_ok = False
            return False
        self.last_write_ok = True
        return True

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(self, title: str = "New Conversation") -> str:
        """Create an empty conversation and return its id."""
        self._require_loaded()
        conv = Conversation(id=new_id("c"), title=title)
        self._conversations[conv.id] = conv
        await self._persist()
        logger.info("conversation_created", conversation_id=conv.id, title=title)
        return conv.id

    async def append_message(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> Message:
        """Append a message to an existing conversation.

        Raises ConversationNotFoundError for unknown ids.
        """
        self._require_loaded()
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)

        message = Message(role=Role(role), content=content, meta=redact_meta(meta or {}))
        conv.messages.append(message)
        conv.updated_at = message.timestamp

        if self._max_messages and len(conv.messages) > self._max_messages:
            dropped = len(conv.messages) - self._max_messages
            del conv.messages[:dropped]
            logger.debug("history_truncated", conversation_id=conversation_id, dropped=dropped)

        await self._persist()
        logger.debug("message_appended", conversation_id=conversation_id, role=message.role.value)
        return copy.deepcopy(message)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        self._require_loaded()
        conv = self._conversations.get(conversation_id)
        return copy.deepcopy(conv) if conv else None

    def get_conversation_list(self) -> list[ConversationSummary]:
        """All conversations in creation order (metadata only)."""
        self._require_loaded()
        return [c.summary() for c in self._conversations.values()]

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        self._require_loaded()
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)
        conv.title = title
        conv.updated_at = utc_now()
        await self._persist()

    async def delete_conversation(self, conversation_id: str) -> bool:
        self._require_loaded()
        if self._conversations.pop(conversation_id, None) is None:
            return False
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return await self._persist()

    async def clear_all(self) -> bool:
        """Erase every conversation, keeping a backup copy first if configured."""
        self._require_loaded()
        if self._backup_on_clear and self._conversations:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            try:
                await self._kv.set(BACKUP_PREFIX + stamp, json.dumps(self._document()))
                logger.info("store_backup_created", key=BACKUP_PREFIX + stamp)
            except _WRITE_ERRORS as e:
                logger.error("store_backup_failed", error=str(e))
                return False

        self._conversations.clear()
        ok = await self._persist()
        if ok:
            logger.info("chat_history_cleared")
        return ok

    def search_messages(self, query: str) -> list[SearchHit]:
        """Case-insensitive substring search over every message, newest first."""
        self._require_loaded()
        needle = query.strip().lower()
        if not needle:
            return []
        hits = [
            SearchHit(conv.id, conv.title, copy.deepcopy(msg))
            for conv in self._conversations.values()
            for msg in conv.messages
            if needle in msg.content.lower()
        ]
        hits.sort(key=lambda hit: hit.message.timestamp, reverse=True)
        return hits

    # ------------------------------------------------------------------
    # Import / export / stats
    # ------------------------------------------------------------------

    async def import_data(self, source: str | Path | dict[str, Any] | list[Any]) -> int:
        """Merge an exported document into the store and return how many
        conversations it held.

        *source* may be a parsed document, JSON text or a file path. Any
        schema version the loader understands is accepted. Imported
        conversations replace stored ones with the same id. Raises
        SchemaError when the document cannot be read.
        """
        self._require_loaded()
        if isinstance(source, (dict, list)):
            raw = source
        else:
            text = str(source)
            if isinstance(source, Path) or not text.lstrip().startswith(("{", "[")):
                text = Path(source).read_text(encoding="utf-8")
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as e:
                raise SchemaError(f"Import is not valid JSON: {e}") from e

        document, applied = upgrade(raw)
        imported = []
        for data in document["conversations"]:
            try:
                imported.append(Conversation.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                raise SchemaError(f"Invalid conversation {data.get('id')!r} in import: {e}") from e

        for conv in imported:
            self._conversations[conv.id] = conv
        await self._persist()
        logger.info("conversations_imported", conversations=len(imported), steps=applied)
        return len(imported)

    def export_to_file(self, path: str | Path) -> bool:
        """Write the full document as pretty JSON to *path*."""
        self._require_loaded()
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(self._document(), indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.error("export_failed", path=str(target), error=str(e))
            return False
        logger.info("chat_exported", path=str(target))
        return True

    def export_markdown(self, conversation_id: str) -> str:
        """Plain transcript of one conversation."""
        conv = self.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)

        lines = [f"# {conv.title}", "", f"_Created {conv.created_at}_", ""]
        for msg in conv.messages:
            lines.append(f"## {msg.role.value.title()} ({msg.timestamp})")
            lines.append("")
            lines.append(msg.content)
            lines.append("")
        return "\n".join(lines)

    async def stats(self) -> dict[str, Any]:
        self._require_loaded()
        backups = await self._kv.keys(BACKUP_PREFIX)
        return {
            "backend": self._kv.backend_name,
            "conversations": len(self._conversations),
            "messages": sum(len(c.messages) for c in self._conversations.values()),
            "size_bytes": len(json.dumps(self._document()).encode("utf-8")),
            "backups": len(backups),
        }
