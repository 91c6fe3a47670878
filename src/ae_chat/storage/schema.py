"""Versioned schema loader for the persisted conversation document.

Every shape this panel has ever written is given a version number and an
upgrade step to the next one. Loading detects the version and walks the
chain, so there is exactly one code path that turns old data into new.

Version 0
    The legacy ``ae_chat_history`` key: a flat JSON array of
    ``{type|role, text|content, timestamp|date}`` items.
Version 1
    ``{"version": 1, "conversations": [...]}`` (or the same object without a
    version tag, as written by the browser store). Messages may lack ``id``
    or ``meta`` and conversations may lack ``updatedAt``.
Version 2
    Current. Every conversation has ``id, title, createdAt, updatedAt,
    messages`` and every message ``id, role, text, meta, timestamp``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable

from ae_chat.core.errors import SchemaError
from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore
from ae_chat.storage.models import utc_now

logger = get_logger(__name__)

SCHEMA_VERSION = 2
STORE_KEY = "ae_chat_store"
LEGACY_KEY = "ae_chat_history"
LEGACY_BACKUP_PREFIX = "ae_chat_history_backup_"
CORRUPT_PREFIX = STORE_KEY + "_corrupt_"
MIGRATED_TITLE = "Migrated Chat History"

_LEGACY_ROLES = {"user": "user", "ai": "assistant", "assistant": "assistant", "system": "assistant"}


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")


def empty_document() -> dict[str, Any]:
    return {"version": SCHEMA_VERSION, "conversations": []}


def detect_version(document: Any) -> int:
    if isinstance(document, list):
        return 0
    if isinstance(document, dict):
        version = document.get("version")
        if version is None and isinstance(document.get("conversations"), list):
            return 1
        if isinstance(version, int) and not isinstance(version, bool):
            return version
    raise SchemaError(f"Unrecognised chat document of type {type(document).__name__}")


def _legacy_timestamp(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Date.now() milliseconds
        stamp = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return stamp.isoformat().replace("+00:00", "Z")
    return None


def _upgrade_0_to_1(document: list[Any], now: str) -> dict[str, Any]:
    messages = []
    for item in document:
        if not isinstance(item, dict):
            continue
        original = _legacy_timestamp(item.get("timestamp", item.get("date")))
        messages.append(
            {
                "role": _LEGACY_ROLES.get(item.get("type") or item.get("role"), "assistant"),
                "text": item.get("text") or item.get("content") or "No content",
                "meta": {
                    "migrated": True,
                    "originalTimestamp": original,
                    "migrationDate": now,
                },
                "timestamp": original or now,
            }
        )

    conversations = []
    if messages:
        conversations.append(
            {
                "id": "c_legacy",
                "title": MIGRATED_TITLE,
                "createdAt": messages[0]["timestamp"],
                "updatedAt": now,
                "messages": messages,
            }
        )
    return {"version": 1, "conversations": conversations}


def _upgrade_1_to_2(document: dict[str, Any], now: str) -> dict[str, Any]:
    conversations = []
    for c_idx, conv in enumerate(document.get("conversations") or []):
        if not isinstance(conv, dict):
            continue
        conv_id = conv.get("id") or f"c_upgraded_{c_idx}"
        created = conv.get("createdAt") or now
        messages = []
        for m_idx, msg in enumerate(conv.get("messages") or []):
            if not isinstance(msg, dict):
                continue
            messages.append(
                {
                    "id": msg.get("id") or f"{conv_id}_m{m_idx}",
                    "role": msg.get("role") if msg.get("role") in ("user", "assistant", "system") else "assistant",
                    "text": msg.get("text") if msg.get("text") is not None else msg.get("content", ""),
                    "meta": msg.get("meta") or {},
                    "timestamp": msg.get("timestamp") or created,
                }
            )
        conversations.append(
            {
                "id": conv_id,
                "title": conv.get("title") or "New Conversation",
                "createdAt": created,
                "updatedAt": conv.get("updatedAt") or created,
                "messages": messages,
            }
        )
    return {"version": 2, "conversations": conversations}


_UPGRADES: dict[int, Callable[[Any, str], dict[str, Any]]] = {
    0: _upgrade_0_to_1,
    1: _upgrade_1_to_2,
}


def upgrade(document: Any, now: str | None = None) -> tuple[dict[str, Any], list[str]]:
    """Walk *document* up to SCHEMA_VERSION.

    Returns the upgraded document and the list of applied steps
    (e.g. ``["0->1", "1->2"]``). Raises SchemaError for unknown shapes or
    versions newer than this code understands.
    """
    now = now or utc_now()
    version = detect_version(document)
    if version > SCHEMA_VERSION:
        raise SchemaError(
            f"Chat document version {version} is newer than supported version {SCHEMA_VERSION}"
        )

    applied: list[str] = []
    while version < SCHEMA_VERSION:
        step = _UPGRADES.get(version)
        if step is None:
            raise SchemaError(f"No upgrade path from chat document version {version}")
        document = step(document, now)
        applied.append(f"{version}->{version + 1}")
        version += 1
    return document, applied


async def load_document(store: KeyValueStore) -> dict[str, Any]:
    """Read the current document from *store*, upgrading legacy data once."""
    raw = await store.get(STORE_KEY)
    if raw is not None:
        try:
            document, applied = upgrade(json.loads(raw))
        except (json.JSONDecodeError, SchemaError) as e:
            # keep the raw text; the next write replaces STORE_KEY
            corrupt_key = CORRUPT_PREFIX + _stamp()
            await store.set(corrupt_key, raw)
            logger.error("chat_document_unreadable", key=STORE_KEY, saved_as=corrupt_key, error=str(e))
            return empty_document()
        if applied:
            await store.set(STORE_KEY, json.dumps(document))
            logger.info("chat_document_upgraded", steps=applied)
        return document

    legacy_raw = await store.get(LEGACY_KEY)
    if legacy_raw is None:
        return empty_document()

    try:
        document, applied = upgrade(json.loads(legacy_raw))
    except (json.JSONDecodeError, SchemaError) as e:
        logger.warning("legacy_history_unreadable", key=LEGACY_KEY, error=str(e))
        return empty_document()

    await store.set(STORE_KEY, json.dumps(document))
    await store.set(LEGACY_BACKUP_PREFIX + _stamp(), legacy_raw)
    await store.delete(LEGACY_KEY)
    migrated = sum(len(c["messages"]) for c in document["conversations"])
    logger.info("legacy_history_migrated", steps=applied, messages=migrated)
    return document
