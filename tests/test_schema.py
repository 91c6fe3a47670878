import json

import pytest

from ae_chat.core.errors import SchemaError
from ae_chat.storage.base import MemoryKeyValueStore
from ae_chat.storage.conversation_store import ConversationStore
from ae_chat.storage.schema import (
    CORRUPT_PREFIX,
    LEGACY_BACKUP_PREFIX,
    LEGACY_KEY,
    MIGRATED_TITLE,
    STORE_KEY,
    detect_version,
    load_document,
    upgrade,
)

NOW = "2025-01-01T00:00:00Z"

LEGACY = [
    {"type": "user", "text": "make it bounce", "timestamp": "2024-03-01T10:00:00Z"},
    {"type": "ai", "text": "try an overshoot expression"},
    "garbage entry",
]


def test_detect_version():
    assert detect_version([]) == 0
    assert detect_version({"conversations": []}) == 1
    assert detect_version({"version": 2, "conversations": []}) == 2
    with pytest.raises(SchemaError):
        detect_version("nope")
    with pytest.raises(SchemaError):
        detect_version({"something": "else"})


def test_upgrade_legacy_array():
    document, applied = upgrade(LEGACY, now=NOW)

    assert applied == ["0->1", "1->2"]
    assert document["version"] == 2
    (conv,) = document["conversations"]
    assert conv["id"] == "c_legacy"
    assert conv["title"] == MIGRATED_TITLE
    assert conv["createdAt"] == "2024-03-01T10:00:00Z"

    first, second = conv["messages"]
    assert first["id"] == "c_legacy_m0"
    assert first["role"] == "user"
    assert first["meta"]["migrated"] is True
    assert first["meta"]["originalTimestamp"] == "2024-03-01T10:00:00Z"
    assert second["role"] == "assistant"
    assert second["timestamp"] == NOW
    assert second["meta"]["migrationDate"] == NOW


def test_upgrade_millisecond_timestamps():
    document, _ = upgrade([{"type": "user", "text": "hi", "timestamp": 0}], now=NOW)
    assert document["conversations"][0]["messages"][0]["timestamp"] == "1970-01-01T00:00:00Z"


def test_upgrade_version_one_fills_missing_fields():
    v1 = {
        "conversations": [
            {
                "id": "c_1",
                "title": "Old",
                "createdAt": "2024-01-01T00:00:00Z",
                "messages": [{"role": "user", "text": "hi", "timestamp": "2024-01-01T00:00:01Z"}],
            }
        ]
    }
    document, applied = upgrade(v1, now=NOW)

    assert applied == ["1->2"]
    conv = document["conversations"][0]
    assert conv["updatedAt"] == "2024-01-01T00:00:00Z"
    assert conv["messages"][0]["id"] == "c_1_m0"
    assert conv["messages"][0]["meta"] == {}


def test_current_version_is_untouched():
    current = {"version": 2, "conversations": []}
    document, applied = upgrade(current)
    assert applied == []
    assert document == current


def test_newer_version_is_rejected():
    with pytest.raises(SchemaError):
        upgrade({"version": 99, "conversations": []})


async def test_legacy_key_migrated_once():
    kv = MemoryKeyValueStore({LEGACY_KEY: json.dumps(LEGACY)})

    document = await load_document(kv)
    assert len(document["conversations"][0]["messages"]) == 2
    assert await kv.get(LEGACY_KEY) is None
    assert len(await kv.keys(LEGACY_BACKUP_PREFIX)) == 1
    assert json.loads(await kv.get(STORE_KEY))["version"] == 2

    again = await load_document(kv)
    assert again == document


async def test_store_loads_migrated_history():
    kv = MemoryKeyValueStore({LEGACY_KEY: json.dumps(LEGACY)})
    store = ConversationStore(kv)
    await store.initialize()

    (summary,) = store.get_conversation_list()
    assert summary.id == "c_legacy"
    assert summary.message_count == 2


async def test_unreadable_document_is_kept_aside():
    kv = MemoryKeyValueStore({STORE_KEY: "{not json"})
    document = await load_document(kv)
    assert document == {"version": 2, "conversations": []}

    (corrupt_key,) = await kv.keys(CORRUPT_PREFIX)
    assert await kv.get(corrupt_key) == "{not json"

    # a later write replaces the live key but not the saved copy
    store = ConversationStore(kv)
    await store.initialize()
    await store.create_conversation("Fresh")
    assert json.loads(await kv.get(STORE_KEY))["conversations"][0]["title"] == "Fresh"
    assert await kv.get(corrupt_key) == "{not json"


async def test_stored_version_one_is_rewritten():
    kv = MemoryKeyValueStore({STORE_KEY: json.dumps({"version": 1, "conversations": []})})
    await load_document(kv)
    assert json.loads(await kv.get(STORE_KEY))["version"] == 2
