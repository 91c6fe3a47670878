import pytest

from ae_chat.config import StorageConfig
from ae_chat.storage.base import MemoryKeyValueStore
from ae_chat.storage.database import SqliteKeyValueStore
from ae_chat.storage.factory import create_store
from ae_chat.storage.file_store import FileKeyValueStore


@pytest.fixture(params=["memory", "sqlite", "file"])
async def backend(request, tmp_path):
    if request.param == "memory":
        kv = MemoryKeyValueStore()
    elif request.param == "sqlite":
        kv = SqliteKeyValueStore(str(tmp_path / "db" / "kv.db"))
    else:
        kv = FileKeyValueStore(tmp_path / "files")
    await kv.initialize()
    yield kv
    await kv.close()


async def test_set_get_delete(backend):
    assert await backend.get("missing") is None

    await backend.set("ae_chat_store", '{"version": 2}')
    assert await backend.get("ae_chat_store") == '{"version": 2}'

    await backend.set("ae_chat_store", "replaced")
    assert await backend.get("ae_chat_store") == "replaced"

    await backend.delete("ae_chat_store")
    assert await backend.get("ae_chat_store") is None
    await backend.delete("ae_chat_store")


async def test_keys_match_prefix_literally(backend):
    for key in ("a_b1", "axb2", "a%c", "a_b/slash", "other"):
        await backend.set(key, "v")

    assert await backend.keys("a_b") == ["a_b/slash", "a_b1"]
    assert await backend.keys("a%") == ["a%c"]
    assert len(await backend.keys()) == 5


async def test_rejects_non_string_values(backend):
    with pytest.raises(TypeError):
        await backend.set("k", {"not": "a string"})


async def test_unicode_round_trip(backend):
    await backend.set("ключ", "значение ✓")
    assert await backend.get("ключ") == "значение ✓"


async def test_sqlite_requires_initialize(tmp_path):
    kv = SqliteKeyValueStore(str(tmp_path / "kv.db"))
    with pytest.raises(RuntimeError):
        await kv.get("anything")


async def test_sqlite_data_survives_reopen(tmp_path):
    path = str(tmp_path / "kv.db")
    kv = SqliteKeyValueStore(path)
    await kv.initialize()
    await kv.set("k", "v")
    await kv.close()

    reopened = SqliteKeyValueStore(path)
    await reopened.initialize()
    assert await reopened.get("k") == "v"
    await reopened.close()


async def test_file_store_leaves_no_temp_files(tmp_path):
    kv = FileKeyValueStore(tmp_path)
    await kv.initialize()
    await kv.set("k", "v")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["k.json"]


def test_create_store(tmp_path):
    assert isinstance(create_store(StorageConfig(backend="memory")), MemoryKeyValueStore)
    assert isinstance(
        create_store(StorageConfig(backend="sqlite", db_path=str(tmp_path / "x.db"))),
        SqliteKeyValueStore,
    )
    assert isinstance(
        create_store(StorageConfig(backend="file", file_dir=str(tmp_path))),
        FileKeyValueStore,
    )
