import pytest
from pydantic import ValidationError

from ae_chat.config import AppConfig, default_config, load_config


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    config = load_config(path, tmp_path / ".env")
    assert config == AppConfig()


def test_env_and_data_dir_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("AE_TEST_TIMEOUT", "12")
    env_file = tmp_path / ".env"
    env_file.write_text("AE_TEST_MODEL=llama3\n")
    path = tmp_path / "config.yaml"
    path.write_text(
        f"data_dir: {tmp_path}/data\n"
        "storage:\n"
        "  backend: file\n"
        "  file_dir: ${data_dir}/ChatLogs\n"
        "  max_messages: 200\n"
        "http:\n"
        "  timeout: ${AE_TEST_TIMEOUT}\n"
        "providers:\n"
        "  ollama:\n"
        "    default_model: ${AE_TEST_MODEL}\n"
        "    base_url: ${AE_TEST_UNSET}\n"
    )

    config = load_config(path, env_file)

    assert config.storage.backend == "file"
    assert config.storage.file_dir == f"{tmp_path}/data/ChatLogs"
    assert config.storage.max_messages == 200
    assert config.http.timeout == 12
    assert config.providers["ollama"].default_model == "llama3"
    # unknown variables are left as-is
    assert config.providers["ollama"].base_url == "${AE_TEST_UNSET}"


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("storage:\n  backend: mongo\n")
    with pytest.raises(ValidationError):
        load_config(path, tmp_path / ".env")

    path.write_text("storage:\n  max_messages: -1\n")
    with pytest.raises(ValidationError):
        load_config(path, tmp_path / ".env")


def test_default_config_paths(tmp_path):
    config = default_config(str(tmp_path))
    assert config.storage.db_path == str(tmp_path / "ae_chat.db")
    assert config.storage.file_dir == str(tmp_path / "ChatLogs")
    assert config.chat.history_window == 10
    assert config.queue.rate_limits_ms["openai"] == 2000
