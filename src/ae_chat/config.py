"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are an After Effects assistant. Answer concisely. When the user asks for "
    "an expression or an ExtendScript snippet, return it in a fenced code block "
    "tagged with its language."
)


class StorageConfig(BaseModel):
    backend: Literal["sqlite", "file", "memory"] = "sqlite"
    db_path: str = "./data/ae_chat.db"
    file_dir: str = "./data/ChatLogs"
    max_messages: int = Field(default=0, ge=0)  # 0 = keep everything
    backup_on_clear: bool = True


class HttpConfig(BaseModel):
    timeout: float = 60.0
    probe_timeout: float = 5.0


class QueueConfig(BaseModel):
    pacing_ms: int = 100
    default_rate_limit_ms: int = 1000
    rate_limits_ms: dict[str, int] = Field(
        default_factory=lambda: {
            "google": 1000,
            "openai": 2000,
            "groq": 500,
            "claude": 2000,
            "local": 100,
            "ollama": 100,
        }
    )


class ProviderConfig(BaseModel):
    base_url: Optional[str] = None
    default_model: Optional[str] = None


class ChatConfig(BaseModel):
    history_window: int = Field(default=10, ge=0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    title_length: int = Field(default=40, gt=0)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def default_config(data_dir: str = "./data") -> AppConfig:
    """Configuration used when no config file exists."""
    base = Path(data_dir)
    return AppConfig(
        data_dir=data_dir,
        storage=StorageConfig(
            db_path=str(base / "ae_chat.db"),
            file_dir=str(base / "ChatLogs"),
        ),
    )


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
