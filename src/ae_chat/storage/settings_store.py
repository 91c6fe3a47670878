"""Persisted provider settings (provider, model, key, sampling options)."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore

logger = get_logger(__name__)

SETTINGS_KEY = "letterblack_genai_api_settings"
MIGRATED_FLAG_KEY = "settings_migrated"

# old flat key -> Settings field
LEGACY_KEYS = {
    "ai_provider": "provider",
    "ai_model": "model",
    "api_key": "api_key",
    "ai_temperature": "temperature",
    "ai_max_tokens": "max_tokens",
}

KEYLESS_PROVIDERS = frozenset({"local", "ollama"})


class Settings(BaseModel):
    provider: str = "google"
    # empty means the provider template default
    model: str = ""
    api_key: str = ""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)

    def masked(self) -> dict[str, Any]:
        """Settings safe to print: the key is reduced to its last four characters."""
        data = self.model_dump()
        if self.api_key:
            data["api_key"] = "..." + self.api_key[-4:]
        return data


def validate_api_key(key: str, provider: str) -> bool:
    """Format check only; does not contact the provider."""
    if provider in KEYLESS_PROVIDERS:
        return True
    if not key or not isinstance(key, str):
        return False
    if provider in ("google", "gemini"):
        return key.startswith("AIza") and len(key) > 20
    if provider == "openai":
        return key.startswith("sk-") and len(key) > 20
    if provider == "claude":
        return key.startswith("sk-ant-") and len(key) > 20
    return len(key) > 10


class SettingsStore:
    """Loads and saves Settings under a single key."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    async def load(self) -> Settings:
        raw = await self._kv.get(SETTINGS_KEY)
        if raw is None:
            return await self._migrate_legacy()
        try:
            return Settings.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("settings_invalid", error=str(e))
            return Settings()

    async def save(self, settings: Settings) -> bool:
        try:
            await self._kv.set(SETTINGS_KEY, settings.model_dump_json())
        except (OSError, sqlite3.Error, TypeError) as e:
            logger.error("settings_write_failed", error=str(e))
            return False
        logger.info("settings_saved", provider=settings.provider, model=settings.model)
        return True

    async def update(self, **changes: Any) -> Settings:
        """Apply non-None *changes* to the stored settings and save them.

        Model names are provider specific, so switching provider without
        naming a model resets it. Raises pydantic.ValidationError when a
        value is out of range.
        """
        current = await self.load()
        data = current.model_dump()
        changes = {k: v for k, v in changes.items() if v is not None}
        if changes.get("provider", current.provider) != current.provider and "model" not in changes:
            changes["model"] = ""
        data.update(changes)
        updated = Settings.model_validate(data)
        await self.save(updated)
        return updated

    async def clear(self) -> bool:
        try:
            await self._kv.delete(SETTINGS_KEY)
        except (OSError, sqlite3.Error) as e:
            logger.error("settings_clear_failed", error=str(e))
            return False
        return True

    async def _migrate_legacy(self) -> Settings:
        """Copy the old flat keys into the new shape, once."""
        if await self._kv.get(MIGRATED_FLAG_KEY) == "true":
            return Settings()

        found: dict[str, Any] = {}
        for old_key, field_name in LEGACY_KEYS.items():
            value = await self._kv.get(old_key)
            if value is not None and value != "":
                found[field_name] = value

        if not found:
            return Settings()

        defaults = Settings().model_dump()
        merged = dict(defaults)
        for field_name, value in found.items():
            candidate = dict(merged, **{field_name: value})
            try:
                Settings.model_validate(candidate)
            except ValidationError:
                logger.warning("legacy_setting_ignored", field=field_name)
                continue
            merged = candidate

        settings = Settings.model_validate(merged)
        if await self.save(settings):
            await self._kv.set(MIGRATED_FLAG_KEY, "true")
            logger.info("settings_migrated", fields=sorted(found))
        return settings


def settings_to_options(settings: Settings) -> dict[str, Any]:
    """Dispatcher options derived from Settings."""
    return {
        "model": settings.model,
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
    }


def dump_settings(settings: Settings) -> str:
    return json.dumps(settings.masked(), indent=2)
