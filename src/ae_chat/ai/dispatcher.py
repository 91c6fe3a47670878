"""Provider dispatcher: provider name -> client, one request per call."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ae_chat.ai.client import AIResponse, AnthropicClient, HttpProviderClient, ProviderClient
from ae_chat.ai.providers import PROVIDER_TEMPLATES, resolve_provider
from ae_chat.config import HttpConfig, ProviderConfig
from ae_chat.core.errors import ChatError, MissingApiKeyError, UnsupportedProviderError
from ae_chat.log import get_logger

logger = get_logger(__name__)

PROBE_PROMPT = "Hello"


class ProviderDispatcher:
    """Maps provider identifiers to clients and performs exactly one call per request."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        http_config: HttpConfig | None = None,
        provider_configs: dict[str, ProviderConfig] | None = None,
    ):
        self._http_config = http_config or HttpConfig()
        self._provider_configs = provider_configs or {}
        self._clients: dict[str, ProviderClient] = {}

        for name, template in PROVIDER_TEMPLATES.items():
            if name == "claude":
                base_url = self._provider_configs.get(name, ProviderConfig()).base_url
                self._clients[name] = AnthropicClient(template, http_client, base_url=base_url)
            else:
                self._clients[name] = HttpProviderClient(template, http_client)

    def providers(self) -> list[str]:
        return list(self._clients)

    def is_supported(self, provider: str) -> bool:
        return resolve_provider(provider) in self._clients

    def default_model(self, provider: str) -> str:
        name = resolve_provider(provider)
        configured = self._provider_configs.get(name)
        if configured and configured.default_model:
            return configured.default_model
        return PROVIDER_TEMPLATES[name].default_model

    def _merged_options(self, name: str, options: Optional[dict[str, Any]]) -> dict[str, Any]:
        merged = dict(options or {})
        configured = self._provider_configs.get(name)
        if configured:
            # the SDK client takes base_url directly; http templates read it as the endpoint
            if configured.base_url and name != "claude" and not merged.get("endpoint"):
                merged["endpoint"] = configured.base_url
            if configured.default_model and not merged.get("model"):
                merged["model"] = configured.default_model
        if not merged.get("model"):
            # templates pick their own default (e.g. a vision model for images)
            merged.pop("model", None)
        return merged

    async def send_request(
        self,
        provider: str,
        message: str,
        api_key: str,
        options: Optional[dict[str, Any]] = None,
        image_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """Send *message* to *provider* and return the reply.

        Raises UnsupportedProviderError and MissingApiKeyError before any
        network activity; ProviderError for HTTP, transport and parse failures.
        """
        name = resolve_provider(provider)
        client = self._clients.get(name)
        if client is None:
            logger.warning("unsupported_provider", provider=provider)
            raise UnsupportedProviderError(provider, self.providers())

        if client.template.requires_key and not (api_key or "").strip():
            raise MissingApiKeyError(name)

        merged = self._merged_options(name, options)
        return await client.send(
            message,
            api_key,
            merged,
            image_data=image_data,
            timeout=timeout if timeout is not None else self._http_config.timeout,
        )

    async def test_connection(
        self, provider: str, api_key: str, model: Optional[str] = None
    ) -> dict[str, Any]:
        """Probe a provider with a tiny request under the short probe timeout."""
        try:
            response = await self.send_request(
                provider,
                PROBE_PROMPT,
                api_key,
                {"model": model, "temperature": 0.1, "max_tokens": 10},
                timeout=self._http_config.probe_timeout,
            )
        except ChatError as e:
            logger.info("connection_test_failed", provider=provider, error=str(e))
            return {"success": False, "error": str(e), "kind": e.kind.value}

        if not response.text:
            return {"success": False, "error": "Empty response from provider", "kind": "parse"}
        logger.info("connection_test_passed", provider=provider, model=response.model)
        return {"success": True, "message": "Connection successful!", "model": response.model}
