"""Provider client abstraction with plain-HTTP and Anthropic SDK backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import anthropic
import httpx

from ae_chat.ai.providers import ProviderTemplate
from ae_chat.core.errors import ProviderError
from ae_chat.core.types import ErrorKind
from ae_chat.log import get_logger

logger = get_logger(__name__)

_BODY_PREVIEW = 500


@dataclass
class AIResponse:
    """Unified response from any provider."""

    text: str
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None  # Backend-specific raw response


def status_kind(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    return ErrorKind.UNKNOWN


class ProviderClient(ABC):
    """One outbound request per call; no retries, no streaming."""

    def __init__(self, template: ProviderTemplate):
        self.template = template

    @property
    def name(self) -> str:
        return self.template.name

    @abstractmethod
    async def send(
        self,
        message: str,
        api_key: str,
        options: dict[str, Any],
        image_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """Send *message* and return the extracted reply."""
        ...

    def _parse_error(self, detail: str) -> ProviderError:
        return ProviderError(
            f"Invalid response structure from {self.template.display_name} API: {detail}",
            self.name,
            ErrorKind.PARSE,
        )


class HttpProviderClient(ProviderClient):
    """Template-driven JSON-over-HTTP client built on httpx."""

    def __init__(self, template: ProviderTemplate, http_client: httpx.AsyncClient):
        super().__init__(template)
        self._http = http_client

    async def send(
        self,
        message: str,
        api_key: str,
        options: dict[str, Any],
        image_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AIResponse:
        spec = self.template.build_request(message, api_key, options, image_data)
        sent_model = spec.json.get("model") if isinstance(spec.json, dict) else None
        model = sent_model or options.get("model") or self.template.default_model
        display = self.template.display_name

        logger.debug("api_request", provider=self.name, model=model, prompt_length=len(message))
        kwargs: dict[str, Any] = {"json": spec.json, "headers": spec.headers, "params": spec.params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._http.post(spec.url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{display} API network error: request timed out", self.name, ErrorKind.NETWORK) from e
        except httpx.TransportError as e:
            raise ProviderError(f"{display} API network error: {e}", self.name, ErrorKind.NETWORK) from e

        if response.is_error:
            raise ProviderError(
                f"{display} API error ({response.status_code}): {response.text[:_BODY_PREVIEW]}",
                self.name,
                status_kind(response.status_code),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise self._parse_error("body is not JSON") from e

        try:
            text = self.template.extract_reply(payload)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise self._parse_error(f"missing {e}") from e

        try:
            input_tokens, output_tokens = self.template.extract_usage(payload)
        except (AttributeError, TypeError):
            input_tokens, output_tokens = 0, 0

        logger.debug(
            "api_response",
            provider=self.name,
            model=model,
            status=response.status_code,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return AIResponse(
            text=text,
            provider=self.name,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            raw=payload,
        )


class AnthropicClient(ProviderClient):
    """Anthropic Messages API through the official SDK.

    The SDK shares the dispatcher's httpx client, so transports (and test
    mocks) apply to it as well. SDK retries are disabled.
    """

    def __init__(
        self,
        template: ProviderTemplate,
        http_client: httpx.AsyncClient,
        base_url: Optional[str] = None,
    ):
        super().__init__(template)
        self._http = http_client
        self._base_url = base_url

    async def send(
        self,
        message: str,
        api_key: str,
        options: dict[str, Any],
        image_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AIResponse:
        spec = self.template.build_request(message, api_key, options, image_data)
        body = spec.json
        client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=self._base_url,
            http_client=self._http,
            max_retries=0,
        )
        request_kwargs: dict[str, Any] = {
            "model": body["model"],
            "max_tokens": body["max_tokens"],
            "temperature": body["temperature"],
            "messages": body["messages"],
        }
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        logger.debug("api_request", provider=self.name, model=body["model"], prompt_length=len(message))
        try:
            response = await client.messages.create(**request_kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"Claude API error ({e.status_code}): {e.message}",
                self.name,
                status_kind(e.status_code),
                status_code=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(f"Claude API network error: {e}", self.name, ErrorKind.NETWORK) from e
        except anthropic.APIResponseValidationError as e:
            raise self._parse_error(str(e)) from e

        text = next((block.text for block in response.content if block.type == "text"), None)
        if text is None:
            raise self._parse_error("no text block")

        logger.debug(
            "api_response",
            provider=self.name,
            model=body["model"],
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return AIResponse(
            text=text,
            provider=self.name,
            model=response.model or body["model"],
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            raw=response,
        )
