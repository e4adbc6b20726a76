"""HTTP adapter for providers exposing an OpenAI-compatible chat completions API."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from typing import Any

import httpx

from model_relay.orchestrator.backend.base import (
    ProviderCall,
    ProviderResponse,
    TextStream,
    Usage,
)
from model_relay.orchestrator.errors import FatalProviderError, TransientProviderError
from model_relay.orchestrator.roles import CREDENTIAL_ENV_VARS

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai",
    "openrouter": "https://openrouter.ai/api/v1",
    "perplexity": "https://api.perplexity.ai",
    "xai": "https://api.x.ai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "ollama": "http://localhost:11434/v1",
}
TRANSIENT_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504, 529})


class OpenAICompatibleAdapter:
    """Chat completions client with provider error mapping.

    Transport errors, timeouts and 408/409/429/5xx responses raise
    `TransientProviderError`; other non-2xx responses and malformed payloads
    raise `FatalProviderError`.
    """

    def __init__(
        self,
        *,
        provider: str,
        base_url: str | None = None,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.provider = provider
        resolved = base_url or DEFAULT_BASE_URLS.get(provider)
        if resolved is None:
            raise ValueError(f"No base URL known for provider {provider!r}")
        self.base_url = resolved.rstrip("/")
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAICompatibleAdapter:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def generate_text(self, call: ProviderCall) -> ProviderResponse:
        payload = self._post(call, self._base_payload(call))
        text = _message_content(payload, provider=self.provider)
        return ProviderResponse(text=text, usage=_usage(payload))

    def stream_text(self, call: ProviderCall) -> ProviderResponse:
        """Open a server-sent events stream of chat completion deltas.

        HTTP and transport errors while opening raise here, so the caller can
        still fall back. Errors after the first chunk surface while iterating.
        """

        body = self._base_payload(call)
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}
        response = self._send(call, body, stream=True)
        return ProviderResponse(
            stream=TextStream(self._iter_events(response), close=response.close),
            usage=Usage(),
        )

    def generate_object(self, call: ProviderCall) -> ProviderResponse:
        body = self._base_payload(call)
        if call.schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": call.object_name, "schema": call.schema},
            }
        else:
            body["response_format"] = {"type": "json_object"}
        payload = self._post(call, body)
        content = _message_content(payload, provider=self.provider)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as error:
            raise FatalProviderError(
                f"{self.provider} returned invalid JSON for {call.object_name}: {error}",
                provider=self.provider,
            ) from error
        return ProviderResponse(object=parsed, usage=_usage(payload))

    def _base_payload(self, call: ProviderCall) -> dict[str, Any]:
        return {
            "model": call.model_id,
            "messages": call.messages,
            "max_tokens": call.max_tokens,
            "temperature": call.temperature,
        }

    def _post(self, call: ProviderCall, body: dict[str, Any]) -> dict[str, Any]:
        response = self._send(call, body)
        try:
            payload = response.json()
        except ValueError as error:
            raise FatalProviderError(
                f"{self.provider} returned a non-JSON response",
                provider=self.provider,
            ) from error
        if not isinstance(payload, dict):
            raise FatalProviderError(
                f"{self.provider} returned an unexpected payload",
                provider=self.provider,
            )
        return payload

    def _send(
        self,
        call: ProviderCall,
        body: dict[str, Any],
        *,
        stream: bool = False,
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if stream:
            headers["Accept"] = "text/event-stream"
        api_key = _resolve_api_key(self.provider, call)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        url = f"{self.base_url}/chat/completions"
        logger.debug("POST %s model=%s stream=%s", url, call.model_id, stream)
        request = self._client.build_request("POST", url, json=body, headers=headers)
        try:
            response = self._client.send(request, stream=stream)
        except httpx.TimeoutException as error:
            raise TransientProviderError(
                f"{self.provider} request timeout: {error}",
                provider=self.provider,
            ) from error
        except httpx.TransportError as error:
            raise TransientProviderError(
                f"{self.provider} network error: {error}",
                provider=self.provider,
            ) from error

        if not response.is_success:
            if stream:
                response.read()
                response.close()
            message = f"{self.provider} HTTP {response.status_code}: {response.text[:500]}"
            if response.status_code in TRANSIENT_STATUS_CODES:
                raise TransientProviderError(
                    message,
                    provider=self.provider,
                    status_code=response.status_code,
                )
            raise FatalProviderError(
                message,
                provider=self.provider,
                status_code=response.status_code,
            )
        return response

    def _iter_events(self, response: httpx.Response) -> Iterator[str | Usage]:
        try:
            for line in response.iter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError as error:
                    raise FatalProviderError(
                        f"{self.provider} sent a malformed stream event: {data[:200]}",
                        provider=self.provider,
                    ) from error
                if not isinstance(event, dict):
                    continue
                if isinstance(event.get("usage"), dict):
                    yield _usage(event)
                delta = _delta_content(event)
                if delta:
                    yield delta
        except httpx.TimeoutException as error:
            raise TransientProviderError(
                f"{self.provider} stream timeout: {error}",
                provider=self.provider,
            ) from error
        except httpx.TransportError as error:
            raise TransientProviderError(
                f"{self.provider} stream interrupted: {error}",
                provider=self.provider,
            ) from error


def _resolve_api_key(provider: str, call: ProviderCall) -> str | None:
    env_var = CREDENTIAL_ENV_VARS.get(provider)
    if env_var is None:
        return None
    if call.session and call.session.get(env_var, "").strip():
        return call.session[env_var].strip()
    return os.getenv(env_var, "").strip() or None


def _message_content(payload: dict[str, Any], *, provider: str) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as error:
        raise FatalProviderError(
            f"{provider} response has no message content",
            provider=provider,
        ) from error
    if not isinstance(content, str):
        raise FatalProviderError(
            f"{provider} response content is not text",
            provider=provider,
        )
    return content


def _usage(payload: dict[str, Any]) -> Usage:
    raw = payload.get("usage")
    if not isinstance(raw, dict):
        return Usage()
    return Usage(
        input_tokens=_as_int(raw.get("prompt_tokens")),
        output_tokens=_as_int(raw.get("completion_tokens")),
    )


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    return 0


def _delta_content(event: dict[str, Any]) -> str:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""
