"""Provider adapter implementations."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from model_relay.config import Settings
from model_relay.orchestrator.backend.base import (
    ProviderAdapter,
    ProviderCall,
    ProviderResponse,
    TextStream,
    Usage,
)
from model_relay.orchestrator.backend.echo import EchoAdapter
from model_relay.orchestrator.backend.openai_compat import (
    DEFAULT_BASE_URLS,
    OpenAICompatibleAdapter,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EchoAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "ProviderCall",
    "ProviderResponse",
    "TextStream",
    "Usage",
    "build_default_adapters",
    "close_adapters",
]


def build_default_adapters(settings: Settings) -> dict[str, ProviderAdapter]:
    """Create one adapter per known provider, honoring base URL overrides."""

    adapters: dict[str, ProviderAdapter] = {"echo": EchoAdapter()}
    providers = set(DEFAULT_BASE_URLS) | set(settings.providers.base_urls)
    for provider in sorted(providers):
        adapters[provider] = OpenAICompatibleAdapter(
            provider=provider,
            base_url=settings.providers.base_urls.get(provider),
            timeout_seconds=settings.providers.request_timeout_seconds,
        )
    return adapters


def close_adapters(adapters: Iterable[object]) -> None:
    """Close every adapter that holds a client; one failure does not stop the rest."""

    for adapter in adapters:
        close = getattr(adapter, "close", None)
        if close is None:
            continue
        try:
            close()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to close adapter %r", adapter, exc_info=True)
