"""Provider adapters and the factory that builds them by name."""

from __future__ import annotations

from typing import Any

from agentforge.providers.anthropic import AnthropicAdapter
from agentforge.providers.base import ProviderAdapter, ProviderConfig, StreamOptions
from agentforge.providers.ollama import OllamaAdapter
from agentforge.providers.openai import OpenAIAdapter
from agentforge.providers.openai_compatible import OpenAICompatibleAdapter

ADAPTER_REGISTRY: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "openai_compatible": OpenAICompatibleAdapter,
    "anthropic": AnthropicAdapter,
    "ollama": OllamaAdapter,
}


class ProviderFactory:
    """Creates adapters from ProviderConfig, caching one adapter per config."""

    def __init__(self, registry: dict[str, type[ProviderAdapter]] | None = None):
        self._registry = dict(registry or ADAPTER_REGISTRY)
        self._cache: dict[tuple, ProviderAdapter] = {}

    def register(self, name: str, adapter_cls: type[ProviderAdapter]) -> None:
        self._registry[name] = adapter_cls

    def available(self) -> list[str]:
        return sorted(self._registry)

    def create(self, config: ProviderConfig | str, **client_kwargs: Any) -> ProviderAdapter:
        if isinstance(config, str):
            config = ProviderConfig(name=config)
        adapter_cls = self._registry.get(config.name)
        if adapter_cls is None:
            raise ValueError(
                f"Unknown provider '{config.name}'. "
                f"Available: {', '.join(self.available())}"
            )
        key = (
            config.name,
            config.base_url,
            config.api_key,
            tuple(sorted(config.headers.items())),
        )
        if client_kwargs:
            return adapter_cls(config, **client_kwargs)
        if key not in self._cache:
            self._cache[key] = adapter_cls(config)
        return self._cache[key]


__all__ = [
    "ADAPTER_REGISTRY",
    "AnthropicAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderFactory",
    "StreamOptions",
]
