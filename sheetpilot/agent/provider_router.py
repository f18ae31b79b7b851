from __future__ import annotations

from sheetpilot.agent.providers.anthropic_provider import AnthropicProvider
from sheetpilot.agent.providers.base import ProviderAdapter
from sheetpilot.agent.providers.openai_provider import OpenAIProvider

OPENAI_COMPATIBLE_PROVIDERS = {
    "openai",
    "azure_openai",
    "deepseek",
    "custom",
}


def build_provider(provider: str, api_key: str, base_url: str | None = None) -> ProviderAdapter:
    if not api_key:
        raise RuntimeError(f"API key not found for provider '{provider}'.")
    if provider in OPENAI_COMPATIBLE_PROVIDERS:
        return OpenAIProvider(api_key=api_key, base_url=base_url)
    if provider == "anthropic":
        return AnthropicProvider(api_key=api_key)
    raise ValueError(f"Unsupported provider: {provider}")
