"""Builds configured provider instances"""
from typing import Dict, List, Optional

from ideascan.config import settings
from ideascan.models.classification import ProviderKind
from ideascan.services.llm.anthropic_provider import AnthropicProvider
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.openai_provider import OpenAIProvider


class ProviderConfigError(ValueError):
    pass


def build_provider(kind: ProviderKind) -> BaseProvider:
    if kind is ProviderKind.ANTHROPIC:
        return AnthropicProvider(api_key=settings.ANTHROPIC_API_KEY)
    if kind is ProviderKind.OPENAI:
        return OpenAIProvider(api_key=settings.OPENAI_API_KEY)
    raise ProviderConfigError(f"No provider implementation for {kind!r}")


def _parse_kind(key: str) -> ProviderKind:
    try:
        return ProviderKind(key.strip().lower())
    except ValueError:
        raise ProviderConfigError(f"Unknown classification provider '{key}'") from None


def classification_providers(keys: Optional[List[str]] = None) -> Dict[ProviderKind, BaseProvider]:
    """Map each configured provider kind to a client.

    Unknown or duplicate keys are a configuration error; two entries for the
    same kind would write to the same column group.
    """
    keys = settings.CLASSIFICATION_PROVIDERS if keys is None else keys
    if not keys:
        raise ProviderConfigError("CLASSIFICATION_PROVIDERS is empty")

    providers: Dict[ProviderKind, BaseProvider] = {}
    for key in keys:
        kind = _parse_kind(key)
        if kind in providers:
            raise ProviderConfigError(f"Classification provider '{key}' is configured twice")
        providers[kind] = build_provider(kind)
    return providers


def extraction_provider(key: Optional[str] = None) -> BaseProvider:
    provider = build_provider(_parse_kind(key or settings.EXTRACTION_PROVIDER))
    if not provider.supports_extraction():
        raise ProviderConfigError(f"Provider '{provider.provider_name()}' cannot extract ideas")
    return provider
