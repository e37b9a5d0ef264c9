"""
Provider registry.

Model strings are "<provider>:<model>" or a bare "<model>", which is routed
to Anthropic. The registry holds one provider instance per vendor, built once
at startup from settings.
"""
from dataclasses import replace
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from coach.core.config import Settings
from coach.core.exceptions import UnknownProviderError
from coach.core.logging_config import LoggerMixin
from coach.llm.providers import AnthropicProvider, GoogleProvider, OpenAIProvider
from coach.llm.types import LLMProvider, StreamChunk, StreamParams

DEFAULT_PROVIDER = "anthropic"


def parse_model(model_string: str) -> Tuple[str, str]:
    """
    Split a model string into (provider, model).

    Splits on the first colon only, so model names may contain colons.

    Examples:
        >>> parse_model("openai:gpt-4o")
        ('openai', 'gpt-4o')
        >>> parse_model("claude-sonnet-4-20250514")
        ('anthropic', 'claude-sonnet-4-20250514')
    """
    provider, sep, model = model_string.partition(":")
    if not sep:
        return DEFAULT_PROVIDER, model_string
    return provider, model


class ProviderRegistry(LoggerMixin):
    """Lookup table from provider id to adapter."""

    def __init__(self, providers: Iterable[LLMProvider]):
        self._providers: Dict[str, LLMProvider] = {p.id: p for p in providers}

    @property
    def provider_ids(self) -> List[str]:
        return sorted(self._providers)

    def get_provider(self, model_string: str) -> LLMProvider:
        provider_id, _ = parse_model(model_string)
        provider = self._providers.get(provider_id)
        if provider is None:
            raise UnknownProviderError(provider_id)
        return provider

    def stream_completion(self, model_string: str, params: StreamParams) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion from the provider named in model_string.

        The provider is resolved before the stream is returned, so an unknown
        provider raises here instead of producing an empty stream.
        """
        provider = self.get_provider(model_string)
        _, model = parse_model(model_string)
        self.logger.debug(f"Streaming via {provider.id}: model={model}")
        return provider.stream_completion(replace(params, model=model))


def build_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Build the registry from settings. Missing keys fail on first use."""
    if settings is None:
        from coach.core.config import get_settings
        settings = get_settings()

    return ProviderRegistry([
        AnthropicProvider(api_key=settings.anthropic_api_key),
        OpenAIProvider(api_key=settings.openai_api_key),
        GoogleProvider(api_key=settings.google_ai_api_key),
    ])
