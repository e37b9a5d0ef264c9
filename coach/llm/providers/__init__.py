"""
Vendor adapters behind the LLMProvider interface.
"""
from coach.llm.providers.anthropic import AnthropicProvider
from coach.llm.providers.base import RETRYABLE_STATUSES, BaseProvider, estimate_tokens
from coach.llm.providers.google import GoogleProvider
from coach.llm.providers.openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GoogleProvider",
    "OpenAIProvider",
    "RETRYABLE_STATUSES",
    "estimate_tokens",
]
