"""
LLM module - Language model integration.

This module handles all LLM interactions:
- Provider-neutral chunk and parameter types
- Vendor adapters (Anthropic, OpenAI, Google)
- Model string routing via the provider registry
"""
from coach.llm.registry import ProviderRegistry, build_registry, parse_model
from coach.llm.types import (
    ABORTED,
    DeltaChunk,
    DoneChunk,
    ErrorChunk,
    LLMMessage,
    LLMProvider,
    StreamChunk,
    StreamParams,
    TokenUsage,
)

__all__ = [
    "ABORTED",
    "DeltaChunk",
    "DoneChunk",
    "ErrorChunk",
    "LLMMessage",
    "LLMProvider",
    "ProviderRegistry",
    "StreamChunk",
    "StreamParams",
    "TokenUsage",
    "build_registry",
    "parse_model",
]
