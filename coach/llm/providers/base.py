"""
Shared streaming template for vendor adapters.

Subclasses implement _stream_events(), an async generator that yields text
deltas (str) and, at most once, a TokenUsage. The template wraps it with the
guarantees every adapter owes its caller:
- exactly one terminal chunk (DoneChunk or ErrorChunk), nothing after it
- cancellation observed before the call, at every event and in the error path
- transport exceptions turned into ErrorChunk, never raised
"""
import math
from contextlib import aclosing
from typing import AsyncIterator, FrozenSet, List, Optional, Union

from coach.core.exceptions import ConfigurationError
from coach.core.logging_config import LoggerMixin
from coach.llm.types import (
    DeltaChunk,
    DoneChunk,
    ErrorChunk,
    LLMMessage,
    StreamChunk,
    StreamParams,
    TokenUsage,
    aborted_chunk,
)

RETRYABLE_STATUSES: FrozenSet[int] = frozenset({429, 500, 502, 503})

CHARS_PER_TOKEN = 4


def estimate_tokens(messages: List[LLMMessage]) -> int:
    """Rough token count: one token per four characters, rounded up."""
    text = " ".join(m.content for m in messages)
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class BaseProvider(LoggerMixin):
    """
    Template for a streaming provider.

    The SDK client is created on first use from the API key, or injected
    directly (tests pass fakes). A missing key only fails the provider that
    needs it.
    """

    id: str = ""
    api_key_env: str = ""
    retryable_statuses: FrozenSet[int] = RETRYABLE_STATUSES

    def __init__(self, api_key: Optional[str] = None, client: object = None):
        self._api_key = api_key
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(f"Missing {self.api_key_env} environment variable")
            self._client = self._create_client(self._api_key)
            self.logger.info(f"{self.id} client initialized")
        return self._client

    def _create_client(self, api_key: str):
        raise NotImplementedError

    def _stream_events(self, params: StreamParams) -> AsyncIterator[Union[str, TokenUsage]]:
        raise NotImplementedError

    def _status_of(self, error: Exception) -> Optional[int]:
        status = getattr(error, "status_code", None)
        return status if isinstance(status, int) else None

    async def stream_completion(self, params: StreamParams) -> AsyncIterator[StreamChunk]:
        if params.cancelled:
            yield aborted_chunk()
            return

        usage = TokenUsage()
        try:
            async with aclosing(self._stream_events(params)) as events:
                async for event in events:
                    if params.cancelled:
                        self.logger.info(f"{self.id} stream cancelled: model={params.model}")
                        yield aborted_chunk()
                        return
                    if isinstance(event, TokenUsage):
                        usage = event
                    elif event:
                        yield DeltaChunk(content=event)
        except Exception as e:
            if params.cancelled:
                yield aborted_chunk()
                return
            chunk = self._error_chunk(e)
            self.logger.warning(
                f"{self.id} stream failed: model={params.model} "
                f"code={chunk.code} retryable={chunk.retryable} error={e}"
            )
            yield chunk
            return

        if params.cancelled:
            yield aborted_chunk()
            return
        yield DoneChunk(usage=usage)

    def _error_chunk(self, error: Exception) -> ErrorChunk:
        if isinstance(error, ConfigurationError):
            return ErrorChunk(code=error.error_code, message=error.message, retryable=False)

        status = self._status_of(error)
        return ErrorChunk(
            code=f"HTTP_{status}" if status else "UNKNOWN",
            message=str(error) or "Unknown error",
            retryable=status in self.retryable_statuses,
        )

    async def count_tokens(self, messages: List[LLMMessage]) -> int:
        return estimate_tokens(messages)
