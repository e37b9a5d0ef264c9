"""
LLM provider abstraction types.

A provider turns one StreamParams into a lazy, finite sequence of chunks:
zero or more DeltaChunk in generation order, then exactly one terminal
DoneChunk or ErrorChunk.
"""
import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Literal, Optional, Protocol, Sequence, Union

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    role: Role
    content: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class StreamParams:
    """Input to exactly one provider call."""
    model: str
    system_prompt: str
    messages: Sequence[LLMMessage]
    max_tokens: int = 1024
    signal: Optional[asyncio.Event] = field(default=None, compare=False)
    # Grounding with web search (Google only)
    use_web_search: bool = False

    @property
    def cancelled(self) -> bool:
        return self.signal is not None and self.signal.is_set()


@dataclass(frozen=True)
class DeltaChunk:
    content: str
    type: Literal["delta"] = "delta"


@dataclass(frozen=True)
class DoneChunk:
    usage: TokenUsage
    type: Literal["done"] = "done"


@dataclass(frozen=True)
class ErrorChunk:
    code: str
    message: str
    retryable: bool
    type: Literal["error"] = "error"


StreamChunk = Union[DeltaChunk, DoneChunk, ErrorChunk]

ABORTED = "ABORTED"


def aborted_chunk() -> ErrorChunk:
    return ErrorChunk(code=ABORTED, message="Stream was cancelled", retryable=False)


class LLMProvider(Protocol):
    """Capability set every vendor adapter implements."""

    id: str

    def stream_completion(self, params: StreamParams) -> AsyncIterator[StreamChunk]:
        ...

    async def count_tokens(self, messages: List[LLMMessage]) -> int:
        ...
