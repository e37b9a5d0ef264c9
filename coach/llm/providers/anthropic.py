"""
Anthropic Messages API adapter.
"""
from typing import AsyncIterator, List, Union

from anthropic import AsyncAnthropic

from coach.llm.providers.base import RETRYABLE_STATUSES, BaseProvider
from coach.llm.types import LLMMessage, StreamParams, TokenUsage

# 529 is Anthropic's "overloaded" status
ANTHROPIC_RETRYABLE_STATUSES = RETRYABLE_STATUSES | {529}

TOKEN_COUNT_MODEL = "claude-sonnet-4-20250514"


class AnthropicProvider(BaseProvider):
    id = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"
    retryable_statuses = ANTHROPIC_RETRYABLE_STATUSES

    def _create_client(self, api_key: str) -> AsyncAnthropic:
        return AsyncAnthropic(api_key=api_key)

    async def _stream_events(self, params: StreamParams) -> AsyncIterator[Union[str, TokenUsage]]:
        if params.use_web_search:
            self.logger.debug("Web search requested but not supported by anthropic adapter")

        async with self.client.messages.stream(
            model=params.model,
            system=params.system_prompt,
            messages=[{"role": m.role, "content": m.content} for m in params.messages],
            max_tokens=params.max_tokens,
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text

            final = await stream.get_final_message()
            yield TokenUsage(
                input_tokens=final.usage.input_tokens,
                output_tokens=final.usage.output_tokens,
            )

    async def count_tokens(self, messages: List[LLMMessage]) -> int:
        """Exact input token count from the counting endpoint."""
        response = await self.client.messages.count_tokens(
            model=TOKEN_COUNT_MODEL,
            messages=[{"role": m.role, "content": m.content} for m in messages],
        )
        return response.input_tokens
