"""
OpenAI Chat Completions streaming adapter.
"""
from typing import AsyncIterator, Union

from openai import AsyncOpenAI

from coach.llm.providers.base import BaseProvider
from coach.llm.types import StreamParams, TokenUsage


class OpenAIProvider(BaseProvider):
    id = "openai"
    api_key_env = "OPENAI_API_KEY"

    def _create_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key)

    async def _stream_events(self, params: StreamParams) -> AsyncIterator[Union[str, TokenUsage]]:
        if params.use_web_search:
            self.logger.debug("Web search requested but not supported by openai adapter")

        messages = [{"role": "system", "content": params.system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in params.messages)

        stream = await self.client.chat.completions.create(
            model=params.model,
            messages=messages,
            max_tokens=params.max_tokens,
            stream=True,
            stream_options={"include_usage": True},
        )

        async for chunk in stream:
            if chunk.choices:
                delta = chunk.choices[0].delta
                if delta is not None and delta.content:
                    yield delta.content

            # Usage arrives on the last chunk, which has no choices
            if chunk.usage:
                yield TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )
