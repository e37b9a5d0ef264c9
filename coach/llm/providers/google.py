"""
Google Gemini adapter (google-genai SDK).
"""
from typing import AsyncIterator, Optional, Union

from google import genai
from google.genai import types

from coach.llm.providers.base import BaseProvider
from coach.llm.types import StreamParams, TokenUsage


class GoogleProvider(BaseProvider):
    id = "google"
    api_key_env = "GOOGLE_AI_API_KEY"

    def _create_client(self, api_key: str) -> genai.Client:
        return genai.Client(api_key=api_key)

    def _status_of(self, error: Exception) -> Optional[int]:
        # google.genai.errors.APIError carries the HTTP status as .code
        status = getattr(error, "code", None)
        if isinstance(status, int):
            return status
        return super()._status_of(error)

    async def _stream_events(self, params: StreamParams) -> AsyncIterator[Union[str, TokenUsage]]:
        contents = [
            types.Content(
                role="user" if m.role == "user" else "model",
                parts=[types.Part(text=m.content)],
            )
            for m in params.messages
        ]
        config = types.GenerateContentConfig(
            system_instruction=params.system_prompt,
            max_output_tokens=params.max_tokens,
            tools=[types.Tool(google_search=types.GoogleSearch())] if params.use_web_search else None,
        )

        stream = await self.client.aio.models.generate_content_stream(
            model=params.model,
            contents=contents,
            config=config,
        )

        usage: Optional[TokenUsage] = None
        async for chunk in stream:
            if chunk.text:
                yield chunk.text

            # Counts are cumulative; the last chunk carries the totals
            if chunk.usage_metadata:
                usage = TokenUsage(
                    input_tokens=chunk.usage_metadata.prompt_token_count or 0,
                    output_tokens=chunk.usage_metadata.candidates_token_count or 0,
                )

        if usage is not None:
            yield usage
