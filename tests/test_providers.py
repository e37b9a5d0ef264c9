"""
Adapter tests against fake vendor SDK clients.

Each fake mimics just the surface the adapter touches: Anthropic's
messages.stream() context manager, OpenAI's chat.completions.create() stream
and google-genai's aio.models.generate_content_stream().
"""
import asyncio
import inspect
from types import SimpleNamespace

import pytest

from coach.llm.providers import (
    AnthropicProvider,
    GoogleProvider,
    OpenAIProvider,
    estimate_tokens,
)
from coach.llm.providers.anthropic import TOKEN_COUNT_MODEL
from coach.llm.types import (
    ABORTED,
    DeltaChunk,
    DoneChunk,
    ErrorChunk,
    LLMMessage,
    LLMProvider,
    StreamParams,
    TokenUsage,
)


class VendorError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class GoogleAPIError(Exception):
    def __init__(self, code):
        super().__init__(f"{code} error")
        self.code = code


async def _aiter(items, signal=None, fail_with=None):
    for index, item in enumerate(items):
        yield item
        if signal is not None and index == 0:
            signal.set()
    if fail_with is not None:
        raise fail_with


# ------------------------------------------------------------------
# Anthropic
# ------------------------------------------------------------------

def _anthropic_text(text):
    return SimpleNamespace(
        type="content_block_delta",
        delta=SimpleNamespace(type="text_delta", text=text),
    )


class FakeAnthropicStream:
    def __init__(self, events, usage=(0, 0), signal=None, fail_with=None):
        self.events = events
        self.usage = usage
        self.signal = signal
        self.fail_with = fail_with

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return _aiter(self.events, self.signal, self.fail_with)

    async def get_final_message(self):
        return SimpleNamespace(usage=SimpleNamespace(input_tokens=self.usage[0], output_tokens=self.usage[1]))


class FakeAnthropicClient:
    def __init__(self, stream=None, raise_on_open=None, input_tokens=0):
        self.calls = []
        self._stream = stream
        self._raise_on_open = raise_on_open
        self._input_tokens = input_tokens
        self.count_calls = []
        self.messages = SimpleNamespace(stream=self._open, count_tokens=self._count)

    def _open(self, **kwargs):
        self.calls.append(kwargs)
        if self._raise_on_open is not None:
            raise self._raise_on_open
        return self._stream

    async def _count(self, **kwargs):
        self.count_calls.append(kwargs)
        return SimpleNamespace(input_tokens=self._input_tokens)


# ------------------------------------------------------------------
# OpenAI
# ------------------------------------------------------------------

def _openai_chunk(content=None, usage=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=content))] if content is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


class FakeOpenAIClient:
    def __init__(self, chunks=(), signal=None, fail_with=None, raise_on_open=None):
        self.calls = []
        self._chunks = list(chunks)
        self._signal = signal
        self._fail_with = fail_with
        self._raise_on_open = raise_on_open
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self._raise_on_open is not None:
            raise self._raise_on_open
        return _aiter(self._chunks, self._signal, self._fail_with)


# ------------------------------------------------------------------
# Google
# ------------------------------------------------------------------

def _google_chunk(text=None, prompt=None, candidates=None):
    usage = None
    if prompt is not None:
        usage = SimpleNamespace(prompt_token_count=prompt, candidates_token_count=candidates)
    return SimpleNamespace(text=text, usage_metadata=usage)


class FakeGoogleClient:
    def __init__(self, chunks=(), signal=None, fail_with=None, raise_on_open=None):
        self.calls = []
        self._chunks = list(chunks)
        self._signal = signal
        self._fail_with = fail_with
        self._raise_on_open = raise_on_open
        models = SimpleNamespace(generate_content_stream=self._generate)
        self.aio = SimpleNamespace(models=models)

    async def _generate(self, **kwargs):
        self.calls.append(kwargs)
        if self._raise_on_open is not None:
            raise self._raise_on_open
        return _aiter(self._chunks, self._signal, self._fail_with)


def _params(signal=None, **overrides):
    values = dict(
        model="test-model",
        system_prompt="You are a difficult coworker.",
        messages=[
            LLMMessage(role="user", content="Can we talk about the deadline?"),
            LLMMessage(role="assistant", content="Sure."),
            LLMMessage(role="user", content="It slipped again."),
        ],
        max_tokens=256,
        signal=signal,
    )
    values.update(overrides)
    return StreamParams(**values)


async def _collect(provider, params):
    return [chunk async for chunk in provider.stream_completion(params)]


def _streaming_provider(kind, signal=None, fail_with=None):
    """A provider of each kind whose fake emits 'Hel', 'lo' then usage (12, 3)."""
    if kind == "anthropic":
        stream = FakeAnthropicStream(
            [_anthropic_text("Hel"), _anthropic_text("lo")],
            usage=(12, 3),
            signal=signal,
            fail_with=fail_with,
        )
        return AnthropicProvider(client=FakeAnthropicClient(stream=stream))
    if kind == "openai":
        chunks = [
            _openai_chunk("Hel"),
            _openai_chunk("lo"),
            _openai_chunk(usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3)),
        ]
        return OpenAIProvider(client=FakeOpenAIClient(chunks, signal=signal, fail_with=fail_with))
    chunks = [
        _google_chunk("Hel", prompt=12, candidates=1),
        _google_chunk("lo", prompt=12, candidates=3),
    ]
    return GoogleProvider(client=FakeGoogleClient(chunks, signal=signal, fail_with=fail_with))


PROVIDER_KINDS = ["anthropic", "openai", "google"]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", PROVIDER_KINDS)
async def test_stream_deltas_then_done_with_usage(kind):
    chunks = await _collect(_streaming_provider(kind), _params())

    assert chunks == [
        DeltaChunk(content="Hel"),
        DeltaChunk(content="lo"),
        DoneChunk(usage=TokenUsage(input_tokens=12, output_tokens=3)),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", PROVIDER_KINDS)
async def test_aborted_before_call_makes_no_request(kind):
    signal = asyncio.Event()
    signal.set()
    provider = _streaming_provider(kind)

    chunks = await _collect(provider, _params(signal=signal))

    assert chunks == [ErrorChunk(code=ABORTED, message="Stream was cancelled", retryable=False)]
    assert provider.client.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", PROVIDER_KINDS)
async def test_aborted_mid_stream_ends_with_aborted_chunk(kind):
    signal = asyncio.Event()
    chunks = await _collect(_streaming_provider(kind, signal=signal), _params(signal=signal))

    assert chunks[0] == DeltaChunk(content="Hel")
    assert chunks[-1].type == "error"
    assert chunks[-1].code == ABORTED
    assert chunks[-1].retryable is False
    assert not any(isinstance(c, DoneChunk) for c in chunks)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", PROVIDER_KINDS)
async def test_missing_api_key_is_not_configured(kind):
    provider = {"anthropic": AnthropicProvider, "openai": OpenAIProvider, "google": GoogleProvider}[kind]()

    chunks = await _collect(provider, _params())

    assert len(chunks) == 1
    assert chunks[0].code == "NOT_CONFIGURED"
    assert chunks[0].retryable is False
    assert provider.api_key_env in chunks[0].message


@pytest.mark.asyncio
@pytest.mark.parametrize("status, retryable", [
    (429, True), (500, True), (502, True), (503, True), (529, True), (400, False), (401, False),
])
async def test_anthropic_error_mapping(status, retryable):
    provider = AnthropicProvider(client=FakeAnthropicClient(raise_on_open=VendorError(status)))

    chunks = await _collect(provider, _params())

    assert chunks == [ErrorChunk(code=f"HTTP_{status}", message=f"HTTP {status}", retryable=retryable)]


@pytest.mark.asyncio
@pytest.mark.parametrize("status, retryable", [(429, True), (503, True), (529, False), (404, False)])
async def test_openai_error_mapping(status, retryable):
    provider = OpenAIProvider(client=FakeOpenAIClient(raise_on_open=VendorError(status)))

    chunks = await _collect(provider, _params())

    assert chunks[-1].code == f"HTTP_{status}"
    assert chunks[-1].retryable is retryable


@pytest.mark.asyncio
async def test_google_error_status_read_from_code():
    provider = GoogleProvider(client=FakeGoogleClient(raise_on_open=GoogleAPIError(503)))

    chunks = await _collect(provider, _params())

    assert chunks == [ErrorChunk(code="HTTP_503", message="503 error", retryable=True)]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", PROVIDER_KINDS)
async def test_error_mid_stream_keeps_earlier_deltas(kind):
    provider = _streaming_provider(kind, fail_with=RuntimeError("connection reset"))

    chunks = await _collect(provider, _params())

    assert chunks[0] == DeltaChunk(content="Hel")
    assert chunks[-1] == ErrorChunk(code="UNKNOWN", message="connection reset", retryable=False)


@pytest.mark.asyncio
async def test_anthropic_request_shape():
    client = FakeAnthropicClient(stream=FakeAnthropicStream([]))
    await _collect(AnthropicProvider(client=client), _params())

    call = client.calls[0]
    assert call["system"] == "You are a difficult coworker."
    assert call["max_tokens"] == 256
    assert call["messages"][0] == {"role": "user", "content": "Can we talk about the deadline?"}


@pytest.mark.asyncio
async def test_openai_puts_system_prompt_first():
    client = FakeOpenAIClient([])
    await _collect(OpenAIProvider(client=client), _params())

    call = client.calls[0]
    assert call["messages"][0] == {"role": "system", "content": "You are a difficult coworker."}
    assert len(call["messages"]) == 4
    assert call["stream"] is True
    assert call["stream_options"] == {"include_usage": True}


@pytest.mark.asyncio
async def test_google_maps_roles_and_web_search():
    client = FakeGoogleClient([])
    await _collect(GoogleProvider(client=client), _params(use_web_search=True))

    call = client.calls[0]
    assert [c.role for c in call["contents"]] == ["user", "model", "user"]
    assert call["config"].system_instruction == "You are a difficult coworker."
    assert call["config"].tools
    assert call["config"].tools[0].google_search is not None


@pytest.mark.asyncio
async def test_google_without_usage_reports_zero():
    provider = GoogleProvider(client=FakeGoogleClient([_google_chunk("Hi")]))

    chunks = await _collect(provider, _params())

    assert chunks[-1] == DoneChunk(usage=TokenUsage())


def test_estimate_tokens_rounds_up_quarter_length():
    assert estimate_tokens([]) == 0
    assert estimate_tokens([LLMMessage(role="user", content="abcd")]) == 1
    assert estimate_tokens([LLMMessage(role="user", content="abcde")]) == 2
    # messages are joined with a single space
    assert estimate_tokens([
        LLMMessage(role="user", content="abc"),
        LLMMessage(role="assistant", content="abcd"),
    ]) == 2


@pytest.mark.asyncio
async def test_count_tokens():
    messages = [LLMMessage(role="user", content="x" * 10)]
    assert await OpenAIProvider(client=FakeOpenAIClient()).count_tokens(messages) == 3
    anthropic = AnthropicProvider(client=FakeAnthropicClient(input_tokens=42))
    assert await anthropic.count_tokens(messages) == 42
    assert anthropic.client.count_calls[0]["model"] == TOKEN_COUNT_MODEL


@pytest.mark.parametrize("provider_class", [AnthropicProvider, GoogleProvider, OpenAIProvider])
def test_count_tokens_matches_provider_protocol(provider_class):
    expected = list(inspect.signature(LLMProvider.count_tokens).parameters)
    assert list(inspect.signature(provider_class.count_tokens).parameters) == expected
