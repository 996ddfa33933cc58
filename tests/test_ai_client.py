"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest

from openai import APIConnectionError, AsyncOpenAI

from scrivener.ai.client import AIClient, AIStreamEvent, ClientSettings
from scrivener.ai.errors import StreamInterruptedError


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None
    parsed: Any | None = None
    refusal: str | None = None


class _FakeStream:
    def __init__(self, events: Iterable[_FakeEvent], error: BaseException | None = None):
        self._events = list(events)
        self._iterator = iter(self._events)
        self._error = error

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            return next(self._iterator)
        except StopIteration as exc:
            if self._error is not None:
                raise self._error from None
            raise StopAsyncIteration from exc


class _FakeStreamContext:
    def __init__(self, events: Iterable[_FakeEvent], error: BaseException | None = None):
        self._events = list(events)
        self._error = error

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events, self._error)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    """Replays one scripted outcome per ``stream`` call.

    Each script is ``(events, error)``; an error with no events is raised
    when the stream is opened, otherwise after the events were delivered.
    """

    def __init__(self, *scripts: tuple[Iterable[_FakeEvent], BaseException | None]):
        self._scripts = [(list(events), error) for events, error in scripts]
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        index = min(len(self.calls), len(self._scripts)) - 1
        events, error = self._scripts[index]
        if error is not None and not events:
            raise error
        return _FakeStreamContext(events, error)


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace]):
        self._payload = payload
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


def _make_client(*scripts: tuple[Iterable[_FakeEvent], BaseException | None]) -> SimpleNamespace:
    completions = _FakeCompletions(*(scripts or (([], None),)))
    models = _FakeModels([SimpleNamespace(id="test-model")])
    chat = SimpleNamespace(completions=completions)
    return SimpleNamespace(chat=chat, models=models)


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "http://local",
        "api_key": "test",
        "model": "gpt-4o-mini",
        "max_retries": 3,
        "retry_min_seconds": 0,
        "retry_max_seconds": 0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))


_MESSAGES = [{"role": "user", "content": "Hello"}]


@pytest.mark.asyncio
async def test_list_models_caches_results() -> None:
    payload = [SimpleNamespace(id="gpt-4o"), SimpleNamespace(id="gpt-4o-mini")]
    fake_models = _FakeModels(payload)
    fake_client = SimpleNamespace(
        chat=SimpleNamespace(completions=_FakeCompletions(([], None))),
        models=fake_models,
    )
    client = AIClient(_settings(model="stub"), client=cast(AsyncOpenAI, fake_client))

    first = await client.list_models()
    second = await client.list_models()

    assert first == ["gpt-4o", "gpt-4o-mini"]
    assert second == first  # cached result
    assert fake_models.calls == 1


@pytest.mark.asyncio
async def test_stream_chat_normalizes_content_and_refusal_events() -> None:
    events = [
        _FakeEvent(type="chunk"),
        _FakeEvent(type="content.delta", delta="Hello"),
        _FakeEvent(type="content.delta", delta=""),
        _FakeEvent(type="content.done", content="Hello"),
        _FakeEvent(type="refusal.delta", delta="No"),
        _FakeEvent(type="refusal.done", refusal="No thanks"),
    ]
    fake_client = _make_client((events, None))
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    received = [event async for event in client.stream_chat(_MESSAGES)]

    assert received == [
        AIStreamEvent(type="content.delta", content="Hello"),
        AIStreamEvent(type="content.done", content="Hello"),
        AIStreamEvent(type="refusal.delta", content="No"),
        AIStreamEvent(type="refusal.done", content="No thanks"),
    ]


@pytest.mark.asyncio
async def test_stream_chat_builds_payload() -> None:
    fake_client = _make_client(([_FakeEvent(type="content.delta", delta="x")], None))
    client = AIClient(
        _settings(metadata={"app": "scrivener"}),
        client=cast(AsyncOpenAI, fake_client),
    )

    async for _event in client.stream_chat(
        _MESSAGES, temperature=0.7, max_completion_tokens=150, metadata={"session": "gen-1"}
    ):
        pass

    call = fake_client.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["temperature"] == 0.7
    assert call["max_completion_tokens"] == 150
    assert call["metadata"] == {"app": "scrivener", "session": "gen-1"}
    assert call["messages"][0]["role"] == "user"


@pytest.mark.asyncio
async def test_stream_chat_omits_unset_parameters() -> None:
    fake_client = _make_client(([_FakeEvent(type="content.delta", delta="x")], None))
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    async for _event in client.stream_chat(_MESSAGES, temperature=None):
        pass

    call = fake_client.chat.completions.calls[0]
    assert "temperature" not in call
    assert "max_completion_tokens" not in call
    assert "metadata" not in call


@pytest.mark.asyncio
async def test_stream_chat_requires_messages() -> None:
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client()))

    generator = client.stream_chat(messages=[])
    with pytest.raises(ValueError):
        await generator.__anext__()


@pytest.mark.asyncio
async def test_stream_chat_retries_before_first_event() -> None:
    fake_client = _make_client(
        ([], _connection_error()),
        ([_FakeEvent(type="content.delta", delta="recovered")], None),
    )
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    received = [event.content async for event in client.stream_chat(_MESSAGES)]

    assert received == ["recovered"]
    assert len(fake_client.chat.completions.calls) == 2


@pytest.mark.asyncio
async def test_stream_chat_gives_up_after_max_retries() -> None:
    fake_client = _make_client(([], _connection_error()))
    client = AIClient(_settings(max_retries=2), client=cast(AsyncOpenAI, fake_client))

    with pytest.raises(APIConnectionError):
        async for _event in client.stream_chat(_MESSAGES):
            pass

    assert len(fake_client.chat.completions.calls) == 2


@pytest.mark.asyncio
async def test_stream_chat_does_not_replay_after_first_event() -> None:
    fake_client = _make_client(
        ([_FakeEvent(type="content.delta", delta="partial")], _connection_error()),
    )
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))
    received: list[str | None] = []

    with pytest.raises(StreamInterruptedError):
        async for event in client.stream_chat(_MESSAGES):
            received.append(event.content)

    assert received == ["partial"]
    assert len(fake_client.chat.completions.calls) == 1


@pytest.mark.asyncio
async def test_debug_logging_captures_prompt_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_client = _make_client(([_FakeEvent(type="content.done", content="done")], None))
    client = AIClient(_settings(model="debug", debug_logging=True), client=cast(AsyncOpenAI, fake_client))
    captured: dict[str, Any] = {}

    def _capture(payload: Any) -> None:
        captured["payload"] = payload

    monkeypatch.setattr(client, "_log_prompt_payload", _capture)

    async for _event in client.stream_chat(messages=_MESSAGES):
        pass

    assert "payload" in captured
    assert captured["payload"]["messages"][0]["content"] == "Hello"


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    class _StubAsyncOpenAI:
        def __init__(self) -> None:
            self.closed = False

        async def close(self) -> None:
            self.closed = True

    stub = _StubAsyncOpenAI()
    client = AIClient(_settings(model="stub-model"), client=cast(AsyncOpenAI, stub))

    await client.aclose()

    assert stub.closed is True
