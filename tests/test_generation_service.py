"""Tests for the OpenAI-backed generation service."""

from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest

from scrivener.ai.client import AIClient, AIStreamEvent
from scrivener.ai.errors import GenerationFailure
from scrivener.ai.generation_service import (
    GenerationService,
    OpenAIGenerationService,
    StreamCallbacks,
)

from tests.helpers import FakeStreamingClient, delta


class _Collector:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.completed: list[str] = []
        self.errors: list[str] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=self.chunks.append,
            on_complete=self.completed.append,
            on_error=self.errors.append,
        )


def _service(client: FakeStreamingClient, **kwargs: Any) -> OpenAIGenerationService:
    return OpenAIGenerationService(cast(AIClient, client), **kwargs)


def test_satisfies_protocol() -> None:
    assert isinstance(_service(FakeStreamingClient()), GenerationService)


@pytest.mark.asyncio
async def test_streams_chunks_then_completes() -> None:
    client = FakeStreamingClient(events=[delta("Hello"), delta(" world"), AIStreamEvent(type="content.done")])
    collector = _Collector()
    service = _service(client)

    handle = service.continue_writing("Once upon a time ", collector.callbacks())
    await handle.task

    assert collector.chunks == ["Hello", " world"]
    assert collector.completed == ["Hello world"]
    assert collector.errors == []
    assert handle.done is True
    assert client.closed is True


@pytest.mark.asyncio
async def test_request_uses_prompt_and_sampling_settings() -> None:
    client = FakeStreamingClient(events=[delta(" more")])
    service = _service(client, temperature=0.3, max_completion_tokens=42)

    handle = service.continue_writing("Once upon a time", _Collector().callbacks())
    await handle.task

    call = client.calls[0]
    assert call["temperature"] == 0.3
    assert call["max_completion_tokens"] == 42
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1]["content"] == "Text to continue:\nOnce upon a time"


@pytest.mark.asyncio
async def test_first_fragment_gets_leading_space() -> None:
    client = FakeStreamingClient(events=[delta("and"), delta("then")])
    collector = _Collector()

    handle = _service(client).continue_writing("Once upon a time", collector.callbacks())
    await handle.task

    assert collector.chunks == [" and", "then"]
    assert collector.completed == [" andthen"]


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", ["Once upon a time\n", "Once upon a time "])
async def test_no_leading_space_when_prompt_ends_in_whitespace(prompt: str) -> None:
    client = FakeStreamingClient(events=[delta("and")])
    collector = _Collector()

    handle = _service(client).continue_writing(prompt, collector.callbacks())
    await handle.task

    assert collector.chunks == ["and"]


@pytest.mark.asyncio
async def test_leading_space_can_be_disabled() -> None:
    client = FakeStreamingClient(events=[delta("and")])
    collector = _Collector()

    handle = _service(client, ensure_leading_space=False).continue_writing("Once", collector.callbacks())
    await handle.task

    assert collector.chunks == ["and"]


@pytest.mark.asyncio
async def test_empty_output_is_an_error() -> None:
    client = FakeStreamingClient(events=[delta("  "), AIStreamEvent(type="content.done")])
    collector = _Collector()

    handle = _service(client).continue_writing("Once ", collector.callbacks())
    await handle.task

    assert collector.completed == []
    assert collector.errors == ["No text generated"]


@pytest.mark.asyncio
async def test_refusal_is_an_error() -> None:
    client = FakeStreamingClient(events=[AIStreamEvent(type="refusal.done", content="I can't help with that")])
    collector = _Collector()

    handle = _service(client).continue_writing("Once", collector.callbacks())
    await handle.task

    assert collector.errors == ["I can't help with that"]


@pytest.mark.asyncio
async def test_stream_failure_reports_error_after_chunks() -> None:
    client = FakeStreamingClient(events=[delta(" a")], error=GenerationFailure("stream broke"))
    collector = _Collector()

    handle = _service(client).continue_writing("Once", collector.callbacks())
    await handle.task

    assert collector.chunks == [" a"]
    assert collector.errors == ["stream broke"]
    assert collector.completed == []


@pytest.mark.asyncio
async def test_blank_prompt_reports_error() -> None:
    collector = _Collector()

    handle = _service(FakeStreamingClient()).continue_writing("   ", collector.callbacks())
    await handle.task

    assert collector.errors == ["Cannot continue writing from blank text"]


@pytest.mark.asyncio
async def test_cancel_silences_request() -> None:
    gate = asyncio.Event()
    client = FakeStreamingClient(events=[delta(" a"), delta(" b")], gate=gate, pause_after=1)
    collector = _Collector()
    service = _service(client)

    handle = service.continue_writing("Once", collector.callbacks())
    while not collector.chunks:
        await asyncio.sleep(0)
    service.cancel(handle)
    service.cancel(handle)
    gate.set()
    with pytest.raises(asyncio.CancelledError):
        await handle.task

    assert handle.cancelled is True
    assert collector.chunks == [" a"]
    assert collector.completed == []
    assert collector.errors == []
    assert client.closed is True


@pytest.mark.asyncio
async def test_cancel_flag_checked_between_events() -> None:
    collector = _Collector()
    service = _service(FakeStreamingClient(events=[delta(" a"), delta(" b")]))

    handle = service.continue_writing("Once", collector.callbacks())
    handle.cancelled = True
    await handle.task

    assert collector.chunks == []
    assert collector.completed == []


def test_cancel_accepts_missing_handle() -> None:
    _service(FakeStreamingClient()).cancel(None)
