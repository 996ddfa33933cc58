"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable

from scrivener.ai.client import AIStreamEvent
from scrivener.ai.generation_service import StreamCallbacks
from scrivener.ui.events import Event, EventBus


@dataclass
class ManualRequest:
    """One request captured by :class:`ManualGenerationService`.

    The helper methods fire the captured callbacks directly, even after the
    request was cancelled, which is how tests emulate a service that keeps
    talking after it was told to stop.
    """

    prompt: str
    callbacks: StreamCallbacks
    cancelled: bool = False

    def chunk(self, *pieces: Any) -> None:
        for piece in pieces:
            self.callbacks.on_chunk(piece)

    def complete(self, full_text: Any) -> None:
        self.callbacks.on_complete(full_text)

    def error(self, message: Any) -> None:
        self.callbacks.on_error(message)


class ManualGenerationService:
    """Generation service whose requests are driven by the test.

    Example:
        service = ManualGenerationService()
        adapter = GenerationSessionAdapter(service)
        ...
        service.latest.chunk("a", "b")
        service.latest.complete("ab")
    """

    def __init__(self, *, start_error: Exception | None = None, cancel_error: Exception | None = None) -> None:
        self.requests: list[ManualRequest] = []
        self.cancelled: list[ManualRequest] = []
        self.start_error = start_error
        self.cancel_error = cancel_error

    @property
    def latest(self) -> ManualRequest:
        return self.requests[-1]

    def continue_writing(self, prompt: str, callbacks: StreamCallbacks) -> ManualRequest:
        if self.start_error is not None:
            raise self.start_error
        request = ManualRequest(prompt=prompt, callbacks=callbacks)
        self.requests.append(request)
        return request

    def cancel(self, handle: ManualRequest) -> None:
        handle.cancelled = True
        self.cancelled.append(handle)
        if self.cancel_error is not None:
            raise self.cancel_error


class EventRecorder:
    """Subscribe to bus event types and keep everything published."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Event] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


@dataclass
class FakeStreamingClient:
    """Stand-in for :class:`AIClient` yielding scripted stream events.

    ``gate`` pauses the stream after ``pause_after`` events until the test
    sets it; ``error`` is raised once the scripted events are exhausted.
    """

    events: Iterable[AIStreamEvent] = ()
    error: Exception | None = None
    gate: asyncio.Event | None = None
    pause_after: int = 0
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False
    shut_down: bool = False

    async def stream_chat(self, messages: Any, **kwargs: Any) -> AsyncIterator[AIStreamEvent]:
        self.calls.append({"messages": list(messages), **kwargs})
        try:
            for index, event in enumerate(self.events):
                if self.gate is not None and index == self.pause_after:
                    await self.gate.wait()
                yield event
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True

    async def aclose(self) -> None:
        self.shut_down = True


def delta(text: str) -> AIStreamEvent:
    return AIStreamEvent(type="content.delta", content=text)


async def wait_until(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    """Yield to the running loop until ``predicate`` holds."""

    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached while the loop ran")
