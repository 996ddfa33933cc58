"""Generation service producing streamed continuations.

A service performs one request per :meth:`continue_writing` call and
reports through push-style callbacks: an ordered series of fragments,
then exactly one completion or error. After :meth:`cancel` it reports
nothing at all.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from .client import AIClient
from .errors import GenerationFailure, describe_failure
from .prompts import DEFAULT_SENTENCE_HINT, build_continue_writing_messages

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamCallbacks:
    """Callbacks a generation service reports through."""

    on_chunk: Callable[[str], None]
    on_complete: Callable[[str], None]
    on_error: Callable[[str], None]


@runtime_checkable
class GenerationService(Protocol):
    """Boundary of the component that actually generates text."""

    def continue_writing(self, prompt: str, callbacks: StreamCallbacks) -> Any:
        """Start one request and return a handle accepted by :meth:`cancel`."""
        ...

    def cancel(self, handle: Any) -> None:
        """Stop the request behind ``handle``; idempotent."""
        ...


@dataclass(slots=True)
class GenerationHandle:
    """Cancellable handle for one request of :class:`OpenAIGenerationService`."""

    request_id: str = field(default_factory=lambda: f"req-{uuid.uuid4().hex[:8]}")
    task: asyncio.Task[None] | None = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


class OpenAIGenerationService:
    """Generation service backed by an OpenAI-compatible chat endpoint.

    Every request runs as its own task on the running asyncio loop. The
    handle's cancelled flag is checked after each awaited step, so a
    cancelled request returns without firing callbacks even when the
    transport has not honoured the task cancellation yet.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        temperature: float | None = 0.7,
        max_completion_tokens: int | None = 150,
        sentence_hint: str = DEFAULT_SENTENCE_HINT,
        ensure_leading_space: bool = True,
    ) -> None:
        self._client = client
        self._temperature = temperature
        self._max_completion_tokens = max_completion_tokens
        self._sentence_hint = sentence_hint
        self._ensure_leading_space = ensure_leading_space

    def continue_writing(self, prompt: str, callbacks: StreamCallbacks) -> GenerationHandle:
        loop = asyncio.get_running_loop()
        handle = GenerationHandle()
        handle.task = loop.create_task(
            self._run(prompt, callbacks, handle),
            name=f"scrivener-generation-{handle.request_id}",
        )
        LOGGER.debug(
            "Generation request %s started (prompt_length=%d)",
            handle.request_id,
            len(prompt),
        )
        return handle

    def cancel(self, handle: GenerationHandle | None) -> None:
        if handle is None or handle.cancelled:
            return
        LOGGER.debug("Cancelling generation request %s", handle.request_id)
        handle.cancel()

    async def _run(self, prompt: str, callbacks: StreamCallbacks, handle: GenerationHandle) -> None:
        pieces: list[str] = []
        try:
            messages = build_continue_writing_messages(prompt, sentence_hint=self._sentence_hint)
            stream = self._client.stream_chat(
                messages,
                temperature=self._temperature,
                max_completion_tokens=self._max_completion_tokens,
            )
            async with aclosing(stream):
                async for event in stream:
                    if handle.cancelled:
                        return
                    if event.type == "refusal.done":
                        raise GenerationFailure(event.content or "The model refused to continue the text")
                    if event.type != "content.delta" or not event.content:
                        continue
                    piece = event.content
                    if not pieces and self._needs_leading_space(prompt, piece):
                        piece = " " + piece
                    pieces.append(piece)
                    callbacks.on_chunk(piece)

            if handle.cancelled:
                return
            full_text = "".join(pieces)
            if not full_text.strip():
                raise GenerationFailure("No text generated")
            callbacks.on_complete(full_text)
        except asyncio.CancelledError:
            LOGGER.debug("Generation request %s cancelled", handle.request_id)
            raise
        except Exception as exc:
            if handle.cancelled:
                LOGGER.debug("Ignoring failure of cancelled request %s: %s", handle.request_id, exc)
                return
            LOGGER.warning("Generation request %s failed: %s", handle.request_id, exc)
            callbacks.on_error(describe_failure(exc))

    def _needs_leading_space(self, prompt: str, piece: str) -> bool:
        """Whether the first fragment needs a space to join the prompt.

        A space is added only when neither side has whitespace at the seam: a
        prompt ending in whitespace, or a fragment starting with it, is left
        as is.
        """

        if not self._ensure_leading_space:
            return False
        if piece[:1].isspace() or not prompt or prompt[-1:].isspace():
            return False
        return True


__all__ = [
    "StreamCallbacks",
    "GenerationService",
    "GenerationHandle",
    "OpenAIGenerationService",
]
