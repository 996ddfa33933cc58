"""Streaming chat client for OpenAI-compatible completion endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import StreamInterruptedError

LOGGER = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class AIStreamEvent:
    """One event of a streamed completion, reduced to the fields we consume.

    ``type`` mirrors the SDK's stream event names (``content.delta``,
    ``content.done``, ``refusal.delta``, ``refusal.done``).
    """

    type: str
    content: str | None = None
    parsed: Any | None = None


def _content_delta(raw: Any) -> AIStreamEvent | None:
    text = getattr(raw, "delta", None)
    return AIStreamEvent("content.delta", str(text)) if text else None


def _content_done(raw: Any) -> AIStreamEvent:
    return AIStreamEvent("content.done", getattr(raw, "content", None), getattr(raw, "parsed", None))


def _refusal_delta(raw: Any) -> AIStreamEvent:
    return AIStreamEvent("refusal.delta", getattr(raw, "delta", None))


def _refusal_done(raw: Any) -> AIStreamEvent:
    return AIStreamEvent("refusal.done", getattr(raw, "refusal", None))


# SDK event types we surface; everything else (chunk, logprobs, tool calls) is dropped.
_EVENT_READERS: Mapping[str, Callable[[Any], AIStreamEvent | None]] = {
    "content.delta": _content_delta,
    "content.done": _content_done,
    "refusal.delta": _refusal_delta,
    "refusal.done": _refusal_done,
}


class AIClient:
    """Wraps :class:`openai.AsyncOpenAI` with streaming, retries and a model cache."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client if client is not None else self._connect(settings)
        self._known_models: List[str] | None = None
        self._models_guard = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = 0.7,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Yield normalized events for one chat completion.

        Transient transport failures are retried while nothing has been
        yielded yet. Once the caller has seen output, a failure surfaces as
        :class:`StreamInterruptedError` so text is never delivered twice.
        """

        request = self._request_body(messages, temperature, max_completion_tokens, metadata)
        request.update(extra_params)
        LOGGER.debug(
            "Opening completion stream (model=%s, messages=%d)",
            request["model"],
            len(request["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(request)

        delivered = False
        async for attempt in self._retry_policy():
            with attempt:
                try:
                    async with self._client.chat.completions.stream(**request) as stream:
                        async for raw in stream:
                            reader = _EVENT_READERS.get(getattr(raw, "type", None) or "")
                            event = reader(raw) if reader else None
                            if event is None:
                                continue
                            delivered = True
                            yield event
                except TRANSIENT_ERRORS as exc:
                    if delivered:
                        raise StreamInterruptedError(
                            f"The generation stream was interrupted: {exc}"
                        ) from exc
                    LOGGER.debug("Completion stream failed before any output (attempt %d): %s",
                                 attempt.retry_state.attempt_number, exc)
                    raise
                return

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return model ids advertised by the endpoint, cached after the first call."""

        async with self._models_guard:
            if self._known_models is None or force_refresh:
                listing = await self._client.models.list()
                self._known_models = [entry.id for entry in listing.data if getattr(entry, "id", None)]
            return list(self._known_models)

    async def aclose(self) -> None:
        """Release the HTTP connection pool of the underlying SDK client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            pending = close()
        except Exception as exc:  # pragma: no cover
            LOGGER.debug("Could not close AI client: %s", exc)
            return
        if inspect.isawaitable(pending):
            await pending

    @staticmethod
    def _connect(settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers or {}) or None,
        )

    def _retry_policy(self) -> AsyncRetrying:
        options = self._settings
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, options.max_retries)),
            wait=wait_exponential(multiplier=options.retry_min_seconds, max=options.retry_max_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
        )

    def _request_body(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        temperature: float | None,
        max_completion_tokens: int | None,
        metadata: Mapping[str, str] | None,
    ) -> Dict[str, Any]:
        conversation = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not conversation:
            raise ValueError("At least one message is required to start a chat")

        body: Dict[str, Any] = {"model": self._settings.model, "messages": conversation}
        tags = {**(self._settings.metadata or {}), **(metadata or {})}
        if tags:
            body["metadata"] = tags
        if temperature is not None:
            body["temperature"] = temperature
        if max_completion_tokens is not None:
            body["max_completion_tokens"] = max_completion_tokens
        return body

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            rendered = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            rendered = repr(payload)
        LOGGER.debug("Prompt payload:\n%s", rendered)
