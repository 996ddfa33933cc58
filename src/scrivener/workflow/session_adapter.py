"""Generation session adapter.

Owns the lifecycle of the single request the workflow has in flight and
translates the generation service's callbacks into workflow events.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from ..ai.errors import UNKNOWN_FAILURE_MESSAGE, GenerationFailure, describe_failure
from ..ai.generation_service import GenerationService, StreamCallbacks
from .models import Chunk, Done, GenerationError, WorkflowEvent

LOGGER = logging.getLogger(__name__)

Dispatch = Callable[[WorkflowEvent], None]


class SessionHandle:
    """One session against the generation service.

    The ``cancelled`` flag is the post-cancel guard: it is set before the
    service is asked to stop, and every callback checks it before anything
    is dispatched. A session also stops dispatching once it delivered its
    terminal event.
    """

    __slots__ = ("session_id", "prompt", "_dispatch", "_service_handle", "_cancelled", "_finished")

    def __init__(self, session_id: str, prompt: str, dispatch: Dispatch) -> None:
        self.session_id = session_id
        self.prompt = prompt
        self._dispatch = dispatch
        self._service_handle: Any = None
        self._cancelled = False
        self._finished = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._finished)

    @property
    def service_handle(self) -> Any:
        return self._service_handle

    def bind(self, service_handle: Any) -> None:
        self._service_handle = service_handle

    def mark_cancelled(self) -> None:
        self._cancelled = True

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=self._on_chunk,
            on_complete=self._on_complete,
            on_error=self._on_error,
        )

    def _on_chunk(self, piece: Any) -> None:
        if not self.active:
            LOGGER.debug("Dropping chunk from inactive session %s", self.session_id)
            return
        if not isinstance(piece, str):
            self.fail(GenerationFailure(f"Malformed chunk of type {type(piece).__name__}"))
            return
        self._dispatch(Chunk(piece=piece, session_id=self.session_id))

    def _on_complete(self, full_text: Any) -> None:
        if not self.active:
            LOGGER.debug("Dropping completion from inactive session %s", self.session_id)
            return
        if not isinstance(full_text, str):
            self.fail(GenerationFailure(f"Malformed completion of type {type(full_text).__name__}"))
            return
        self._finished = True
        self._dispatch(Done(full_text=full_text, session_id=self.session_id))

    def _on_error(self, message: Any) -> None:
        if not self.active:
            LOGGER.debug("Dropping error from inactive session %s", self.session_id)
            return
        if isinstance(message, BaseException):
            text = describe_failure(message)
        elif isinstance(message, str) and message.strip():
            text = message
        else:
            text = UNKNOWN_FAILURE_MESSAGE
        self._finished = True
        self._dispatch(GenerationError(message=text, session_id=self.session_id))

    def fail(self, exc: BaseException) -> None:
        """Report an adapter-side fault as the session's terminal error."""
        if not self.active:
            return
        LOGGER.warning("Generation session %s failed: %s", self.session_id, exc)
        self._finished = True
        self._dispatch(GenerationError(message=describe_failure(exc), session_id=self.session_id))


class GenerationSessionAdapter:
    """Sole bridge between the workflow controller and the generation service.

    At most one session is active: :meth:`start` cancels and discards the
    predecessor before the service is invoked again, whether or not the
    caller already cancelled it.
    """

    def __init__(self, service: GenerationService) -> None:
        self._service = service
        self._session: SessionHandle | None = None

    @property
    def session(self) -> SessionHandle | None:
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    def start(self, prompt: str, dispatch: Dispatch) -> SessionHandle:
        """Start a session for ``prompt`` routing its events to ``dispatch``."""

        if self._session is not None:
            self.cancel()
            self._session = None

        session = SessionHandle(f"gen-{uuid.uuid4().hex[:8]}", prompt, dispatch)
        self._session = session
        LOGGER.debug(
            "GenerationSessionAdapter.start: session_id=%s, prompt_length=%d",
            session.session_id,
            len(prompt),
        )
        try:
            session.bind(self._service.continue_writing(prompt, session.callbacks()))
        except Exception as exc:
            session.fail(exc)
        return session

    def cancel(self) -> None:
        """Cancel the current session; safe to call at any time, repeatedly."""

        session = self._session
        if session is None or session.cancelled:
            return
        # Guard first so callbacks racing the service cancel are filtered.
        session.mark_cancelled()
        handle = session.service_handle
        LOGGER.debug("GenerationSessionAdapter.cancel: session_id=%s", session.session_id)
        if handle is None:
            return
        try:
            self._service.cancel(handle)
        except Exception:
            LOGGER.warning(
                "Generation service failed to cancel session %s",
                session.session_id,
                exc_info=True,
            )


__all__ = ["GenerationSessionAdapter", "SessionHandle", "Dispatch"]
