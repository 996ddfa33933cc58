"""Workflow controller for controlled, reviewable text generation.

The controller is a finite-state machine over :class:`WorkflowState`.
User events and the events routed from the active generation session go
through one FIFO queue and are processed one at a time to completion, so
context mutations never interleave. Generated text reaches the document
only through an explicit ACCEPT.

Transition table::

    Idle        UpdateContent                 -> Idle
    Idle        ContinueWriting  [has text]   -> Generating
    Generating  Chunk                         -> Generating
    Generating  Done                          -> ReviewingSuggestion
    Generating  GenerationError               -> Error
    Generating  Cancel                        -> ReviewingSuggestion (partial)
    Reviewing   Accept                        -> Idle
    Reviewing   Reject                        -> Idle
    Reviewing   Regenerate       [policy]     -> Generating
    Error       Retry            [has text]   -> Generating
    Error       DismissError                  -> Idle
    Error       UpdateContent                 -> Idle
    Error       ContinueWriting  [has text]   -> Generating
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping

from ..editor.document_model import Document
from ..ui.events import (
    EditorLockChanged,
    Event,
    EventBus,
    GenerationCancelled,
    GenerationFailed,
    SuggestionApplied,
    SuggestionUpdated,
    WorkflowStateChanged,
)
from .models import (
    SESSION_EVENT_TYPES,
    Accept,
    Cancel,
    Chunk,
    ContinueWriting,
    DismissError,
    Done,
    GenerationContext,
    GenerationError,
    Regenerate,
    Reject,
    Retry,
    UpdateContent,
    WorkflowEvent,
    WorkflowState,
)
from .session_adapter import GenerationSessionAdapter

LOGGER = logging.getLogger(__name__)

Action = Callable[[Any], None]
Guard = Callable[[WorkflowEvent], bool]


@dataclass(frozen=True, slots=True)
class Transition:
    """One row of the transition table.

    Attributes:
        target: State entered after the action ran.
        action: Callable mutating the context for this transition.
        guard: Optional predicate; the event is ignored when it fails.
    """

    target: WorkflowState
    action: Action
    guard: Guard | None = None


class WorkflowController:
    """Finite-state coordinator for one generation at a time.

    Args:
        adapter: Session adapter bridging to the generation service. It is
            constructed once by the caller and owned by this controller.
        document: Optional authoritative document; receives accepted text
            when the workflow returns to idle.
        event_bus: Bus receiving notifications and preview/lock updates.
        allow_partial_regenerate: Whether REGENERATE is accepted while the
            reviewed suggestion is partial (came from a cancellation).

    Events Emitted:
        - WorkflowStateChanged: After every state change
        - EditorLockChanged: When entering or leaving the locked states
        - SuggestionUpdated: For each applied chunk
        - GenerationCancelled: When a running generation is cancelled
        - SuggestionApplied: When a suggestion is accepted
        - GenerationFailed: When the error state is entered
    """

    def __init__(
        self,
        adapter: GenerationSessionAdapter,
        *,
        document: Document | None = None,
        event_bus: EventBus | None = None,
        allow_partial_regenerate: bool = True,
    ) -> None:
        self._adapter = adapter
        self._document = document
        self._bus = event_bus or EventBus()
        self._allow_partial_regenerate = allow_partial_regenerate
        self._state = WorkflowState.IDLE
        self._context = GenerationContext()
        self._session_id: str | None = None
        self._queue: deque[WorkflowEvent] = deque()
        self._processing = False
        self._outbox: list[Event] = []
        self._table = self._build_table()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def context(self) -> GenerationContext:
        """A copy of the current context."""
        return replace(self._context)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def session_id(self) -> str | None:
        """Identifier of the session whose events are currently accepted."""
        return self._session_id

    @property
    def allow_partial_regenerate(self) -> bool:
        return self._allow_partial_regenerate

    @property
    def can_generate(self) -> bool:
        return self._state is WorkflowState.IDLE and self._context.has_content

    @property
    def can_regenerate(self) -> bool:
        return self._state is WorkflowState.REVIEWING_SUGGESTION and self._regenerate_allowed(Regenerate())

    @property
    def is_editor_locked(self) -> bool:
        return self._state in (WorkflowState.GENERATING, WorkflowState.REVIEWING_SUGGESTION)

    def matches(self, state: WorkflowState) -> bool:
        return self._state is state

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def send(self, event: WorkflowEvent) -> None:
        """Queue ``event`` and process the queue unless already processing.

        Events sent while another event is being processed (for example by
        a transition action) run after it completes, in FIFO order.
        """
        self._queue.append(event)
        if self._processing:
            return
        self._processing = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            self._processing = False

    def sync_from_document(self) -> None:
        """Send the attached document's text as an UPDATE_CONTENT event."""
        if self._document is None:
            return
        self.send(UpdateContent(content=self._document.get_content()))

    def _process(self, event: WorkflowEvent) -> None:
        transition = self._table.get(self._state, {}).get(type(event))
        if transition is None:
            LOGGER.debug(
                "WorkflowController: ignoring %s in state %s",
                type(event).__name__,
                self._state.value,
            )
            return
        if isinstance(event, SESSION_EVENT_TYPES) and self._is_stale(event):
            LOGGER.debug(
                "WorkflowController: dropping %s from stale session %s",
                type(event).__name__,
                getattr(event, "session_id", None),
            )
            return
        if transition.guard is not None and not transition.guard(event):
            LOGGER.debug(
                "WorkflowController: guard rejected %s in state %s",
                type(event).__name__,
                self._state.value,
            )
            return

        source = self._state
        target = transition.target
        self._outbox.clear()
        if source is not target and source is WorkflowState.GENERATING:
            # Leaving Generating always closes the session, even after Done/Error.
            self._adapter.cancel()
        transition.action(event)
        if source is not target:
            self._state = target
            LOGGER.debug(
                "WorkflowController: %s --%s--> %s",
                source.value,
                type(event).__name__,
                target.value,
            )
            self._enter(source, target)
        self._flush()

    def _is_stale(self, event: WorkflowEvent) -> bool:
        session_id = getattr(event, "session_id", None)
        return session_id is not None and session_id != self._session_id

    def _enter(self, source: WorkflowState, target: WorkflowState) -> None:
        if target is WorkflowState.IDLE:
            self._reconcile_document()
        self._bus.publish(WorkflowStateChanged(previous=source.value, current=target.value))
        if target is WorkflowState.GENERATING:
            self._bus.publish(EditorLockChanged(locked=True, reason="AI_TURN"))
        elif target is WorkflowState.REVIEWING_SUGGESTION:
            self._bus.publish(EditorLockChanged(locked=True, reason="REVIEW_PENDING"))
        elif source in (WorkflowState.GENERATING, WorkflowState.REVIEWING_SUGGESTION):
            self._bus.publish(EditorLockChanged(locked=False, reason=""))

    def _emit(self, event: Event) -> None:
        self._outbox.append(event)

    def _flush(self) -> None:
        pending, self._outbox = self._outbox, []
        for event in pending:
            self._bus.publish(event)

    def _reconcile_document(self) -> None:
        if self._document is None:
            return
        if self._document.get_content() != self._context.content:
            LOGGER.debug(
                "WorkflowController: syncing document (length=%d)",
                len(self._context.content),
            )
            self._document.set_content(self._context.content)

    # ------------------------------------------------------------------
    # Transition table
    # ------------------------------------------------------------------

    def _build_table(self) -> Mapping[WorkflowState, Mapping[type[WorkflowEvent], Transition]]:
        start = Transition(WorkflowState.GENERATING, self._begin_generation, self._has_content)
        return {
            WorkflowState.IDLE: {
                UpdateContent: Transition(WorkflowState.IDLE, self._update_content),
                ContinueWriting: start,
            },
            WorkflowState.GENERATING: {
                Chunk: Transition(WorkflowState.GENERATING, self._append_chunk),
                Done: Transition(WorkflowState.REVIEWING_SUGGESTION, self._complete),
                GenerationError: Transition(WorkflowState.ERROR, self._fail),
                Cancel: Transition(WorkflowState.REVIEWING_SUGGESTION, self._cancel),
            },
            WorkflowState.REVIEWING_SUGGESTION: {
                Accept: Transition(WorkflowState.IDLE, self._accept),
                Reject: Transition(WorkflowState.IDLE, self._reject),
                Regenerate: Transition(
                    WorkflowState.GENERATING, self._regenerate, self._regenerate_allowed
                ),
            },
            WorkflowState.ERROR: {
                Retry: start,
                DismissError: Transition(WorkflowState.IDLE, self._dismiss_error),
                UpdateContent: Transition(WorkflowState.IDLE, self._update_content_from_error),
                ContinueWriting: start,
            },
        }

    # Guards -----------------------------------------------------------

    def _has_content(self, _event: WorkflowEvent) -> bool:
        return self._context.has_content

    def _regenerate_allowed(self, _event: WorkflowEvent) -> bool:
        return self._allow_partial_regenerate or not self._context.is_partial_suggestion

    # Actions ----------------------------------------------------------

    def _update_content(self, event: UpdateContent) -> None:
        self._context.content = event.content

    def _update_content_from_error(self, event: UpdateContent) -> None:
        self._context.content = event.content
        self._context.error = None
        self._context.is_partial_suggestion = False

    def _begin_generation(self, _event: WorkflowEvent) -> None:
        ctx = self._context
        ctx.base_content = ctx.content
        ctx.suggested_content = ""
        ctx.error = None
        ctx.is_partial_suggestion = False
        self._start_session()

    def _regenerate(self, _event: WorkflowEvent) -> None:
        ctx = self._context
        ctx.suggested_content = ""
        ctx.error = None
        ctx.is_partial_suggestion = False
        self._start_session()

    def _start_session(self) -> None:
        handle = self._adapter.start(self._context.base_content, self.send)
        self._session_id = handle.session_id

    def _append_chunk(self, event: Chunk) -> None:
        self._context.suggested_content += event.piece
        self._emit(
            SuggestionUpdated(
                session_id=self._session_id,
                piece=event.piece,
                text=self._context.suggested_content,
            )
        )

    def _complete(self, event: Done) -> None:
        self._context.suggested_content = event.full_text
        self._context.is_partial_suggestion = False

    def _fail(self, event: GenerationError) -> None:
        self._context.error = event.message
        self._context.suggested_content = ""
        self._emit(GenerationFailed(error=event.message))
        LOGGER.warning(
            "WorkflowController: generation %s failed: %s",
            self._session_id,
            event.message,
        )

    def _cancel(self, _event: WorkflowEvent) -> None:
        # The adapter is cancelled on exit from Generating; suggested_content stays frozen.
        self._context.is_partial_suggestion = True
        self._emit(
            GenerationCancelled(
                session_id=self._session_id,
                partial_length=len(self._context.suggested_content),
            )
        )

    def _accept(self, _event: WorkflowEvent) -> None:
        ctx = self._context
        applied_length = len(ctx.suggested_content)
        partial = ctx.is_partial_suggestion
        ctx.content = ctx.base_content + ctx.suggested_content
        ctx.suggested_content = ""
        ctx.base_content = ""
        ctx.is_partial_suggestion = False
        self._emit(
            SuggestionApplied(
                session_id=self._session_id,
                applied_length=applied_length,
                partial=partial,
            )
        )

    def _reject(self, _event: WorkflowEvent) -> None:
        ctx = self._context
        ctx.content = ctx.base_content
        ctx.suggested_content = ""
        ctx.base_content = ""
        ctx.is_partial_suggestion = False

    def _dismiss_error(self, _event: WorkflowEvent) -> None:
        ctx = self._context
        ctx.error = None
        ctx.suggested_content = ""
        ctx.is_partial_suggestion = False


__all__ = ["WorkflowController", "Transition"]
