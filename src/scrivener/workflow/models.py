"""Workflow state, context and event models.

These dataclasses describe the data owned by :class:`WorkflowController`
and the events it consumes. User-issued events and the events routed from
an active generation session share one type hierarchy so they can travel
through the controller's single queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WorkflowState(Enum):
    """States of the controlled generation workflow.

    Values:
        IDLE: The user edits freely and may trigger a generation.
        GENERATING: A session is streaming fragments into the suggestion.
        REVIEWING_SUGGESTION: A complete or partial suggestion awaits a decision.
        ERROR: The last generation failed and awaits retry or dismissal.
    """

    IDLE = "idle"
    GENERATING = "generating"
    REVIEWING_SUGGESTION = "reviewingSuggestion"
    ERROR = "error"


@dataclass(slots=True)
class GenerationContext:
    """Data held by the workflow controller.

    Attributes:
        content: Authoritative document text as last known to the controller.
        base_content: Snapshot of ``content`` taken when the session started.
        suggested_content: Fragments accumulated from the active session.
        error: Description of the last failure, set only in the error state.
        is_partial_suggestion: True when the reviewed suggestion came from a
            cancellation instead of a natural completion.
    """

    content: str = ""
    base_content: str = ""
    suggested_content: str = ""
    error: str | None = None
    is_partial_suggestion: bool = False

    @property
    def has_content(self) -> bool:
        """Whether ``content`` holds anything other than whitespace."""
        return bool(self.content.strip())


# =============================================================================
# Events
# =============================================================================


@dataclass(slots=True)
class WorkflowEvent:
    """Base class for every event consumed by the workflow controller."""

    pass


@dataclass(slots=True)
class UpdateContent(WorkflowEvent):
    """The user edited the document; ``content`` is the full new text."""

    content: str


@dataclass(slots=True)
class ContinueWriting(WorkflowEvent):
    pass


@dataclass(slots=True)
class Chunk(WorkflowEvent):
    """One streamed fragment from a generation session."""

    piece: str
    session_id: str | None = None


@dataclass(slots=True)
class Done(WorkflowEvent):
    """The session completed; ``full_text`` is the whole generated text."""

    full_text: str
    session_id: str | None = None


@dataclass(slots=True)
class GenerationError(WorkflowEvent):
    """The session failed with a user-presentable ``message``."""

    message: str
    session_id: str | None = None


@dataclass(slots=True)
class Cancel(WorkflowEvent):
    pass


@dataclass(slots=True)
class Accept(WorkflowEvent):
    pass


@dataclass(slots=True)
class Reject(WorkflowEvent):
    pass


@dataclass(slots=True)
class Regenerate(WorkflowEvent):
    pass


@dataclass(slots=True)
class Retry(WorkflowEvent):
    pass


@dataclass(slots=True)
class DismissError(WorkflowEvent):
    pass


SESSION_EVENT_TYPES: tuple[type[WorkflowEvent], ...] = (Chunk, Done, GenerationError)


__all__ = [
    "WorkflowState",
    "GenerationContext",
    "WorkflowEvent",
    "UpdateContent",
    "ContinueWriting",
    "Chunk",
    "Done",
    "GenerationError",
    "Cancel",
    "Accept",
    "Reject",
    "Regenerate",
    "Retry",
    "DismissError",
    "SESSION_EVENT_TYPES",
]
