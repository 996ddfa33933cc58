"""Controlled generation workflow: state machine and session adapter."""

from .controller import Transition, WorkflowController
from .models import (
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
from .session_adapter import GenerationSessionAdapter, SessionHandle

__all__ = [
    "WorkflowController",
    "Transition",
    "GenerationSessionAdapter",
    "SessionHandle",
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
]
