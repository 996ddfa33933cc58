"""Line-oriented terminal front end for the workflow controller."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Callable, Mapping, TextIO

from ..editor.document_model import TextDocument
from ..workflow.controller import WorkflowController
from ..workflow.models import (
    Accept,
    Cancel,
    ContinueWriting,
    DismissError,
    Regenerate,
    Reject,
    Retry,
    WorkflowEvent,
    WorkflowState,
)
from .events import (
    EditorLockChanged,
    GenerationCancelled,
    GenerationFailed,
    SuggestionApplied,
    SuggestionUpdated,
    WorkflowStateChanged,
)

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Generation cancelled"
APPLIED_MESSAGE = "AI suggestion applied"
FAILED_MESSAGE = "Something went wrong"

_EVENT_COMMANDS: Mapping[str, Callable[[], WorkflowEvent]] = {
    "/continue": ContinueWriting,
    "/cancel": Cancel,
    "/accept": Accept,
    "/reject": Reject,
    "/regenerate": Regenerate,
    "/retry": Retry,
    "/dismiss": DismissError,
}
_QUIT_COMMANDS = frozenset({"/quit", "/exit"})


class TerminalSession:
    """Read commands and text from a terminal and render workflow events.

    Plain lines are appended to the document while the editor is unlocked;
    lines starting with ``/`` are commands. Streamed fragments are written
    as they arrive so the suggestion preview grows in place.
    """

    def __init__(
        self,
        controller: WorkflowController,
        document: TextDocument,
        *,
        stream: TextIO | None = None,
        input_func: Callable[[str], str] = input,
    ) -> None:
        self._controller = controller
        self._document = document
        self._stream = stream or sys.stdout
        self._input = input_func
        self._preview_open = False
        bus = controller.event_bus
        bus.subscribe(SuggestionUpdated, self._on_suggestion_updated)
        bus.subscribe(GenerationCancelled, self._on_generation_cancelled)
        bus.subscribe(SuggestionApplied, self._on_suggestion_applied)
        bus.subscribe(GenerationFailed, self._on_generation_failed)
        bus.subscribe(WorkflowStateChanged, self._on_state_changed)
        bus.subscribe(EditorLockChanged, self._on_lock_changed)

    @property
    def controller(self) -> WorkflowController:
        return self._controller

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def handle_line(self, line: str) -> bool:
        """Process one input line; returns ``False`` when the session should end."""

        text = line.rstrip("\r\n")
        command = text.strip()
        if command.startswith("/"):
            return self._handle_command(command.split()[0].lower())
        if not command:
            return True
        if self._controller.is_editor_locked:
            self._write(f"Editor is locked while in {self._controller.state.value}; use /help.")
            return True
        current = self._document.get_content()
        separator = "\n" if current and not current.endswith("\n") else ""
        self._document.append(separator + text)
        self._controller.sync_from_document()
        return True

    def _handle_command(self, name: str) -> bool:
        if name in _QUIT_COMMANDS:
            self.close()
            return False
        if name == "/help":
            self._write(self.help_text())
            return True
        if name == "/show":
            self._show()
            return True
        factory = _EVENT_COMMANDS.get(name)
        if factory is None:
            self._write(f"Unknown command {name}; use /help.")
            return True
        if name == "/regenerate" and not self._regenerate_offered():
            self._write("Regenerate is not available for this suggestion.")
            return True
        previous = self._controller.state
        self._controller.send(factory())
        if self._controller.state is previous:
            LOGGER.debug("Command %s had no effect in state %s", name, previous.value)
            self._write(f"{name} is not available right now.")
        return True

    def help_text(self) -> str:
        state = self._controller.state
        if state is WorkflowState.GENERATING:
            commands = ["/cancel"]
        elif state is WorkflowState.REVIEWING_SUGGESTION:
            commands = ["/accept", "/reject"]
            if self._regenerate_offered():
                commands.append("/regenerate")
        elif state is WorkflowState.ERROR:
            commands = ["/retry", "/dismiss", "/continue"]
        else:
            commands = ["/continue"]
        commands.extend(["/show", "/help", "/quit"])
        return f"[{state.value}] commands: {' '.join(commands)}"

    def _regenerate_offered(self) -> bool:
        # a partial suggestion can only be accepted or rejected here
        return self._controller.can_regenerate and not self._controller.context.is_partial_suggestion

    def close(self) -> None:
        """Stop any running generation before the session ends."""

        if self._controller.matches(WorkflowState.GENERATING):
            self._controller.send(Cancel())

    async def run(self) -> None:
        """Read lines until EOF or a quit command, keeping the loop responsive."""

        loop = asyncio.get_running_loop()
        self._write(self.help_text())
        while True:
            try:
                line = await loop.run_in_executor(None, self._input, "")
            except EOFError:
                self.close()
                return
            if not self.handle_line(line):
                return

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _show(self) -> None:
        context = self._controller.context
        self._write(f"[{self._controller.state.value}]")
        self._write(context.content or "(empty document)")
        if context.suggested_content:
            label = "partial suggestion" if context.is_partial_suggestion else "suggestion"
            self._write(f"--- {label} ---")
            self._write(context.suggested_content)
        if context.error:
            self._write(f"--- error ---\n{context.error}")

    def _on_suggestion_updated(self, event: SuggestionUpdated) -> None:
        self._stream.write(event.piece)
        self._stream.flush()
        self._preview_open = True

    def _on_generation_cancelled(self, event: GenerationCancelled) -> None:
        self._write(CANCELLED_MESSAGE)

    def _on_suggestion_applied(self, event: SuggestionApplied) -> None:
        self._write(APPLIED_MESSAGE)

    def _on_generation_failed(self, event: GenerationFailed) -> None:
        self._write(f"{FAILED_MESSAGE}: {event.error}")

    def _on_state_changed(self, event: WorkflowStateChanged) -> None:
        if event.current != WorkflowState.GENERATING.value:
            self._write(self.help_text())

    def _on_lock_changed(self, event: EditorLockChanged) -> None:
        LOGGER.debug("Editor lock changed (locked=%s, reason=%s)", event.locked, event.reason)

    def _write(self, message: str) -> None:
        if self._preview_open:
            self._stream.write("\n")
            self._preview_open = False
        self._stream.write(message + "\n")
        self._stream.flush()


__all__ = [
    "TerminalSession",
    "CANCELLED_MESSAGE",
    "APPLIED_MESSAGE",
    "FAILED_MESSAGE",
]
