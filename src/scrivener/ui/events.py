"""Typed events exchanged between the workflow controller and front ends.

The controller publishes what happened (cancelled, applied, failed) along
with preview and lock changes; front ends subscribe to the classes they
render and never reach into the controller's internals.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for bus payloads.

    Subclasses setting ``quiet`` are published without debug logging; use it
    for per-chunk traffic.
    """

    quiet: ClassVar[bool] = False


@dataclass(slots=True)
class GenerationCancelled(Event):
    """Emitted when the user cancels an in-flight generation.

    Attributes:
        session_id: Identifier of the cancelled session, if known.
        partial_length: Length of the suggestion frozen for review.
    """

    session_id: str | None
    partial_length: int = 0


@dataclass(slots=True)
class SuggestionApplied(Event):
    """Emitted when an accepted suggestion becomes part of the document.

    Attributes:
        session_id: Identifier of the session that produced the suggestion.
        applied_length: Number of characters appended to the base content.
        partial: Whether the applied text came from a cancelled session.
    """

    session_id: str | None
    applied_length: int
    partial: bool = False


@dataclass(slots=True)
class GenerationFailed(Event):
    """Emitted when the workflow enters the error state.

    Attributes:
        error: Human-readable description of the failure.
    """

    error: str


@dataclass(slots=True)
class WorkflowStateChanged(Event):
    """Emitted after every state change of the workflow controller.

    Attributes:
        previous: Name of the state that was left.
        current: Name of the state that was entered.
    """

    previous: str
    current: str


@dataclass(slots=True)
class SuggestionUpdated(Event):
    """Emitted when a streamed fragment extends the suggestion preview.

    Attributes:
        session_id: Identifier of the session the fragment belongs to.
        piece: The fragment that was appended.
        text: The full suggestion accumulated so far.
    """

    quiet: ClassVar[bool] = True

    session_id: str | None
    piece: str
    text: str


@dataclass(slots=True)
class EditorLockChanged(Event):
    """Emitted when the editor lock state changes.

    Attributes:
        locked: Whether the editor is currently locked.
        reason: Why the editor is locked. ``"AI_TURN"`` while generating,
                ``"REVIEW_PENDING"`` while a suggestion awaits a decision,
                empty when unlocked.
    """

    locked: bool
    reason: str


class EventBus(Generic[E]):
    """Synchronous publish/subscribe hub keyed by event class.

    Bound methods are referenced weakly, so a subscriber that goes away is
    dropped on the next publish. Plain functions and lambdas are kept alive
    by the bus. Meant to be used from the event loop thread only.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Add ``handler`` for ``event_type``; duplicates are called once per subscription."""

        self._subscriptions.setdefault(event_type, []).append(_Subscription.of(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Drop the earliest subscription of ``handler``; unknown handlers are ignored."""

        entries = self._subscriptions.get(event_type, [])
        for position, entry in enumerate(entries):
            if entry.refers_to(handler):
                del entries[position]
                logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Call every live handler for ``type(event)`` in subscription order.

        Exceptions raised by a handler are logged and do not reach the
        publisher or stop delivery to the others.
        """

        event_type = type(event)
        entries = self._subscriptions.get(event_type)
        if not entries:
            if not event.quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return
        if not event.quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(entries))

        for entry in list(entries):
            handler = entry.target()
            if handler is None:
                entries.remove(entry)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("%s failed while handling %s", _describe(handler), event_type.__name__)

    def clear(self) -> None:
        self._subscriptions.clear()
        logger.debug("Event bus cleared")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Number of subscriptions for ``event_type``, or across all types."""

        if event_type is None:
            return sum(map(len, self._subscriptions.values()))
        return len(self._subscriptions.get(event_type, ()))


@dataclass(slots=True, frozen=True)
class _Subscription:
    """A handler held strongly or through :class:`weakref.WeakMethod`."""

    reference: Any
    weak: bool

    @classmethod
    def of(cls, handler: Handler) -> _Subscription:
        if inspect.ismethod(handler):
            try:
                return cls(WeakMethod(handler), weak=True)
            except TypeError:
                pass
        return cls(handler, weak=False)

    def target(self) -> Handler | None:
        return self.reference() if self.weak else self.reference

    def refers_to(self, handler: Handler) -> bool:
        current = self.target()
        return current is not None and current == handler


def _describe(handler: Handler) -> str:
    if inspect.ismethod(handler):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "GenerationCancelled",
    "SuggestionApplied",
    "GenerationFailed",
    "WorkflowStateChanged",
    "SuggestionUpdated",
    "EditorLockChanged",
]
