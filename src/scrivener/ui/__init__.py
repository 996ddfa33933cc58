"""UI package: the notification event bus and the terminal front end.

Import ``TerminalSession`` from :mod:`scrivener.ui.terminal`; this package
must stay importable from :mod:`scrivener.workflow.controller`.
"""

from .events import EventBus

__all__ = ["EventBus"]
