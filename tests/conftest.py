"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from scrivener.editor.document_model import TextDocument
from scrivener.ui.events import EventBus
from scrivener.workflow.controller import WorkflowController
from scrivener.workflow.session_adapter import GenerationSessionAdapter

from tests.helpers import ManualGenerationService


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("SCRIVENER_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SCRIVENER_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def service() -> ManualGenerationService:
    return ManualGenerationService()


@pytest.fixture
def adapter(service: ManualGenerationService) -> GenerationSessionAdapter:
    return GenerationSessionAdapter(service)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def document() -> TextDocument:
    return TextDocument()


@pytest.fixture
def controller(
    adapter: GenerationSessionAdapter, document: TextDocument, event_bus: EventBus
) -> WorkflowController:
    return WorkflowController(adapter, document=document, event_bus=event_bus)
