"""Document boundary and the in-memory text buffer behind it."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@runtime_checkable
class Document(Protocol):
    """Authoritative text store the workflow reads from and writes to."""

    def get_content(self) -> str:
        """Return the full document text."""
        ...

    def set_content(self, text: str) -> None:
        """Replace the full document text."""
        ...


@dataclass(slots=True)
class DocumentVersion:
    """Lightweight metadata describing a document snapshot."""

    document_id: str
    version_id: int
    content_hash: str


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class TextDocument:
    """Plain-text document implementing :class:`Document`.

    Every replacement bumps ``version_id`` and notifies change listeners,
    which is how a front end learns the workflow reconciled accepted text.
    """

    text: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    dirty: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)
    _listeners: list[Callable[[TextDocument], None]] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    @classmethod
    def from_path(cls, path: Path | str) -> TextDocument:
        """Load a UTF-8 text file into a new document."""

        resolved = Path(path).expanduser()
        text = resolved.read_text(encoding="utf-8")
        return cls(text=text, metadata=DocumentMetadata(path=resolved))

    def get_content(self) -> str:
        return self.text

    def set_content(self, text: str) -> None:
        """Replace the document text, mark it dirty and notify listeners."""

        if text == self.text:
            return
        self.text = text
        self.dirty = True
        self.metadata.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(text)
        LOGGER.debug(
            "Document %s replaced (version=%d, length=%d)",
            self.document_id,
            self.version_id,
            len(text),
        )
        for listener in list(self._listeners):
            listener(self)

    def append(self, text: str) -> None:
        self.set_content(self.text + text)

    def add_listener(self, listener: Callable[[TextDocument], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[TextDocument], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> Dict[str, Any]:
        """Return a serializable snapshot of the document."""

        payload: Dict[str, Any] = {
            "text": self.text,
            "dirty": self.dirty,
            "document_id": self.document_id,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
        }
        if self.metadata.path:
            payload["path"] = str(self.metadata.path)
        return payload

    def version_info(self) -> DocumentVersion:
        return DocumentVersion(
            document_id=self.document_id,
            version_id=self.version_id,
            content_hash=self.content_hash,
        )

    def version_signature(self) -> str:
        info = self.version_info()
        return f"{info.document_id}:{info.version_id}:{info.content_hash}"


__all__ = [
    "Document",
    "DocumentVersion",
    "DocumentMetadata",
    "TextDocument",
]
