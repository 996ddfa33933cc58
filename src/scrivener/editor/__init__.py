"""Editor package containing the document model."""

from .document_model import Document, DocumentMetadata, DocumentVersion, TextDocument

__all__ = ["Document", "DocumentMetadata", "DocumentVersion", "TextDocument"]
