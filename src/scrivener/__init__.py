"""Scrivener: controlled, reviewable AI continuation of text documents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
