"""Prompt templates for the continue-writing request."""

from __future__ import annotations

from typing import Any

DEFAULT_SENTENCE_HINT = "2-3"


def continue_writing_instructions(*, sentence_hint: str = DEFAULT_SENTENCE_HINT) -> str:
    """Return the system instructions for a continuation request."""
    return (
        "You are a helpful writing assistant. Continue the following text naturally and "
        "coherently. Only provide the continuation, do not repeat the original text. "
        "Keep the same tone, style, and language. "
        f"Provide {sentence_hint} sentences of continuation."
    )


def format_user_prompt(text: str) -> str:
    return f"Text to continue:\n{text}"


def build_continue_writing_messages(
    text: str,
    *,
    sentence_hint: str = DEFAULT_SENTENCE_HINT,
) -> list[dict[str, Any]]:
    """Build the chat messages asking the model to continue ``text``.

    Raises:
        ValueError: If ``text`` is blank; there is nothing to continue.
    """
    if not text or not text.strip():
        raise ValueError("Cannot continue writing from blank text")
    return [
        {"role": "system", "content": continue_writing_instructions(sentence_hint=sentence_hint)},
        {"role": "user", "content": format_user_prompt(text)},
    ]


__all__ = [
    "DEFAULT_SENTENCE_HINT",
    "continue_writing_instructions",
    "format_user_prompt",
    "build_continue_writing_messages",
]
