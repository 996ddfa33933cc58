"""Failure types raised by the generation stack.

Everything that goes wrong while producing a suggestion is reduced to a
single user-presentable message before it reaches the workflow controller;
:func:`describe_failure` is that reduction.
"""

from __future__ import annotations

import asyncio

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError

UNKNOWN_FAILURE_MESSAGE = "Unknown error occurred"


class GenerationFailure(Exception):
    """The generation service could not produce a suggestion.

    Attributes:
        message: Human-readable description shown to the user.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StreamInterruptedError(GenerationFailure):
    """The stream broke after fragments were already delivered.

    Such a stream is never replayed, since replaying would deliver the
    same fragments twice.
    """


def describe_failure(exc: BaseException) -> str:
    """Return the user-presentable message for ``exc``."""

    if isinstance(exc, GenerationFailure):
        return exc.message or UNKNOWN_FAILURE_MESSAGE
    if isinstance(exc, APIStatusError):
        return _status_error_message(exc)
    if isinstance(exc, (APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return "The generation request timed out"
    if isinstance(exc, APIConnectionError):
        return "Unable to reach the generation service"
    text = str(exc).strip()
    return text or UNKNOWN_FAILURE_MESSAGE


def _status_error_message(exc: APIStatusError) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        detail = body.get("error", body)
        if isinstance(detail, dict):
            message = detail.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
    status = getattr(exc, "status_code", None)
    return f"API error: {status}" if status is not None else UNKNOWN_FAILURE_MESSAGE


__all__ = [
    "GenerationFailure",
    "StreamInterruptedError",
    "describe_failure",
    "UNKNOWN_FAILURE_MESSAGE",
]
