"""AI client, prompts and the generation service."""

from .client import AIClient, AIStreamEvent, ClientSettings
from .errors import GenerationFailure, StreamInterruptedError, describe_failure
from .generation_service import GenerationHandle, GenerationService, OpenAIGenerationService, StreamCallbacks

__all__ = [
    "AIClient",
    "AIStreamEvent",
    "ClientSettings",
    "GenerationFailure",
    "StreamInterruptedError",
    "describe_failure",
    "GenerationHandle",
    "GenerationService",
    "OpenAIGenerationService",
    "StreamCallbacks",
]
