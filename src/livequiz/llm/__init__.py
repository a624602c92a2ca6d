"""Clients for the external generative and extraction services."""

from livequiz.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    Message,
)
from livequiz.llm.extraction import (
    ExtractionClient,
    ExtractionError,
    OpenAIExtractionClient,
    RemoteFile,
)

__all__ = [
    "LLMClient",
    "LLMConfig",
    "LLMConnectionError",
    "LLMError",
    "LLMResponseError",
    "Message",
    "ExtractionClient",
    "ExtractionError",
    "OpenAIExtractionClient",
    "RemoteFile",
]
