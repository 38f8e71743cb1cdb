"""Convenience exports for myaide LLM client implementations."""

from .llm_client import (
    ChatMessage,
    CompletionRequest,
    CompletionResult,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
)
from .openai_client import OpenAIClient

__all__ = [
    "ChatMessage",
    "CompletionRequest",
    "CompletionResult",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OpenAIClient",
]
