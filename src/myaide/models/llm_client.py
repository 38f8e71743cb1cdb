"""Typed client base class shared by all language-model integrations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Sequence

__all__ = [
    "ChatMessage",
    "CompletionRequest",
    "CompletionResult",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
]

LOGGER = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the service response carries no usable text."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries on transport failures."""


@dataclass(slots=True)
class ChatMessage:
    """Single conversation turn sent to the model."""

    role: Role
    content: str


@dataclass(slots=True)
class CompletionResult:
    """Text returned by the model plus token accounting when available."""

    content: str
    model: str = ""
    usage_prompt_tokens: Optional[int] = None
    usage_completion_tokens: Optional[int] = None


@dataclass(slots=True)
class CompletionRequest:
    """Transport-agnostic completion request."""

    messages: list[ChatMessage]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a payload for the Responses API."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": [
                {
                    "role": message.role,
                    "content": [
                        {
                            "type": "output_text" if message.role == "assistant" else "input_text",
                            "text": message.content,
                        }
                    ],
                }
                for message in self.messages
            ],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_output_tokens:
            payload["max_output_tokens"] = self.max_output_tokens
        if self.metadata:
            payload["metadata"] = {key: str(value)[:512] for key, value in self.metadata.items()}
        return payload


class LLMClient:
    """High-level completion helper with transport retries."""

    def __init__(
        self,
        model: str,
        *,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    @property
    def max_output_tokens(self) -> int:
        return self._max_output_tokens

    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CompletionResult:
        """Send ``messages`` and return the model's reply."""
        request = CompletionRequest(
            messages=list(messages),
            temperature=self._temperature if temperature is None else temperature,
            max_output_tokens=max_output_tokens or self._max_output_tokens,
            metadata=dict(metadata or {}),
        )
        payload = request.to_payload(self._model)
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = self._raw_invoke(payload)
            except LLMTransportError as error:
                last_error = error
                LOGGER.warning("LLM transport failed (attempt %d/%d): %s", attempt, self._max_attempts, error)
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            if not result.model:
                result.model = self._model
            return result
        raise LLMRetryError(
            f"Model {self._model} did not respond after {self._max_attempts} attempt(s)."
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> CompletionResult:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
