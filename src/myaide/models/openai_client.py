"""Production client that speaks the OpenAI Responses API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterator, Optional

from .llm_client import CompletionResult, LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_BASE_URL", "OpenAIClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

Transport = Callable[[Dict[str, Any]], str]


def _iter_text_parts(entries: Any) -> Iterator[str]:
    """Yield text fragments from Responses ``output`` or chat ``choices`` entries."""
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        parts = entry.get("content")
        if isinstance(parts, list):
            for part in parts:
                if not isinstance(part, dict):
                    continue
                if isinstance(part.get("json"), (dict, list)):
                    yield json.dumps(part["json"])
                elif isinstance(part.get("text"), str):
                    yield part["text"]
            continue
        message = entry.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            yield message["content"]
        elif isinstance(entry.get("text"), str):
            yield entry["text"]


def _usage_count(usage: Dict[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        value = usage.get(key)
        if isinstance(value, int):
            return value
    return None


class OpenAIClient(LLMClient):
    """Responses API client; ``transport`` replaces the HTTP call in tests."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = "gpt-4.1-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(
            model=model,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if transport is None and not self._api_key:
            raise ValueError("OPENAI_API_KEY is required to call the Responses API.")
        root = (base_url or os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self._endpoint = root if root.endswith("/responses") else f"{root}/responses"
        self._timeout = timeout
        self._send = transport or self._post

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _raw_invoke(self, payload: Dict[str, Any]) -> CompletionResult:
        try:
            body = self._send(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - transport implementations vary
            raise LLMTransportError(f"{type(error).__name__} while calling the model: {error}") from error
        return self._parse_response(body)

    def _post(self, payload: Dict[str, Any]) -> str:
        """POST ``payload`` to the Responses endpoint and return the body text."""
        if os.getenv("MYAIDE_DEBUG_PAYLOAD"):
            LOGGER.debug("Responses API payload:\n%s", json.dumps(payload, indent=2, sort_keys=True))
        request = urllib.request.Request(
            self._endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:  # noqa: S310
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="replace")
            raise LLMTransportError(f"Responses API returned HTTP {error.code}: {detail[:500]}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Could not reach {self._endpoint}: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"No response from {self._endpoint} within {self._timeout}s.") from error
        return body

    def _parse_response(self, body: str) -> CompletionResult:
        """Extract output text and token usage from a Responses API body."""
        if not body or not body.strip():
            raise LLMResponseFormatError("Model returned an empty response body.")
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            # Some proxies return the bare completion text.
            return CompletionResult(content=body, model=self.model)

        text = data.get("output_text")
        if not isinstance(text, str) or not text:
            for key in ("output", "outputs", "choices"):
                text = "".join(_iter_text_parts(data.get(key)))
                if text.strip():
                    break
        if not text or not text.strip():
            raise LLMResponseFormatError("Response did not contain any output text.")

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return CompletionResult(
            content=text,
            model=str(data.get("model") or self.model),
            usage_prompt_tokens=_usage_count(usage, "input_tokens", "prompt_tokens"),
            usage_completion_tokens=_usage_count(usage, "output_tokens", "completion_tokens"),
        )
