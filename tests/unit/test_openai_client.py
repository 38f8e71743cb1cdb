from __future__ import annotations

import json
from typing import Any

import pytest

from myaide.models.llm_client import ChatMessage, LLMResponseFormatError, LLMRetryError, LLMTransportError
from myaide.models.openai_client import OpenAIClient


def _responses_body(text: str) -> str:
    response = {
        "id": "resp_mock",
        "object": "response",
        "model": "gpt-test",
        "output": [
            {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": text}],
            }
        ],
        "usage": {"input_tokens": 12, "output_tokens": 5},
    }
    return json.dumps(response)


def test_client_extracts_text_and_usage_from_responses_api() -> None:
    captured: list[dict[str, Any]] = []

    def transport(payload: dict[str, Any]) -> str:
        captured.append(payload)
        return _responses_body("1. Do the thing")

    client = OpenAIClient(model="gpt-test", transport=transport)
    result = client.complete(
        [ChatMessage(role="system", content="plan"), ChatMessage(role="user", content="add a flag")],
        temperature=0.0,
        metadata={"agent": "planner"},
    )

    assert result.content == "1. Do the thing"
    assert result.model == "gpt-test"
    assert (result.usage_prompt_tokens, result.usage_completion_tokens) == (12, 5)
    payload = captured[0]
    assert payload["temperature"] == 0.0
    assert payload["metadata"] == {"agent": "planner"}
    assert payload["input"][1]["content"][0] == {"type": "input_text", "text": "add a flag"}


def test_chat_completion_bodies_are_understood() -> None:
    body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "hello"}}]})
    client = OpenAIClient(transport=lambda _: body)

    assert client.complete([ChatMessage(role="user", content="hi")]).content == "hello"


def test_response_without_text_is_rejected() -> None:
    client = OpenAIClient(transport=lambda _: json.dumps({"output": []}))

    with pytest.raises(LLMResponseFormatError):
        client.complete([ChatMessage(role="user", content="hi")])


def test_transport_failures_are_retried_then_raised() -> None:
    calls: list[int] = []

    def transport(_: dict[str, Any]) -> str:
        calls.append(1)
        raise LLMTransportError("connection reset")

    client = OpenAIClient(transport=transport, max_attempts=2, retry_delay=0)

    with pytest.raises(LLMRetryError):
        client.complete([ChatMessage(role="user", content="hi")])
    assert len(calls) == 2


def test_default_transport_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        OpenAIClient()
    assert OpenAIClient(api_key="sk-test", base_url="https://proxy.local/v1/").endpoint == (
        "https://proxy.local/v1/responses"
    )
