from __future__ import annotations

import pytest

from myaide.agents.base import ConversationTurn
from myaide.decision import DECISION_AGENT, DecisionEngine, DecisionError, DecisionOperation, parse_decision

DECISION_REPLY = """```json
{
  "intent": "mixed",
  "confidence": 0.82,
  "rationale": "Calculator exists; docs are new.",
  "operations": [
    {"action": "modify", "path": "src/tiny_app/calculator.py", "reason": "add subtract"},
    {"action": "create", "path": "docs/usage.md"},
  ]
}
```"""


def test_parse_decision_is_lenient() -> None:
    outcome = parse_decision(
        {
            "intent": "rewrite",
            "confidence": 1.7,
            "operations": [
                {"action": "delete", "path": "  old.py  ", "reason": "unused"},
                {"action": "rename", "path": "x.py"},
                "modify everything",
                {"action": "modify", "path": ""},
            ],
        }
    )

    assert outcome.intent == "modify"
    assert outcome.confidence == 1.0
    assert outcome.rationale == "No rationale provided."
    assert outcome.operations == [
        DecisionOperation(action="delete", path="old.py", reason="unused"),
        DecisionOperation(action="modify"),
    ]
    assert parse_decision({"confidence": True}).confidence == 0.5
    with pytest.raises(DecisionError):
        parse_decision(["not", "an", "object"])


def test_outcome_renders_headline_and_operations() -> None:
    outcome = parse_decision(
        {
            "intent": "modify",
            "confidence": 0.9,
            "rationale": "Only one file changes.",
            "operations": [
                {"action": "modify", "path": "a.py", "reason": "fix bug"},
                {"action": "create"},
                {"action": "delete", "path": "a.py"},
            ],
        }
    )

    assert outcome.headline() == "Decision: MODIFY (confidence 90%)"
    assert outcome.render() == (
        "Decision: MODIFY (confidence 90%)\n"
        "Rationale: Only one file changes.\n"
        "- MODIFY a.py: fix bug\n"
        "- CREATE (unspecified)\n"
        "- DELETE a.py"
    )
    assert outcome.paths_for("modify", "delete") == ["a.py"]
    assert outcome.to_dict()["operations"][0] == {"action": "modify", "path": "a.py", "reason": "fix bug"}


def test_engine_recovers_fenced_reply_and_builds_prompt(scripted_client: type) -> None:
    client = scripted_client({DECISION_AGENT: [DECISION_REPLY]})
    memory = [ConversationTurn(role="user", content=f"turn {index}") for index in range(6)]

    outcome, completion = DecisionEngine(client, max_files=2).decide(
        "Add subtract and document it",
        workspace_summary="Workspace root: /tmp/ws",
        files=["pyproject.toml", "src/tiny_app/calculator.py", "src/tiny_app/__init__.py"],
        memory=memory,
    )

    assert outcome.intent == "mixed"
    assert outcome.confidence == pytest.approx(0.82)
    assert [operation.path for operation in outcome.operations] == ["src/tiny_app/calculator.py", "docs/usage.md"]
    assert completion.usage_prompt_tokens == 10
    prompt = client.prompts_for(DECISION_AGENT)[0]
    assert "Known files (2 shown):\npyproject.toml\nsrc/tiny_app/calculator.py" in prompt
    assert "__init__.py" not in prompt
    assert "User: turn 2" in prompt and "User: turn 1" not in prompt


def test_engine_reports_empty_workspace(scripted_client: type) -> None:
    client = scripted_client({DECISION_AGENT: ['{"intent": "create", "operations": []}']})

    outcome, _ = DecisionEngine(client).decide("Start a project", workspace_summary="empty", files=[])

    assert outcome.intent == "create"
    assert "No files present in workspace." in client.prompts_for(DECISION_AGENT)[0]


def test_engine_raises_on_unusable_reply(scripted_client: type) -> None:
    client = scripted_client({DECISION_AGENT: ["I think you should modify things."]})

    with pytest.raises(DecisionError) as excinfo:
        DecisionEngine(client).decide("Do it", workspace_summary="", files=[])

    assert "invalid JSON" in str(excinfo.value)
