"""Agent names, ordering and the concrete agent implementations."""

from __future__ import annotations

from enum import Enum


class AgentName(str, Enum):
    """Enumeration of the agents taking part in a run."""

    PLANNER = "planner"
    IMPLEMENTER = "implementer"
    ANALYZER = "analyzer"
    TEST_GENERATOR = "test-generator"
    OPTIMIZER = "optimizer"
    VALIDATOR = "validator"
    REPORTER = "reporter"


AGENT_SEQUENCE = [
    AgentName.PLANNER,
    AgentName.IMPLEMENTER,
    AgentName.ANALYZER,
    AgentName.TEST_GENERATOR,
    AgentName.OPTIMIZER,
    AgentName.VALIDATOR,
    AgentName.REPORTER,
]

ADVISORY_AGENTS = [
    AgentName.ANALYZER,
    AgentName.TEST_GENERATOR,
    AgentName.OPTIMIZER,
]


__all__ = ["ADVISORY_AGENTS", "AGENT_SEQUENCE", "AgentName"]
