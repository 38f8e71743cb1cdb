"""Drive the agent pipeline for one request, rolling back on failed validation."""

from __future__ import annotations

import contextvars
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from .agents import ADVISORY_AGENTS, AgentName
from .agents.analyzer import AnalyzerAgent
from .agents.base import Agent, AgentContext, AgentResult, AgentStatus, ConversationTurn, TokenUsage
from .agents.implementer import ImplementerAgent
from .agents.optimizer import OptimizerAgent
from .agents.planner import PlannerAgent
from .agents.reporter import ReporterAgent
from .agents.test_generator import TestGeneratorAgent
from .agents.validator import ValidatorAgent
from .config import Settings
from .context import WorkspaceScanner, build_workspace_summary, collect_relevant_code
from .decision import DecisionEngine, DecisionError, DecisionOutcome
from .models.llm_client import LLMClient, LLMClientError
from .models.openai_client import OpenAIClient
from .project_memory import MyAideManager, ProjectMemoryOutcome
from .runlog import RunLog, utc_timestamp, write_run_log
from .telemetry import emit_event, telemetry_scope
from .tools.rollback import RollbackReport, rollback_mutations
from .tools.shell import ShellTool
from .tools.workspace import ApprovalCallback, FileSystemTool, Mutation

__all__ = ["AGENT_CLASSES", "Notifier", "Observer", "Orchestrator", "RunOutcome", "build_client"]

LOGGER = logging.getLogger(__name__)

Observer = Callable[[AgentResult], None]
Notifier = Callable[[str], None]

AGENT_CLASSES: dict[AgentName, type[Agent]] = {
    AgentName.PLANNER: PlannerAgent,
    AgentName.IMPLEMENTER: ImplementerAgent,
    AgentName.ANALYZER: AnalyzerAgent,
    AgentName.TEST_GENERATOR: TestGeneratorAgent,
    AgentName.OPTIMIZER: OptimizerAgent,
    AgentName.VALIDATOR: ValidatorAgent,
    AgentName.REPORTER: ReporterAgent,
}

ROLLBACK_AGENT = "rollback"
DECISION_SCAN_DEPTH = 2


def build_client(settings: Settings) -> Optional[LLMClient]:
    """Return an OpenAI client for ``settings`` or ``None`` when no key is configured."""
    if not settings.openai_api_key:
        return None
    model = settings.model
    return OpenAIClient(
        api_key=model.api_key,
        base_url=model.base_url,
        model=model.name,
        timeout=model.timeout,
        temperature=model.temperature,
        max_output_tokens=model.max_output_tokens,
        max_attempts=model.max_attempts,
    )


@dataclass(slots=True)
class RunOutcome:
    """Final state of an orchestrated run."""

    context: AgentContext
    iterations: int
    rollback: Optional[RollbackReport] = None
    run_log: Optional[Path] = None
    feedback: list[str] = field(default_factory=list)
    run_id: str = ""
    notices: list[str] = field(default_factory=list)
    decision: Optional[DecisionOutcome] = None
    project_memory_generated: bool = False

    @property
    def results(self) -> list[AgentResult]:
        return list(self.context.history)

    def result_for(self, agent: AgentName | str) -> Optional[AgentResult]:
        name = agent.value if isinstance(agent, AgentName) else agent
        for result in reversed(self.context.history):
            if result.agent == name:
                return result
        return None

    @property
    def ok(self) -> bool:
        implementer = self.result_for(AgentName.IMPLEMENTER)
        validator = self.result_for(AgentName.VALIDATOR)
        return (
            implementer is not None
            and implementer.status is AgentStatus.SUCCESS
            and (validator is None or validator.ok)
        )

    @property
    def report(self) -> str:
        reporter = self.result_for(AgentName.REPORTER)
        return (reporter.details or reporter.summary) if reporter else ""


class Orchestrator:
    """Run planner, implementer, advisory agents, validator and reporter in order."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[LLMClient] = None,
        approve: ApprovalCallback | None = None,
        persist_run_log: bool = True,
    ) -> None:
        self._settings = settings
        self._client = client
        self._approve = approve
        self._persist_run_log = persist_run_log

    @classmethod
    def from_settings(cls, settings: Settings, *, approve: ApprovalCallback | None = None) -> "Orchestrator":
        """Convenience constructor used by the CLI."""
        return cls(settings, client=build_client(settings), approve=approve)

    @property
    def settings(self) -> Settings:
        return self._settings

    def run(
        self,
        request: str,
        observers: Iterable[Observer] = (),
        memory: Optional[list[ConversationTurn]] = None,
        notify: Optional[Notifier] = None,
    ) -> RunOutcome:
        """Execute the pipeline, refining up to ``refinement.max_iterations`` times when enabled.

        Before the first iteration the workspace's myAIDE.md is loaded (or
        generated) and the decision step classifies the request; both feed
        every iteration's implementer prompt. ``notify`` receives their
        status messages.
        """
        observers = list(observers)
        refinement = self._settings.refinement
        max_iterations = refinement.max_iterations if refinement.enabled else 1
        started_at = utc_timestamp()
        surviving: list[Mutation] = []
        feedback: list[str] = []
        notices: list[str] = []
        rollback: Optional[RollbackReport] = None
        usage = TokenUsage()
        run_id = uuid.uuid4().hex[:12]
        iteration = 0

        def notice(message: str) -> None:
            LOGGER.info("%s", message)
            notices.append(message)
            if notify is not None:
                notify(message)

        with telemetry_scope(run_id=run_id):
            project_memory = self._load_project_memory(usage, notice)
            decision = self._decide(request, memory or [], usage, notice)
            while True:
                iteration += 1
                context = self._new_context(
                    request,
                    memory,
                    feedback,
                    usage=usage,
                    project_memory=project_memory.content,
                    decision=decision,
                )
                LOGGER.info("Starting iteration %d/%d of run %s", iteration, max_iterations, run_id)
                with telemetry_scope(iteration=iteration):
                    rollback = self._run_once(context, observers)
                if rollback is None:
                    surviving.extend(context.applied_mutations())
                feedback = self._refinement_feedback(context)
                if not feedback or iteration >= max_iterations:
                    break
                emit_event("refinement_iteration", iteration=iteration, issues=len(feedback))
            emit_event("run_completed", iterations=iteration, rolled_back=rollback is not None)

        if memory is not None:
            implementer = next((r for r in context.history if r.agent == AgentName.IMPLEMENTER.value), None)
            memory.append(ConversationTurn(role="user", content=request))
            memory.append(
                ConversationTurn(role="assistant", content=implementer.summary if implementer else "No changes made.")
            )

        outcome = RunOutcome(
            context=context,
            iterations=iteration,
            rollback=rollback,
            feedback=feedback,
            run_id=run_id,
            notices=notices,
            decision=decision,
            project_memory_generated=project_memory.generated,
        )
        if self._persist_run_log and not self._settings.runtime.dry_run:
            log = RunLog(
                request=request,
                started_at=started_at,
                finished_at=utc_timestamp(),
                dry_run=self._settings.runtime.dry_run,
                iterations=iteration,
                plan=list(context.plan),
                results=[result.to_dict() for result in context.history],
                mutations=surviving,
                rolled_back=rollback is not None,
                usage={"prompt": usage.prompt, "completion": usage.completion},
            )
            outcome.run_log = write_run_log(self._settings.workspace, log)
            LOGGER.info("Run log written to %s", outcome.run_log)
        return outcome

    def _filesystem(self) -> FileSystemTool:
        settings = self._settings
        return FileSystemTool(settings.workspace, dry_run=settings.runtime.dry_run, approve=self._approve)

    def _load_project_memory(self, usage: TokenUsage, notice: Notifier) -> ProjectMemoryOutcome:
        config = self._settings.project_memory
        if not config.enabled:
            return ProjectMemoryOutcome()
        manager = MyAideManager(
            self._settings.workspace,
            client=self._client,
            filesystem=self._filesystem(),
            filename=config.filename,
        )
        outcome = manager.ensure()
        for message in outcome.messages:
            notice(message)
        if outcome.completion is not None:
            usage.add(outcome.completion)
        emit_event(
            "project_memory_checked",
            generated=outcome.generated,
            needs_update=outcome.needs_update,
            loaded=outcome.content is not None,
        )
        return outcome

    def _decide(
        self,
        request: str,
        memory: Sequence[ConversationTurn],
        usage: TokenUsage,
        notice: Notifier,
    ) -> Optional[DecisionOutcome]:
        config = self._settings.decision
        if not config.enabled or self._client is None:
            return None
        scanner = WorkspaceScanner(self._settings.workspace)
        engine = DecisionEngine(self._client, max_files=config.max_files)
        try:
            decision, completion = engine.decide(
                request,
                workspace_summary=scanner.summary(),
                files=scanner.iter_files(max_depth=DECISION_SCAN_DEPTH),
                memory=memory,
            )
        except (DecisionError, LLMClientError) as error:
            LOGGER.warning("Decision step failed: %s", error)
            notice(f"Decision step failed: {error}")
            emit_event("decision_failed", error=type(error).__name__)
            return None
        usage.add(completion)
        notice(decision.headline())
        if decision.operations:
            notice("\n".join(operation.describe() for operation in decision.operations))
        emit_event(
            "decision_completed",
            intent=decision.intent,
            confidence=decision.confidence,
            operations=len(decision.operations),
        )
        return decision

    def _new_context(
        self,
        request: str,
        memory: Optional[list[ConversationTurn]],
        feedback: Sequence[str],
        *,
        usage: Optional[TokenUsage] = None,
        project_memory: Optional[str] = None,
        decision: Optional[DecisionOutcome] = None,
    ) -> AgentContext:
        settings = self._settings
        workspace = settings.workspace
        return AgentContext(
            request=request,
            workspace=workspace,
            settings=settings,
            memory=list(memory or []),
            usage=usage if usage is not None else TokenUsage(),
            filesystem=self._filesystem(),
            shell=ShellTool(workspace),
            validation_command=settings.validation.command,
            refinement_feedback="\n".join(f"- {line}" for line in feedback) or None,
            project_memory=project_memory,
            decision=decision,
        )

    def _agent(self, name: AgentName, context: AgentContext) -> Agent:
        return AGENT_CLASSES[name](context, client=self._client)

    def _record(self, context: AgentContext, result: AgentResult, observers: Sequence[Observer]) -> AgentResult:
        context.register_result(result)
        emit_event("agent_completed", agent=result.agent, status=result.status.value, mutations=len(result.mutations))
        for observer in observers:
            observer(result)
        return result

    def _run_once(self, context: AgentContext, observers: Sequence[Observer]) -> Optional[RollbackReport]:
        """Run one pass of the pipeline; return the rollback report when changes were undone."""
        context.workspace_summary = build_workspace_summary(context.workspace)
        context.code_scan = collect_relevant_code(context.request, context.workspace)

        self._record(context, self._agent(AgentName.PLANNER, context).run(), observers)
        implementer = self._record(context, self._agent(AgentName.IMPLEMENTER, context).run(), observers)
        if implementer.status is AgentStatus.FAILURE:
            self._record(context, self._agent(AgentName.REPORTER, context).run(), observers)
            return None

        agents = [self._agent(name, context) for name in ADVISORY_AGENTS]
        with ThreadPoolExecutor(max_workers=len(agents), thread_name_prefix="myaide-agent") as pool:
            # Telemetry scope fields are context-local; each worker runs in a copy.
            futures = [pool.submit(contextvars.copy_context().run, agent.run) for agent in agents]
            for future in futures:
                self._record(context, future.result(), observers)

        validator = self._record(context, self._agent(AgentName.VALIDATOR, context).run(), observers)
        rollback: Optional[RollbackReport] = None
        if validator.status is AgentStatus.FAILURE and not self._settings.runtime.dry_run:
            rollback = self._rollback(context, observers)

        self._record(context, self._agent(AgentName.REPORTER, context).run(), observers)
        return rollback

    def _rollback(self, context: AgentContext, observers: Sequence[Observer]) -> RollbackReport:
        filesystem = context.filesystem or FileSystemTool(context.workspace)
        mutations = context.applied_mutations()
        LOGGER.warning("Validation failed; rolling back %d mutation(s)", len(mutations))
        report = rollback_mutations(filesystem, mutations)
        status = AgentStatus.SUCCESS if report.ok else AgentStatus.FAILURE
        details = "\n".join(f"{path}: {error}" for path, error in report.failed.items()) or None
        self._record(
            context,
            AgentResult(agent=ROLLBACK_AGENT, status=status, summary=f"Rolled back changes: {report.summary()}.", details=details),
            observers,
        )
        return report

    def _refinement_feedback(self, context: AgentContext) -> list[str]:
        """Collect the issues that should trigger another refinement pass."""
        refinement = self._settings.refinement
        issues: list[str] = []
        for result in context.history:
            if result.agent == AgentName.IMPLEMENTER.value and result.status is AgentStatus.FAILURE:
                issues.append(f"implementer failed: {result.summary}")
            elif (
                refinement.require_validation
                and result.agent == AgentName.VALIDATOR.value
                and result.status is AgentStatus.FAILURE
            ):
                detail = f" ({result.details.strip()[-500:]})" if result.details else ""
                issues.append(f"validation failed: {result.summary}{detail}")
            elif (
                refinement.require_no_critical_issues
                and result.agent in (AgentName.ANALYZER.value, AgentName.OPTIMIZER.value)
                and "critical" in f"{result.summary}\n{result.details or ''}".lower()
            ):
                issues.append(f"{result.agent} reported critical issues: {result.summary}")
        return issues
