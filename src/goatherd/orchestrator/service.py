"""Orchestration step loop.

``OrchestrationService.run`` turns one user message into a bounded, strictly
sequential series of planner-chosen actions, recording each completed step in
the run ledger before the next one is planned.

State machine for one step:
    PLANNING → (DELEGATING | IO | INSTALLING | RESPONDING) → PLANNING

The loop ends when the planner answers the user (``respond_user``/``finish``),
when the step or delegation budget runs out (degraded), on a planning error
(failed) or on cancellation (cancelled). The ledger is persisted in every case.
"""

import asyncio
import contextlib
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar, assert_never

from goatherd.config import AppConfig, GoatherdPaths
from goatherd.domain import (
    DEFAULT_AGENT_ID,
    AgentDescriptor,
    AgentRoster,
    CamelModel,
    PlanningError,
    ProviderError,
    RunCancelledError,
    SessionStoreError,
    normalize_agent_id,
)
from goatherd.orchestrator.actions import (
    CommunicationMode,
    DelegateToAgent,
    Finish,
    InstallSkill,
    OrchestrationAction,
    ReadWorkspaceFile,
    RespondUser,
    SessionPolicy,
    WriteWorkspaceFile,
)
from goatherd.orchestrator.ledger import (
    AgentCall,
    ArtifactIO,
    LedgerError,
    LedgerStore,
    OrchestrationRunLedger,
    OrchestrationStepLog,
    RunStatus,
    TaskThread,
    utc_now,
)
from goatherd.orchestrator.planner import OrchestrationPlannerService, Planner
from goatherd.orchestrator.routing import RoutingService
from goatherd.orchestrator.text import clamp_text, summarize_text
from goatherd.orchestrator.types import (
    LoopState,
    OrchestrationRunEvent,
    RoutingDecision,
    RunEventHook,
    RunEventType,
    RunState,
)
from goatherd.orchestrator.workspace import SkillInstaller, WorkspaceFiles
from goatherd.providers import ExecutionResult, InvokeOptions, ProviderRegistry, extract_session_hint
from goatherd.sessions import SessionEnabled, SessionInfo, SessionService
from goatherd.telemetry import (
    DELEGATION_LIMIT_REACHED,
    DELEGATION_STARTED,
    ORCHESTRATOR_FATAL_ERROR,
    PLANNER_DECISION,
    PLANNER_STARTED,
    PLANNING_ERROR,
    PROVIDER_INVOCATION_COMPLETED,
    PROVIDER_INVOCATION_FAILED,
    PROVIDER_INVOCATION_STARTED,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_DEGRADED,
    RUN_FAILED,
    RUN_STARTED,
    STEP_BUDGET_EXHAUSTED,
    STEP_EXECUTED,
    get_logger,
)
from goatherd.telemetry.trace import TraceContext

log = get_logger(__name__)

T = TypeVar("T")

MAX_ORCHESTRATION_STEPS = 12
MAX_DELEGATION_STEPS = 8
SHARED_NOTES_MAX_CHARS = 12_000
RECENT_EVENTS_WINDOW = 10

READ_NOTE_MAX_CHARS = 2500
DELEGATION_NOTE_MAX_CHARS = 2000
HANDOFF_NOTES_MAX_CHARS = 4000
BUDGET_SYNTHESIS_MAX_CHARS = 2000

DELEGATION_LIMIT_MESSAGE = "Stopped orchestration after reaching delegation safety limit."
STEP_LIMIT_EMPTY_MESSAGE = "Orchestration stopped at safety step limit without a final response."


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError("Run was cancelled")

    async def wait(self) -> None:
        await self._event.wait()


class OrchestrationRunResult(CamelModel):
    """Outcome of one run. ``final_message`` is empty only when the run failed or was cancelled."""

    run_id: str
    entry_agent_id: str
    status: RunStatus
    final_message: str
    ledger: OrchestrationRunLedger
    routing: RoutingDecision | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.DEGRADED)


@dataclass
class _RunContext:
    ledger: OrchestrationRunLedger
    roster: AgentRoster
    token: CancellationToken
    workspace: WorkspaceFiles
    trace: TraceContext
    on_event: RunEventHook | None = None
    project_path: str | None = None
    routing: RoutingDecision | None = None
    entry_session: SessionInfo | None = None
    shared_notes: list[str] = field(default_factory=list)
    recent_events: list[str] = field(default_factory=list)
    delegation_count: int = 0

    @property
    def run_id(self) -> str:
        return self.ledger.run_id

    @property
    def entry_agent_id(self) -> str:
        return self.ledger.entry_agent_id


@dataclass
class _ActionOutcome:
    agent_call: AgentCall | None = None
    artifact_io: ArtifactIO | None = None
    note: str | None = None
    final_message: str | None = None


def render_delegate_message(
    step: int,
    user_message: str,
    instruction: str,
    expected_output: str | None,
    shared_notes: list[str],
    outbound_path: Path | None = None,
) -> str:
    lines = [
        f"Delegation step: {step}",
        "",
        "Original user request:",
        user_message,
        "",
        "Delegation instruction:",
        instruction,
        "",
    ]
    if expected_output and expected_output.strip():
        lines += ["Expected output:", expected_output.strip(), ""]
    if shared_notes:
        lines += [
            "Shared notes from previous steps:",
            clamp_text("\n\n".join(shared_notes), HANDOFF_NOTES_MAX_CHARS),
            "",
        ]
    if outbound_path is not None:
        lines += [
            f"Coordination file: {outbound_path}",
            "You may use this markdown artifact for durable handoff context.",
            "",
        ]
    lines.append("Return a concise result for the orchestrator.")
    return "\n".join(lines)


def render_handoff_document(
    step: int,
    user_message: str,
    instruction: str,
    expected_output: str | None,
    shared_notes: list[str],
) -> str:
    return "\n".join(
        [
            f"# Delegation Step {step}",
            "",
            "## User Request",
            user_message,
            "",
            "## Delegation Instruction",
            instruction,
            "",
            "## Expected Output",
            (expected_output or "").strip() or "(not specified)",
            "",
            "## Prior Notes",
            clamp_text("\n\n".join(shared_notes), HANDOFF_NOTES_MAX_CHARS)
            if shared_notes
            else "(none)",
        ]
    )


def render_project_prompt(project_path: str) -> str:
    return (
        f"Project context: the user is working in {project_path}. "
        "Treat it as the working directory for this task."
    )


def response_text(result: ExecutionResult) -> str:
    """Text of a delegated agent's answer, falling back to its stderr."""
    stdout = result.stdout.strip()
    if stdout:
        return stdout
    stderr = result.stderr.strip()
    return f"[stderr] {stderr}" if stderr else ""


def transcript_reply(result: ExecutionResult) -> str:
    """Assistant turn recorded in the session transcript."""
    stdout = result.stdout.strip()
    if stdout:
        return stdout
    stderr = result.stderr.strip()
    if stderr:
        return f"[Provider error code {result.code}] {stderr}"
    return f"[Provider exited with code {result.code}]"


class OrchestrationService:
    """Drives planner-chosen actions for one user message at a time.

    Runs are independent and may execute concurrently; they share only the
    session store and the ledger directory.

    Args:
        providers: Provider registry used for delegated agent calls.
        paths: On-disk layout (workspaces, sessions, run ledgers).
        planner: Decision source; defaults to ``OrchestrationPlannerService``.
        sessions: Session service; defaults to an enabled ``SessionService``.
        routing: Routing engine used for the run's routing hint.
        ledger_store: Ledger persistence; defaults to ``paths.runs_dir``.
        skill_installer: Collaborator for ``install_skill`` actions.
        default_agent_id: Fallback entry agent.
        max_steps: Step budget per run.
        max_delegations: Delegation safety limit per run.
        shared_notes_max_chars: Clamp for notes handed to the planner.
        recent_events_window: Number of recent events handed to the planner.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        paths: GoatherdPaths,
        planner: Planner | None = None,
        sessions: SessionService | None = None,
        routing: RoutingService | None = None,
        ledger_store: LedgerStore | None = None,
        skill_installer: SkillInstaller | None = None,
        default_agent_id: str = DEFAULT_AGENT_ID,
        max_steps: int = MAX_ORCHESTRATION_STEPS,
        max_delegations: int = MAX_DELEGATION_STEPS,
        shared_notes_max_chars: int = SHARED_NOTES_MAX_CHARS,
        recent_events_window: int = RECENT_EVENTS_WINDOW,
    ) -> None:
        self.providers = providers
        self.paths = paths
        self.planner = planner or OrchestrationPlannerService(providers)
        self.sessions = sessions or SessionService()
        self.routing = routing or RoutingService()
        self.ledger_store = ledger_store or LedgerStore(paths.runs_dir)
        self.skill_installer = skill_installer or SkillInstaller(paths.workspaces_dir)
        self.default_agent_id = normalize_agent_id(default_agent_id) or DEFAULT_AGENT_ID
        self.max_steps = max_steps
        self.max_delegations = max_delegations
        self.shared_notes_max_chars = shared_notes_max_chars
        self.recent_events_window = recent_events_window

    @classmethod
    def from_settings(
        cls,
        settings: AppConfig,
        providers: ProviderRegistry,
        planner: Planner | None = None,
    ) -> "OrchestrationService":
        return cls(
            providers=providers,
            paths=settings.paths,
            planner=planner,
            sessions=SessionService.from_settings(settings),
            routing=RoutingService.from_settings(settings),
            default_agent_id=settings.default_agent_id,
            max_steps=settings.orchestrator_max_steps,
            max_delegations=settings.orchestrator_max_delegations,
            shared_notes_max_chars=settings.orchestrator_shared_notes_max_chars,
            recent_events_window=settings.orchestrator_recent_events_window,
        )

    def route(
        self,
        message: str,
        roster: AgentRoster,
        entry_agent_id: str | None = None,
        previous_agent_id: str | None = None,
    ) -> RoutingDecision:
        """Routing decision for a message without running anything."""
        return self.routing.route(
            message,
            roster,
            default_agent_id=self.default_agent_id,
            entry_agent_id=entry_agent_id,
            previous_agent_id=previous_agent_id,
        )

    async def run(
        self,
        entry_agent_id: str | None,
        user_message: str,
        roster: AgentRoster,
        session_ref: str | None = None,
        project_path: str | Path | None = None,
        on_event: RunEventHook | None = None,
        cancel_token: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> OrchestrationRunResult:
        """Run the step loop for one user message.

        Args:
            entry_agent_id: Requested entry agent; unknown ids resolve to the
                default agent.
            user_message: The user's message.
            roster: Agents available for this run.
            session_ref: Session of the entry agent to continue, if any.
            project_path: Project directory bound to the run's sessions.
            on_event: Optional progress hook.
            cancel_token: Cooperative cancellation token.
            run_id: Explicit run id (defaults to a new trace id).

        Returns:
            OrchestrationRunResult; planning errors, provider failures,
            budget exhaustion and cancellation are reported in ``status``.

        Raises:
            SessionStoreError: If the session store is unavailable. The
                ledger is persisted as failed first.
            LedgerError: If the ledger cannot be written on a normal ending.
        """
        trace_ctx = TraceContext(trace_id=run_id) if run_id else TraceContext.new_trace()
        entry_id = roster.resolve_entry_agent_id(entry_agent_id, self.default_agent_id)
        entry = roster.get(entry_id)

        ledger = OrchestrationRunLedger(
            run_id=trace_ctx.trace_id,
            entry_agent_id=entry_id,
            user_message=user_message,
        )
        if entry is not None:
            ledger.session_graph.upsert_node(entry_id, provider_id=entry.provider_id)
        ctx = _RunContext(
            ledger=ledger,
            roster=roster,
            token=cancel_token or CancellationToken(),
            workspace=WorkspaceFiles(self.paths.workspaces_dir, entry_id),
            trace=trace_ctx,
            on_event=on_event,
            project_path=str(project_path) if project_path else None,
        )
        self.ledger_store.save(ledger)

        log.info(
            RUN_STARTED,
            run_id=ctx.run_id,
            entry_agent_id=entry_id,
            requested_agent_id=entry_agent_id,
            roster_size=len(roster),
            max_steps=self.max_steps,
        )
        self._emit(ctx, RunEventType.RUN_STARTED, agent_id=entry_id)

        if entry is None:
            error = f"Entry agent is not in the roster: {entry_id}"
            log.error(PLANNING_ERROR, run_id=ctx.run_id, error=error)
            return self._finish_run(ctx, RunStatus.FAILED, error=error)

        try:
            ctx.routing = self.route(user_message, roster, entry_agent_id=entry_id)
            await self._prepare_entry_session(ctx, entry, session_ref)
            status, final_message = await self._run_loop(ctx)
            if ctx.entry_session is not None:
                await self.sessions.record_assistant_reply(
                    self.paths, ctx.entry_session, final_message
                )
        except PlanningError as e:
            log.error(PLANNING_ERROR, run_id=ctx.run_id, error=str(e), raw_output=e.raw_output)
            return self._finish_run(ctx, RunStatus.FAILED, error=str(e))
        except RunCancelledError as e:
            return self._finish_run(ctx, RunStatus.CANCELLED, error=str(e))
        except asyncio.CancelledError:
            self._finish_before_raise(ctx, RunStatus.CANCELLED, "Run task was cancelled")
            raise
        except SessionStoreError as e:
            self._finish_before_raise(ctx, RunStatus.FAILED, str(e))
            raise
        except Exception as e:
            log.error(
                ORCHESTRATOR_FATAL_ERROR,
                run_id=ctx.run_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self._finish_before_raise(ctx, RunStatus.FAILED, f"{type(e).__name__}: {e}")
            raise

        return self._finish_run(ctx, status, final_message=final_message)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_loop(self, ctx: _RunContext) -> tuple[RunStatus, str]:
        for step in range(1, self.max_steps + 1):
            ctx.token.raise_if_cancelled()
            loop_state = LoopState.PLANNING

            self._emit(ctx, RunEventType.PLANNER_STARTED, step=step, agent_id=ctx.entry_agent_id)
            log.debug(PLANNER_STARTED, run_id=ctx.run_id, step=step)
            output = await self._cancellable(ctx.token, self.planner.decide(self._run_state(ctx, step)))
            decision = output.decision
            action = decision.action
            log.info(
                PLANNER_DECISION,
                run_id=ctx.run_id,
                step=step,
                action_type=action.type,
                mode=action.mode.value,
                rationale=decision.rationale,
            )
            self._emit(
                ctx,
                RunEventType.PLANNER_DECISION,
                step=step,
                agent_id=ctx.entry_agent_id,
                action_type=action.type,
                mode=action.mode.value,
                detail=decision.rationale,
            )

            self._validate_action(action, ctx.roster, ctx.entry_agent_id)
            loop_state = self._next_state(action)
            outcome = await self._execute_action(ctx, step, action, decision.rationale)

            step_log = OrchestrationStepLog(
                step=step,
                timestamp=utc_now(),
                planner_raw_output=output.raw_output,
                planner_decision=decision,
                agent_call=outcome.agent_call,
                artifact_io=outcome.artifact_io,
                note=outcome.note,
            )
            self.ledger_store.append_step(ctx.ledger, step_log)
            log.info(
                STEP_EXECUTED,
                run_id=ctx.run_id,
                step=step,
                state=loop_state.value,
                action_type=action.type,
                code=outcome.agent_call.code if outcome.agent_call else None,
            )

            if outcome.final_message is not None:
                return RunStatus.COMPLETED, outcome.final_message

            if isinstance(action, DelegateToAgent):
                ctx.delegation_count += 1
                if ctx.delegation_count >= self.max_delegations:
                    log.warning(
                        DELEGATION_LIMIT_REACHED,
                        run_id=ctx.run_id,
                        step=step,
                        delegations=ctx.delegation_count,
                    )
                    return RunStatus.DEGRADED, DELEGATION_LIMIT_MESSAGE

        forced = Finish(message=self._budget_synthesis(ctx), reason="step_budget_exhausted")
        log.warning(
            STEP_BUDGET_EXHAUSTED,
            run_id=ctx.run_id,
            max_steps=self.max_steps,
            delegations=ctx.delegation_count,
        )
        return RunStatus.DEGRADED, forced.message

    def _budget_synthesis(self, ctx: _RunContext) -> str:
        if not ctx.shared_notes:
            return STEP_LIMIT_EMPTY_MESSAGE
        notes = clamp_text("\n\n".join(ctx.shared_notes), BUDGET_SYNTHESIS_MAX_CHARS)
        return f"Orchestration reached step limit.\n\nCurrent synthesis:\n{notes}"

    def _run_state(self, ctx: _RunContext, step: int) -> RunState:
        return RunState(
            run_id=ctx.run_id,
            entry_agent_id=ctx.entry_agent_id,
            user_message=ctx.ledger.user_message,
            roster=ctx.roster,
            step=step,
            max_steps=self.max_steps,
            steps=list(ctx.ledger.steps),
            task_threads=list(ctx.ledger.task_threads),
            shared_notes=clamp_text("\n\n".join(ctx.shared_notes), self.shared_notes_max_chars),
            recent_events=list(ctx.recent_events),
            routing=ctx.routing,
        )

    @staticmethod
    def _next_state(action: OrchestrationAction) -> LoopState:
        match action:
            case DelegateToAgent():
                return LoopState.DELEGATING
            case ReadWorkspaceFile() | WriteWorkspaceFile():
                return LoopState.IO
            case InstallSkill():
                return LoopState.INSTALLING
            case RespondUser() | Finish():
                return LoopState.RESPONDING
            case _:
                assert_never(action)

    @staticmethod
    def _validate_action(
        action: OrchestrationAction, roster: AgentRoster, entry_agent_id: str
    ) -> None:
        """Reject actions that reference agents outside the roster or without capability.

        Only a delegating entry agent may delegate, and never to itself.

        Raises:
            PlanningError: If the action is not allowed.
        """
        match action:
            case DelegateToAgent(target_agent_id=target_id):
                entry = roster.get(entry_agent_id)
                if entry is None or not entry.can_delegate:
                    raise PlanningError(
                        f'Agent "{entry_agent_id}" is not allowed to delegate '
                        f'(requested target "{target_id}")'
                    )
                if target_id == entry_agent_id:
                    raise PlanningError(
                        f'Invalid delegation target "{target_id}": agent cannot delegate to itself'
                    )
                target = roster.get(target_id)
                if target is None:
                    raise PlanningError(f'Invalid delegation target "{target_id}": unknown agent')
                if not target.can_receive:
                    raise PlanningError(
                        f'Invalid delegation target "{target_id}": agent does not accept delegation'
                    )
            case InstallSkill(target_agent_id=target_id):
                if target_id and target_id not in roster:
                    raise PlanningError(f'Invalid skill target "{target_id}": unknown agent')
            case ReadWorkspaceFile() | WriteWorkspaceFile() | RespondUser() | Finish():
                return
            case _:
                assert_never(action)

    async def _execute_action(
        self, ctx: _RunContext, step: int, action: OrchestrationAction, rationale: str
    ) -> _ActionOutcome:
        match action:
            case RespondUser() | Finish():
                self._add_recent_event(ctx, f"Step {step}: {action.type}")
                return _ActionOutcome(
                    note=action.reason, final_message=action.message or "Completed."
                )
            case ReadWorkspaceFile():
                resolved, content = ctx.workspace.read(action.path)
                body = content if content is not None else f"[MISSING] {resolved}"
                ctx.shared_notes.append(clamp_text(f"Read {action.path}:\n{body}", READ_NOTE_MAX_CHARS))
                self._add_recent_event(ctx, f"Read file {action.path}")
                return _ActionOutcome(artifact_io=ArtifactIO(read_path=str(resolved)))
            case WriteWorkspaceFile():
                resolved = ctx.workspace.write(action.path, action.content)
                self._add_recent_event(ctx, f"Wrote file {action.path}")
                return _ActionOutcome(artifact_io=ArtifactIO(write_path=str(resolved)))
            case InstallSkill():
                return self._install_skill(ctx, action)
            case DelegateToAgent():
                return await self._delegate(ctx, step, action, rationale)
            case _:
                assert_never(action)

    def _install_skill(self, ctx: _RunContext, action: InstallSkill) -> _ActionOutcome:
        agent_id = action.target_agent_id or ctx.entry_agent_id
        try:
            installed = self.skill_installer.install(
                agent_id,
                action.skill_name,
                description=action.description,
                content=action.content,
                source_path=action.source_path,
            )
        except (ValueError, OSError) as e:
            note = f"Skill install failed for {agent_id}: {e}"
            ctx.shared_notes.append(note)
            self._add_recent_event(ctx, note)
            return _ActionOutcome(note=note)

        verb = "Replaced" if installed.replaced else "Installed"
        note = f"{verb} skill {installed.skill_id} for {agent_id} ({installed.source})."
        ctx.shared_notes.append(note)
        self._add_recent_event(ctx, note)
        return _ActionOutcome(
            artifact_io=ArtifactIO(write_path=str(installed.installed_path)), note=note
        )

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    async def _delegate(
        self, ctx: _RunContext, step: int, action: DelegateToAgent, rationale: str
    ) -> _ActionOutcome:
        target = ctx.roster.require(action.target_agent_id)
        notes: list[str] = []

        thread = ctx.ledger.get_task_thread(action.task_key) if action.task_key else None
        if thread is not None and thread.agent_id != target.agent_id:
            notes.append(
                f"Task thread {thread.task_key} belongs to {thread.agent_id}; "
                f"starting a new thread with {target.agent_id}."
            )
            thread = None

        provider_session_id: str | None = None
        force_new_provider_session = False
        match action.session_policy:
            case SessionPolicy.NEW:
                force_new_provider_session = True
                thread = None
            case SessionPolicy.REUSE:
                if thread is None and action.task_key:
                    notes.append(
                        f"No task thread {action.task_key} to reuse; starting a new one."
                    )
                    force_new_provider_session = True
                elif thread is not None:
                    provider_session_id = thread.provider_session_id
            case SessionPolicy.AUTO:
                if thread is not None:
                    provider_session_id = thread.provider_session_id
            case _:
                assert_never(action.session_policy)

        artifact_io = ArtifactIO()
        uses_artifacts = action.mode in (CommunicationMode.ARTIFACTS, CommunicationMode.HYBRID)
        outbound_path: Path | None = None
        if uses_artifacts:
            outbound_path = ctx.workspace.write_handoff(
                ctx.run_id,
                step,
                "to",
                target.agent_id,
                render_handoff_document(
                    step, ctx.ledger.user_message, action.message, action.expected_output, ctx.shared_notes
                ),
            )
            artifact_io.write_path = str(outbound_path)

        request = render_delegate_message(
            step,
            ctx.ledger.user_message,
            action.message,
            action.expected_output,
            ctx.shared_notes,
            outbound_path,
        )

        log.info(
            DELEGATION_STARTED,
            run_id=ctx.run_id,
            step=step,
            agent_id=ctx.entry_agent_id,
            target_agent_id=target.agent_id,
            provider_id=target.provider_id,
            task_key=action.task_key,
            session_policy=action.session_policy.value,
            mode=action.mode.value,
        )
        self._emit(
            ctx,
            RunEventType.DELEGATION_STARTED,
            step=step,
            agent_id=ctx.entry_agent_id,
            target_agent_id=target.agent_id,
            provider_id=target.provider_id,
            mode=action.mode.value,
        )

        resolution = await self.sessions.prepare_run_session(
            self.paths,
            target.agent_id,
            user_message=request,
            session_ref=f"agent:{target.agent_id}:delegation:{ctx.run_id}",
            project_path=ctx.project_path,
            force_new=action.session_policy == SessionPolicy.NEW,
            disable_session=not target.sessions_enabled,
        )
        session = resolution.info if isinstance(resolution, SessionEnabled) else None

        options = InvokeOptions(
            message=request,
            provider_session_id=provider_session_id,
            force_new_provider_session=force_new_provider_session,
            cwd=Path(ctx.project_path) if ctx.project_path else None,
            system_prompt=render_project_prompt(ctx.project_path) if ctx.project_path else None,
        )
        result = await self._invoke_provider(ctx, step, target, options)

        if session is not None:
            await self.sessions.record_assistant_reply(self.paths, session, transcript_reply(result))

        text = response_text(result)
        if uses_artifacts:
            inbound_path = ctx.workspace.write_handoff(
                ctx.run_id, step, "from", target.agent_id, text or "(empty response)"
            )
            artifact_io.read_path = str(inbound_path)

        thread_session_id = (
            result.provider_session_id
            or extract_session_hint(f"{result.stdout}\n{result.stderr}")
            or provider_session_id
        )
        if action.task_key:
            ctx.ledger.upsert_task_thread(
                TaskThread(
                    task_key=action.task_key,
                    agent_id=target.agent_id,
                    provider_id=target.provider_id,
                    provider_session_id=thread_session_id,
                    session_key=session.session_key if session else None,
                    session_id=session.session_id if session else None,
                    created_step=thread.created_step if thread else step,
                    updated_step=step,
                    last_response=summarize_text(text) if text else None,
                )
            )

        ctx.ledger.session_graph.upsert_node(
            target.agent_id,
            provider_id=target.provider_id,
            session_key=session.session_key if session else None,
            session_id=session.session_id if session else None,
            provider_session_id=thread_session_id,
        )
        ctx.ledger.session_graph.add_edge(
            ctx.entry_agent_id, target.agent_id, reason=action.reason or rationale
        )

        delegated_note = f"Delegated to {target.agent_id}: {summarize_text(text or '(no response)')}"
        ctx.shared_notes.append(clamp_text(delegated_note, DELEGATION_NOTE_MAX_CHARS))
        self._add_recent_event(ctx, delegated_note)
        if not result.ok:
            notes.append(f"Agent {target.agent_id} failed with code {result.code}.")

        return _ActionOutcome(
            agent_call=AgentCall(
                target_agent_id=target.agent_id,
                task_key=action.task_key,
                session_policy=action.session_policy,
                request=request,
                response=text,
                code=result.code,
                provider_id=target.provider_id,
                session_key=session.session_key if session else None,
                session_id=session.session_id if session else None,
                provider_session_id=thread_session_id,
            ),
            artifact_io=artifact_io if uses_artifacts else None,
            note=" ".join(notes) or None,
        )

    async def _invoke_provider(
        self, ctx: _RunContext, step: int, agent: AgentDescriptor, options: InvokeOptions
    ) -> ExecutionResult:
        """Invoke an agent's provider; failures come back as non-zero results."""
        _, span_id = ctx.trace.new_span()
        self._emit(
            ctx,
            RunEventType.PROVIDER_INVOCATION_STARTED,
            step=step,
            target_agent_id=agent.agent_id,
            provider_id=agent.provider_id,
        )
        log.debug(
            PROVIDER_INVOCATION_STARTED,
            run_id=ctx.run_id,
            span_id=span_id,
            step=step,
            target_agent_id=agent.agent_id,
            provider_id=agent.provider_id,
        )

        try:
            provider = self.providers.get(agent.provider_id)
            result = await self._cancellable(ctx.token, provider.invoke(options))
        except RunCancelledError:
            raise
        except ProviderError as e:
            log.warning(
                PROVIDER_INVOCATION_FAILED,
                run_id=ctx.run_id,
                span_id=span_id,
                step=step,
                target_agent_id=agent.agent_id,
                provider_id=agent.provider_id,
                error=str(e),
            )
            result = ExecutionResult(code=1, stderr=str(e))
        except Exception as e:
            log.error(
                PROVIDER_INVOCATION_FAILED,
                run_id=ctx.run_id,
                span_id=span_id,
                step=step,
                target_agent_id=agent.agent_id,
                provider_id=agent.provider_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            result = ExecutionResult(code=1, stderr=f"{type(e).__name__}: {e}")

        log.info(
            PROVIDER_INVOCATION_COMPLETED,
            run_id=ctx.run_id,
            span_id=span_id,
            step=step,
            target_agent_id=agent.agent_id,
            provider_id=agent.provider_id,
            code=result.code,
            stdout_chars=len(result.stdout),
        )
        self._emit(
            ctx,
            RunEventType.PROVIDER_INVOCATION_COMPLETED,
            step=step,
            target_agent_id=agent.agent_id,
            provider_id=agent.provider_id,
            code=result.code,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _prepare_entry_session(
        self, ctx: _RunContext, entry: AgentDescriptor, session_ref: str | None
    ) -> None:
        resolution = await self.sessions.prepare_run_session(
            self.paths,
            entry.agent_id,
            user_message=ctx.ledger.user_message,
            session_ref=session_ref,
            project_path=ctx.project_path,
            disable_session=not entry.sessions_enabled,
        )
        if isinstance(resolution, SessionEnabled):
            ctx.entry_session = resolution.info
            # A follow-up run without a project keeps the session's one.
            if ctx.project_path is None and resolution.info.project_path:
                ctx.project_path = resolution.info.project_path
            ctx.ledger.session_graph.upsert_node(
                entry.agent_id,
                session_key=resolution.info.session_key,
                session_id=resolution.info.session_id,
            )

    @staticmethod
    async def _cancellable(token: CancellationToken, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            RunCancelledError: If the token fires before the awaitable completes.
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise RunCancelledError("Run was cancelled during an in-flight call")

    def _add_recent_event(self, ctx: _RunContext, value: str) -> None:
        ctx.recent_events.append(summarize_text(value))
        del ctx.recent_events[: -self.recent_events_window]

    def _emit(self, ctx: _RunContext, event_type: RunEventType, **fields: object) -> None:
        if ctx.on_event is None:
            return
        event = OrchestrationRunEvent(type=event_type, run_id=ctx.run_id, **fields)
        try:
            ctx.on_event(event)
        except Exception as e:
            log.warning("run_event_hook_failed", run_id=ctx.run_id, event=event_type.value, error=str(e))

    def _finish_before_raise(self, ctx: _RunContext, status: RunStatus, error: str) -> None:
        """Finish the run on an error path; a ledger failure must not replace the error."""
        try:
            self._finish_run(ctx, status, error=error)
        except LedgerError as e:
            log.error(
                ORCHESTRATOR_FATAL_ERROR,
                run_id=ctx.run_id,
                error=str(e),
                error_type=type(e).__name__,
                original_error=error,
            )

    def _finish_run(
        self,
        ctx: _RunContext,
        status: RunStatus,
        final_message: str = "",
        error: str | None = None,
    ) -> OrchestrationRunResult:
        ledger = ctx.ledger
        ledger.status = status
        ledger.final_message = final_message
        ledger.completed_at = utc_now()
        ledger.error = error
        self.ledger_store.save(ledger)

        fields = {
            "run_id": ctx.run_id,
            "entry_agent_id": ctx.entry_agent_id,
            "status": status.value,
            "steps": len(ledger.steps),
            "delegations": ctx.delegation_count,
        }
        match status:
            case RunStatus.COMPLETED:
                log.info(RUN_COMPLETED, **fields)
            case RunStatus.DEGRADED:
                log.warning(RUN_DEGRADED, **fields)
            case RunStatus.CANCELLED:
                log.warning(RUN_CANCELLED, **fields)
            case RunStatus.FAILED | RunStatus.RUNNING:
                log.error(RUN_FAILED, error=error, **fields)

        self._emit(
            ctx,
            RunEventType.RUN_COMPLETED,
            agent_id=ctx.entry_agent_id,
            detail=status.value,
        )
        return OrchestrationRunResult(
            run_id=ctx.run_id,
            entry_agent_id=ctx.entry_agent_id,
            status=status,
            final_message=final_message,
            ledger=ledger,
            routing=ctx.routing,
            error=error,
        )
