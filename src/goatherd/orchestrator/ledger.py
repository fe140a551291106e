"""Run ledger: the durable, append-only record of one orchestration run.

The ledger is written after every step so a crashed run leaves a readable
prefix behind. Appending is idempotent by step number; step numbers are
contiguous from 1.
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Literal

import orjson
from pydantic import ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from goatherd.domain import CamelModel, GoatherdError
from goatherd.orchestrator.actions import OrchestrationPlannerDecision, SessionPolicy
from goatherd.storage import read_json, write_json_atomic
from goatherd.telemetry import (
    LEDGER_PERSISTED,
    LEDGER_PERSIST_FAILED,
    LEDGER_STEP_PERSISTED,
    get_logger,
)

log = get_logger(__name__)

LEDGER_SCHEMA_VERSION = 2


def utc_now() -> datetime:
    return datetime.now(UTC)


class RunStatus(str, Enum):
    """Lifecycle status of a run ledger."""

    RUNNING = "running"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LedgerError(GoatherdError):
    """Raised when a ledger cannot be read or written, or a step would break contiguity."""

    pass


class AgentCall(CamelModel):
    """One provider invocation made on behalf of a delegation step."""

    target_agent_id: str
    task_key: str | None = None
    session_policy: SessionPolicy | None = None
    request: str
    response: str
    code: int
    provider_id: str
    session_key: str | None = None
    session_id: str | None = None
    provider_session_id: str | None = None


class ArtifactIO(CamelModel):
    read_path: str | None = None
    write_path: str | None = None


class OrchestrationStepLog(CamelModel):
    """One completed step. Never mutated after it is appended."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    step: int = Field(..., ge=1)
    timestamp: datetime = Field(default_factory=utc_now)
    planner_raw_output: str = ""
    planner_decision: OrchestrationPlannerDecision
    agent_call: AgentCall | None = None
    artifact_io: ArtifactIO | None = Field(default=None, alias="artifactIO")
    note: str | None = None


class SessionGraphNode(CamelModel):
    agent_id: str
    provider_id: str | None = None
    session_key: str | None = None
    session_id: str | None = None
    provider_session_id: str | None = None


class SessionGraphEdge(CamelModel):
    from_agent_id: str
    to_agent_id: str
    reason: str | None = None


class SessionGraph(CamelModel):
    """Agents touched by a run and the delegations between them."""

    nodes: list[SessionGraphNode] = Field(default_factory=list)
    edges: list[SessionGraphEdge] = Field(default_factory=list)

    def upsert_node(
        self,
        agent_id: str,
        provider_id: str | None = None,
        session_key: str | None = None,
        session_id: str | None = None,
        provider_session_id: str | None = None,
    ) -> SessionGraphNode:
        """Add a node or refresh the bindings of an existing one."""
        updates = {
            "provider_id": provider_id,
            "session_key": session_key,
            "session_id": session_id,
            "provider_session_id": provider_session_id,
        }
        for index, node in enumerate(self.nodes):
            if node.agent_id == agent_id:
                refreshed = node.model_copy(
                    update={k: v for k, v in updates.items() if v is not None}
                )
                self.nodes[index] = refreshed
                return refreshed
        node = SessionGraphNode(agent_id=agent_id, **updates)
        self.nodes.append(node)
        return node

    def add_edge(self, from_agent_id: str, to_agent_id: str, reason: str | None = None) -> None:
        """Add a delegation edge; a repeated (from, to) pair refreshes its reason."""
        for index, edge in enumerate(self.edges):
            if edge.from_agent_id == from_agent_id and edge.to_agent_id == to_agent_id:
                if reason:
                    self.edges[index] = edge.model_copy(update={"reason": reason})
                return
        self.edges.append(
            SessionGraphEdge(from_agent_id=from_agent_id, to_agent_id=to_agent_id, reason=reason)
        )


class TaskThread(CamelModel):
    """A sustained sub-conversation with one agent, keyed by ``task_key``."""

    task_key: str
    agent_id: str
    provider_id: str | None = None
    provider_session_id: str | None = None
    session_key: str | None = None
    session_id: str | None = None
    created_step: int
    updated_step: int
    last_response: str | None = None


class OrchestrationRunLedger(CamelModel):
    """Durable record of one run, owned by ``OrchestrationService``."""

    schema_version: Literal[2] = LEDGER_SCHEMA_VERSION
    run_id: str
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    entry_agent_id: str
    user_message: str
    final_message: str = ""
    steps: list[OrchestrationStepLog] = Field(default_factory=list)
    session_graph: SessionGraph = Field(default_factory=SessionGraph)
    task_threads: list[TaskThread] = Field(default_factory=list)
    error: str | None = None

    @property
    def next_step(self) -> int:
        return len(self.steps) + 1

    def append_step(self, step: OrchestrationStepLog) -> bool:
        """Append a step unless that step number is already recorded.

        Returns:
            True if the step was appended, False if it was a duplicate.

        Raises:
            LedgerError: If the step number would leave a gap.
        """
        if step.step <= len(self.steps):
            return False
        if step.step != self.next_step:
            raise LedgerError(
                f"Step {step.step} does not follow step {len(self.steps)} in run {self.run_id}"
            )
        self.steps.append(step)
        return True

    def get_task_thread(self, task_key: str) -> TaskThread | None:
        for thread in self.task_threads:
            if thread.task_key == task_key:
                return thread
        return None

    def upsert_task_thread(self, thread: TaskThread) -> None:
        for index, existing in enumerate(self.task_threads):
            if existing.task_key == thread.task_key:
                self.task_threads[index] = thread
                return
        self.task_threads.append(thread)


class RunSummary(CamelModel):
    run_id: str
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    entry_agent_id: str
    step_count: int
    final_message: str = ""


class LedgerStore:
    """Persists ledgers as ``<runs_dir>/<run_id>.json``."""

    def __init__(self, runs_dir: Path) -> None:
        self.runs_dir = Path(runs_dir)

    def path_for(self, run_id: str) -> Path:
        return self.runs_dir / f"{run_id}.json"

    def save(self, ledger: OrchestrationRunLedger) -> Path:
        """Atomically write the full ledger snapshot.

        Raises:
            LedgerError: If the snapshot cannot be written.
        """
        path = self.path_for(ledger.run_id)
        try:
            write_json_atomic(path, ledger.model_dump(mode="json", by_alias=True, exclude_none=True))
        except OSError as e:
            log.error(LEDGER_PERSIST_FAILED, run_id=ledger.run_id, path=str(path), error=str(e))
            raise LedgerError(f"Failed to write run ledger {path}: {e}") from e
        log.debug(
            LEDGER_PERSISTED,
            run_id=ledger.run_id,
            status=ledger.status.value,
            steps=len(ledger.steps),
            path=str(path),
        )
        return path

    def append_step(self, ledger: OrchestrationRunLedger, step: OrchestrationStepLog) -> bool:
        """Append ``step`` to ``ledger`` and persist. Retrying the same step is a no-op."""
        appended = ledger.append_step(step)
        self.save(ledger)
        log.debug(
            LEDGER_STEP_PERSISTED,
            run_id=ledger.run_id,
            step=step.step,
            duplicate=not appended,
        )
        return appended

    def load(self, run_id: str) -> OrchestrationRunLedger:
        """Read a persisted ledger.

        Raises:
            FileNotFoundError: If no ledger exists for the run id.
            LedgerError: If the file is not a valid ledger.
        """
        path = self.path_for(run_id)
        try:
            data = read_json(path)
        except orjson.JSONDecodeError as e:
            raise LedgerError(f"Run ledger is not valid JSON: {path}") from e
        try:
            return OrchestrationRunLedger.model_validate(data)
        except ValidationError as e:
            raise LedgerError(f"Run ledger is invalid: {path}: {e}") from e

    def list_runs(self, limit: int | None = None) -> list[RunSummary]:
        """Summaries of persisted runs, newest first. Unreadable files are skipped."""
        if not self.runs_dir.exists():
            return []

        summaries: list[RunSummary] = []
        for path in self.runs_dir.glob("*.json"):
            try:
                ledger = self.load(path.stem)
            except (LedgerError, OSError) as e:
                log.warning("ledger_read_failed", path=str(path), error=str(e))
                continue
            summaries.append(
                RunSummary(
                    run_id=ledger.run_id,
                    status=ledger.status,
                    started_at=ledger.started_at,
                    completed_at=ledger.completed_at,
                    entry_agent_id=ledger.entry_agent_id,
                    step_count=len(ledger.steps),
                    final_message=ledger.final_message,
                )
            )
        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries[:limit] if limit else summaries
