"""Core types for the orchestrator.

This module defines the data structures shared by routing, planning and the
step loop:
- LoopState: step state machine states
- RoutingCandidate / RoutingDecision: routing output (JSON-consumable)
- RunEventType / OrchestrationRunEvent: progress events for the run hook
- RunState: read-only view of a run handed to the planner
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from goatherd.domain import AgentRoster, CamelModel
from goatherd.orchestrator.ledger import OrchestrationStepLog, TaskThread, utc_now


class LoopState(str, Enum):
    """State machine states for one orchestration step."""

    PLANNING = "planning"
    DELEGATING = "delegating"
    IO = "io"
    INSTALLING = "installing"
    RESPONDING = "responding"
    DONE = "done"


class RoutingCandidate(CamelModel):
    """Score of one agent for one routing call. Not persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    agent_id: str
    agent_name: str
    score: float
    reason: str
    matched_terms: list[str] = Field(default_factory=list)


class RoutingDecision(CamelModel):
    """Routing result; immutable once returned."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    entry_agent_id: str
    target_agent_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str
    rewritten_message: str
    candidates: list[RoutingCandidate] = Field(default_factory=list)


class RunEventType(str, Enum):
    RUN_STARTED = "run_started"
    PLANNER_STARTED = "planner_started"
    PLANNER_DECISION = "planner_decision"
    DELEGATION_STARTED = "delegation_started"
    PROVIDER_INVOCATION_STARTED = "provider_invocation_started"
    PROVIDER_INVOCATION_COMPLETED = "provider_invocation_completed"
    RUN_COMPLETED = "run_completed"


class OrchestrationRunEvent(CamelModel):
    """Progress event delivered to an ``on_event`` hook."""

    type: RunEventType
    run_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    step: int | None = None
    agent_id: str | None = None
    target_agent_id: str | None = None
    provider_id: str | None = None
    action_type: str | None = None
    mode: str | None = None
    code: int | None = None
    detail: str | None = None


RunEventHook = Callable[[OrchestrationRunEvent], None]


@dataclass
class RunState:
    """Run-so-far state handed to the planner for one decision.

    Attributes:
        run_id: Run identifier.
        entry_agent_id: Agent driving the run.
        user_message: Original user message.
        roster: Agents available for this run.
        step: Number of the step being planned (1-based).
        max_steps: Step budget.
        steps: Completed steps, oldest first.
        task_threads: Active task threads.
        shared_notes: Clamped notes accumulated from previous steps.
        recent_events: Short summaries of the most recent events.
        routing: Routing decision for the user message, if computed.
    """

    run_id: str
    entry_agent_id: str
    user_message: str
    roster: AgentRoster
    step: int
    max_steps: int
    steps: list[OrchestrationStepLog] = field(default_factory=list)
    task_threads: list[TaskThread] = field(default_factory=list)
    shared_notes: str = ""
    recent_events: list[str] = field(default_factory=list)
    routing: RoutingDecision | None = None
