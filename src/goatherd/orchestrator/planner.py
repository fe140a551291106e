"""Planner: proposes the next orchestration action for a run.

``OrchestrationPlannerService`` renders the run-so-far state into a prompt,
sends it to the entry agent's provider and parses the reply into an
``OrchestrationPlannerDecision``. ``HeuristicPlanner`` makes the same decisions
without a model call, from the routing engine alone.
"""

import re
from dataclasses import dataclass
from typing import Protocol

import orjson
from pydantic import ValidationError

from goatherd.domain import DEFAULT_AGENT_ID, PlanningError, ProviderError
from goatherd.orchestrator.actions import (
    DelegateToAgent,
    Finish,
    OrchestrationPlannerDecision,
    RespondUser,
)
from goatherd.orchestrator.routing import RoutingService
from goatherd.orchestrator.types import RunState
from goatherd.providers import InvokeOptions, ProviderRegistry
from goatherd.telemetry import PLANNER_PARSE_ERROR, get_logger

log = get_logger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)

_JSON_SHAPE = """Return JSON with shape:
{
  "rationale": "short reason",
  "action": {
    "type": "delegate_to_agent|read_workspace_file|write_workspace_file|install_skill|respond_user|finish",
    "mode": "direct|artifacts|hybrid",
    "reason": "optional short reason",
    "targetAgentId": "required for delegate_to_agent",
    "message": "required for delegate_to_agent/respond_user/finish",
    "expectedOutput": "optional for delegate_to_agent",
    "taskKey": "optional for delegate_to_agent (stable id like task-auth-fix)",
    "sessionPolicy": "optional for delegate_to_agent: auto|new|reuse",
    "path": "required for read_workspace_file/write_workspace_file",
    "content": "required for write_workspace_file; optional for install_skill to create inline skill content",
    "skillName": "required for install_skill",
    "description": "optional for install_skill",
    "sourcePath": "optional for install_skill"
  }
}"""


@dataclass(frozen=True)
class PlannerOutput:
    """A decision together with the raw text it was parsed from."""

    decision: OrchestrationPlannerDecision
    raw_output: str = ""


class Planner(Protocol):
    """Anything that can choose the next action for a run."""

    async def decide(self, state: RunState) -> PlannerOutput: ...


def build_planner_prompt(state: RunState) -> str:
    """Render the planner prompt for one step."""
    entry = state.roster.get(state.entry_agent_id)
    agents = (
        state.roster.receivers(exclude=state.entry_agent_id)
        if entry is not None and entry.can_delegate
        else []
    )
    agent_lines = [
        f"- {agent.agent_id}: name={agent.name}; description={agent.description}; "
        f"provider={agent.provider_id}; canDelegate={str(agent.can_delegate).lower()}"
        for agent in agents
    ]
    event_lines = [f"- {entry}" for entry in state.recent_events] or ["- (none)"]
    thread_lines = [
        f"- {thread.task_key}: agent={thread.agent_id}; "
        f"provider={thread.provider_id or 'unknown'}; "
        f"providerSessionId={thread.provider_session_id or '(none)'}; "
        f"updatedStep={thread.updated_step}; "
        f"lastResponse={(thread.last_response or '').strip() or '(none)'}"
        for thread in state.task_threads
    ] or ["- (none)"]
    routing_lines: list[str] = []
    if state.routing is not None and state.routing.target_agent_id != state.entry_agent_id:
        routing_lines = [
            f"Routing hint: {state.routing.target_agent_id} "
            f"(confidence {state.routing.confidence:.2f}; {state.routing.reason})",
            "",
        ]

    lines = [
        "You are the goatherd orchestrator decision engine.",
        "Decide the next best action to solve the user request.",
        "Use only the JSON format requested below; do not add extra text.",
        "",
        "Action policy:",
        "- Use delegate_to_agent when a specialized agent should execute the next step.",
        "- Use install_skill when a skill should be installed for an agent before continuing.",
        "- Use read_workspace_file / write_workspace_file when coordination artifacts are needed.",
        "- Use respond_user when you can directly answer with high confidence.",
        "- Use finish when the task is complete.",
        "- Prefer hybrid mode for important handoffs (direct + markdown artifact).",
        "- For delegate_to_agent, use taskKey to keep related work on the same task thread.",
        '- sessionPolicy controls thread behavior: "new" creates a new thread, '
        '"reuse" requires an existing thread, "auto" reuses when available or creates otherwise.',
        "",
        "Allowed agents:",
        *(agent_lines or ["- (none)"]),
        "",
        f"Step {state.step}/{state.max_steps}",
        "",
        *routing_lines,
        "User request:",
        state.user_message,
        "",
        "Shared notes:",
        state.shared_notes or "(none)",
        "",
        "Recent events:",
        *event_lines,
        "",
        "Known task threads:",
        *thread_lines,
        "",
        _JSON_SHAPE,
    ]
    return "\n".join(lines)


def _json_candidates(raw: str) -> list[str]:
    trimmed = raw.strip()
    if not trimmed:
        return []
    candidates = []
    fenced = _FENCED_JSON.search(trimmed)
    if fenced and fenced.group(1).strip():
        candidates.append(fenced.group(1).strip())
    candidates.append(trimmed)
    start, end = trimmed.find("{"), trimmed.rfind("}")
    if start >= 0 and end > start:
        candidates.append(trimmed[start : end + 1])
    return candidates


def parse_planner_decision(raw: str) -> OrchestrationPlannerDecision:
    """Parse planner text into a decision.

    Accepts a fenced ```json block, bare JSON, or JSON embedded in prose.

    Raises:
        PlanningError: If no candidate is a well-formed decision.
    """
    last_error: Exception | None = None
    for candidate in _json_candidates(raw):
        try:
            data = orjson.loads(candidate)
        except orjson.JSONDecodeError as e:
            last_error = e
            continue
        try:
            return OrchestrationPlannerDecision.model_validate(data)
        except ValidationError as e:
            last_error = e
            continue

    log.warning(
        PLANNER_PARSE_ERROR,
        raw_output=raw[:500],
        error=str(last_error) if last_error else "empty planner output",
    )
    raise PlanningError("Planner output is not a valid decision", raw_output=raw)


class OrchestrationPlannerService:
    """Asks the entry agent's provider for the next action.

    Args:
        providers: Registry used to resolve the entry agent's provider.
        system_prompt: Optional system prompt sent with every planner call.
    """

    def __init__(self, providers: ProviderRegistry, system_prompt: str | None = None) -> None:
        self.providers = providers
        self.system_prompt = system_prompt

    def build_prompt(self, state: RunState) -> str:
        return build_planner_prompt(state)

    def parse_decision(self, raw: str) -> OrchestrationPlannerDecision:
        return parse_planner_decision(raw)

    async def decide(self, state: RunState) -> PlannerOutput:
        """Produce exactly one action for the current step.

        Raises:
            PlanningError: If the entry agent has no usable provider or the
                reply cannot be parsed.
        """
        entry = state.roster.get(state.entry_agent_id)
        if entry is None:
            raise PlanningError(f"Entry agent is not in the roster: {state.entry_agent_id}")
        try:
            provider = self.providers.get(entry.provider_id)
            result = await provider.invoke(
                InvokeOptions(message=self.build_prompt(state), system_prompt=self.system_prompt)
            )
        except ProviderError as e:
            raise PlanningError(f"Planner provider unavailable: {e}") from e

        raw_output = result.stdout.strip() or result.stderr.strip()
        return PlannerOutput(decision=self.parse_decision(raw_output), raw_output=raw_output)


class HeuristicPlanner:
    """Model-free planner built on the routing engine.

    Step 1 delegates the user message to the routed agent, or answers the user
    when routing keeps the entry agent. Once an agent has answered, the run
    finishes with that answer.
    """

    def __init__(
        self, routing: RoutingService | None = None, default_agent_id: str = DEFAULT_AGENT_ID
    ) -> None:
        self.routing = routing or RoutingService()
        self.default_agent_id = default_agent_id

    async def decide(self, state: RunState) -> PlannerOutput:
        answered = [s for s in state.steps if s.agent_call is not None]
        if answered:
            last_call = answered[-1].agent_call
            decision = OrchestrationPlannerDecision(
                rationale=f"{last_call.target_agent_id} answered the request.",
                action=Finish(message=last_call.response or "Completed."),
            )
            return PlannerOutput(decision=decision)

        routing = state.routing or self.routing.route(
            state.user_message,
            state.roster,
            default_agent_id=self.default_agent_id,
            entry_agent_id=state.entry_agent_id,
        )
        target = state.roster.get(routing.target_agent_id)
        if target is None or not target.can_receive:
            decision = OrchestrationPlannerDecision(
                rationale="No agent can receive this request.",
                action=RespondUser(
                    message="No available agent can handle this request.", reason=routing.reason
                ),
            )
            return PlannerOutput(decision=decision)

        if target.agent_id == state.entry_agent_id:
            decision = OrchestrationPlannerDecision(
                rationale="Routed back to the entry agent; nothing to delegate.",
                action=RespondUser(
                    message=f"{target.agent_id} handles this request directly.",
                    reason=routing.reason,
                ),
            )
            return PlannerOutput(decision=decision)

        decision = OrchestrationPlannerDecision(
            rationale=routing.reason,
            action=DelegateToAgent(
                target_agent_id=target.agent_id,
                message=state.user_message,
                reason=routing.reason,
            ),
        )
        return PlannerOutput(decision=decision)
