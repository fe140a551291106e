"""Tests for planner prompt rendering, decision parsing and planners."""

import pytest

from goatherd.domain import AgentRoster, PlanningError
from goatherd.orchestrator import (
    AgentCall,
    CommunicationMode,
    DelegateToAgent,
    Finish,
    HeuristicPlanner,
    InstallSkill,
    OrchestrationPlannerDecision,
    OrchestrationPlannerService,
    OrchestrationStepLog,
    RespondUser,
    RoutingService,
    RunState,
    SessionPolicy,
    TaskThread,
    WriteWorkspaceFile,
    build_planner_prompt,
    normalize_task_key,
    parse_planner_decision,
)
from goatherd.providers import ExecutionResult

DELEGATE_JSON = (
    '{"rationale": "writer owns blogs", "action": {"type": "delegate_to_agent", '
    '"targetAgentId": "Writer", "message": "  Draft the post  ", "taskKey": "Blog Draft!"}}'
)


def make_state(roster: AgentRoster, **overrides) -> RunState:
    values = {
        "run_id": "run-1",
        "entry_agent_id": "goat",
        "user_message": "write a short blog post",
        "roster": roster,
        "step": 1,
        "max_steps": 12,
    }
    values.update(overrides)
    return RunState(**values)


class TestParsePlannerDecision:
    """Test parse_planner_decision."""

    def test_bare_json(self) -> None:
        decision = parse_planner_decision(DELEGATE_JSON)

        assert isinstance(decision.action, DelegateToAgent)
        assert decision.rationale == "writer owns blogs"

    def test_fenced_json(self) -> None:
        raw = f"Here is my decision:\n```json\n{DELEGATE_JSON}\n```\nThanks."

        decision = parse_planner_decision(raw)

        assert decision.action.type == "delegate_to_agent"

    def test_json_embedded_in_prose(self) -> None:
        raw = f"I think we should delegate. {DELEGATE_JSON} Let me know."

        decision = parse_planner_decision(raw)

        assert decision.action.type == "delegate_to_agent"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "I cannot decide.",
            '{"rationale": "x"}',
            '{"action": {"type": "dance"}}',
            '{"action": {"type": "delegate_to_agent", "message": "no target"}}',
        ],
    )
    def test_malformed_output_raises(self, raw: str) -> None:
        with pytest.raises(PlanningError) as exc_info:
            parse_planner_decision(raw)

        assert exc_info.value.raw_output == raw


class TestActionNormalization:
    """Test validators on the action vocabulary."""

    def test_delegate_normalizes_fields(self) -> None:
        action = parse_planner_decision(DELEGATE_JSON).action

        assert action.target_agent_id == "writer"
        assert action.message == "Draft the post"
        assert action.task_key == "blog-draft"
        assert action.session_policy == SessionPolicy.AUTO
        assert action.mode == CommunicationMode.HYBRID

    def test_mode_defaults_by_kind(self) -> None:
        write = WriteWorkspaceFile(path=" notes.md ", content="x")
        finish = Finish(message="done")

        assert write.mode == CommunicationMode.ARTIFACTS
        assert write.path == "notes.md"
        assert finish.mode == CommunicationMode.DIRECT

    def test_explicit_mode_kept(self) -> None:
        action = DelegateToAgent(target_agent_id="writer", message="hi", mode="direct")

        assert action.mode == CommunicationMode.DIRECT

    def test_null_session_policy_is_auto(self) -> None:
        action = DelegateToAgent(target_agent_id="writer", message="hi", session_policy=None)

        assert action.session_policy == SessionPolicy.AUTO

    def test_install_skill_target_lowercased(self) -> None:
        action = InstallSkill(skill_name=" Release Notes ", target_agent_id=" Writer ")

        assert action.skill_name == "Release Notes"
        assert action.target_agent_id == "writer"

    def test_default_rationale(self) -> None:
        decision = OrchestrationPlannerDecision(action=RespondUser(message="hi"))

        assert decision.rationale == "Responding directly to user."

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Task Auth Fix!", "task-auth-fix"),
            ("  ", None),
            (None, None),
            ("!!!", None),
            ("a" * 100, "a" * 80),
            ("ns:Key.v2", "ns:key.v2"),
        ],
    )
    def test_normalize_task_key(self, raw, expected) -> None:
        assert normalize_task_key(raw) == expected


class TestBuildPlannerPrompt:
    """Test build_planner_prompt."""

    def test_lists_receivers_except_entry(self, roster: AgentRoster) -> None:
        prompt = build_planner_prompt(make_state(roster))

        assert "- writer: name=Writer;" in prompt
        assert "- coder: name=Coder;" in prompt
        assert "- goat:" not in prompt
        assert "Step 1/12" in prompt
        assert "User request:\nwrite a short blog post" in prompt

    def test_specialist_entry_lists_no_agents(self, roster: AgentRoster) -> None:
        prompt = build_planner_prompt(make_state(roster, entry_agent_id="writer"))

        assert "Allowed agents:\n- (none)" in prompt
        assert "- coder:" not in prompt

    def test_empty_sections_show_none(self, roster: AgentRoster) -> None:
        prompt = build_planner_prompt(make_state(roster))

        assert "Shared notes:\n(none)" in prompt
        assert "Recent events:\n- (none)" in prompt
        assert "Known task threads:\n- (none)" in prompt

    def test_includes_state(self, roster: AgentRoster) -> None:
        thread = TaskThread(
            task_key="blog-draft",
            agent_id="writer",
            provider_id="writer",
            provider_session_id="sess-9",
            created_step=1,
            updated_step=2,
            last_response="draft v1",
        )
        state = make_state(
            roster,
            step=3,
            shared_notes="Writer drafted the intro.",
            recent_events=["step 2: delegated to writer"],
            task_threads=[thread],
        )

        prompt = build_planner_prompt(state)

        assert "Step 3/12" in prompt
        assert "Writer drafted the intro." in prompt
        assert "- step 2: delegated to writer" in prompt
        assert "- blog-draft: agent=writer; provider=writer; providerSessionId=sess-9" in prompt
        assert "lastResponse=draft v1" in prompt

    def test_routing_hint(self, roster: AgentRoster) -> None:
        routing = RoutingService().route("write a short blog post", roster)

        prompt = build_planner_prompt(make_state(roster, routing=routing))

        assert "Routing hint: writer (confidence 0.90;" in prompt


class TestOrchestrationPlannerService:
    """Test the model-backed planner."""

    @pytest.mark.asyncio
    async def test_invokes_entry_agent_provider(
        self, roster: AgentRoster, scripted, registry_factory
    ) -> None:
        goat = scripted("goat", [f"```json\n{DELEGATE_JSON}\n```"])
        planner = OrchestrationPlannerService(registry_factory(goat=goat), system_prompt="sys")

        output = await planner.decide(make_state(roster))

        assert output.decision.action.target_agent_id == "writer"
        assert output.raw_output.startswith("```json")
        assert len(goat.calls) == 1
        assert "Step 1/12" in goat.calls[0].message
        assert goat.calls[0].system_prompt == "sys"

    @pytest.mark.asyncio
    async def test_falls_back_to_stderr(
        self, roster: AgentRoster, scripted, registry_factory
    ) -> None:
        goat = scripted("goat", [ExecutionResult(code=0, stdout="  ", stderr=DELEGATE_JSON)])
        planner = OrchestrationPlannerService(registry_factory(goat=goat))

        output = await planner.decide(make_state(roster))

        assert output.raw_output == DELEGATE_JSON

    @pytest.mark.asyncio
    async def test_missing_provider_is_planning_error(
        self, roster: AgentRoster, registry_factory
    ) -> None:
        planner = OrchestrationPlannerService(registry_factory())

        with pytest.raises(PlanningError, match="Planner provider unavailable"):
            await planner.decide(make_state(roster))

    @pytest.mark.asyncio
    async def test_unparsable_reply(self, roster: AgentRoster, scripted, registry_factory) -> None:
        planner = OrchestrationPlannerService(registry_factory(goat=scripted("goat", ["hmm"])))

        with pytest.raises(PlanningError):
            await planner.decide(make_state(roster))


class TestHeuristicPlanner:
    """Test the model-free planner."""

    @pytest.mark.asyncio
    async def test_first_step_delegates_to_routed_agent(self, roster: AgentRoster) -> None:
        output = await HeuristicPlanner().decide(make_state(roster))

        action = output.decision.action
        assert isinstance(action, DelegateToAgent)
        assert action.target_agent_id == "writer"
        assert action.message == "write a short blog post"

    @pytest.mark.asyncio
    async def test_finishes_with_last_answer(self, roster: AgentRoster) -> None:
        step = OrchestrationStepLog(
            step=1,
            planner_decision=OrchestrationPlannerDecision(
                action=DelegateToAgent(target_agent_id="writer", message="draft")
            ),
            agent_call=AgentCall(
                target_agent_id="writer",
                request="draft",
                response="Here is the post.",
                code=0,
                provider_id="writer",
            ),
        )

        output = await HeuristicPlanner().decide(make_state(roster, step=2, steps=[step]))

        assert isinstance(output.decision.action, Finish)
        assert output.decision.action.message == "Here is the post."

    @pytest.mark.asyncio
    async def test_no_receiver(self, agent_factory) -> None:
        roster = AgentRoster(
            [
                agent_factory("goat", "Routes work", manager=True, can_receive=False),
                agent_factory("writer", "Writes blog posts", can_receive=False),
            ]
        )

        output = await HeuristicPlanner().decide(make_state(roster))

        assert isinstance(output.decision.action, RespondUser)

    @pytest.mark.asyncio
    async def test_routed_to_entry_responds_instead_of_delegating(
        self, roster: AgentRoster
    ) -> None:
        output = await HeuristicPlanner().decide(make_state(roster, user_message="hello"))

        action = output.decision.action
        assert isinstance(action, RespondUser)
        assert action.message == "goat handles this request directly."

    @pytest.mark.asyncio
    async def test_specialist_entry_never_delegates(self, roster: AgentRoster) -> None:
        state = make_state(roster, entry_agent_id="writer", user_message="fix a python bug")

        output = await HeuristicPlanner().decide(state)

        assert isinstance(output.decision.action, RespondUser)
