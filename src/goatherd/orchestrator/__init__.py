"""Orchestration core: routing, planning, the step loop and the run ledger."""

from goatherd.orchestrator.actions import (
    CommunicationMode,
    DelegateToAgent,
    Finish,
    InstallSkill,
    OrchestrationAction,
    OrchestrationPlannerDecision,
    ReadWorkspaceFile,
    RespondUser,
    SessionPolicy,
    WriteWorkspaceFile,
    normalize_task_key,
)
from goatherd.orchestrator.ledger import (
    AgentCall,
    ArtifactIO,
    LedgerError,
    LedgerStore,
    OrchestrationRunLedger,
    OrchestrationStepLog,
    RunStatus,
    RunSummary,
    SessionGraph,
    SessionGraphEdge,
    SessionGraphNode,
    TaskThread,
)
from goatherd.orchestrator.planner import (
    HeuristicPlanner,
    OrchestrationPlannerService,
    Planner,
    PlannerOutput,
    build_planner_prompt,
    parse_planner_decision,
)
from goatherd.orchestrator.routing import RoutingService, tokenize
from goatherd.orchestrator.service import (
    CancellationToken,
    OrchestrationRunResult,
    OrchestrationService,
)
from goatherd.orchestrator.types import (
    LoopState,
    OrchestrationRunEvent,
    RoutingCandidate,
    RoutingDecision,
    RunEventHook,
    RunEventType,
    RunState,
)
from goatherd.orchestrator.workspace import InstalledSkill, SkillInstaller, WorkspaceFiles

__all__ = [
    # Service
    "OrchestrationService",
    "OrchestrationRunResult",
    "CancellationToken",
    # Routing
    "RoutingService",
    "RoutingCandidate",
    "RoutingDecision",
    "tokenize",
    # Planning
    "Planner",
    "PlannerOutput",
    "OrchestrationPlannerService",
    "HeuristicPlanner",
    "build_planner_prompt",
    "parse_planner_decision",
    # Actions
    "CommunicationMode",
    "SessionPolicy",
    "OrchestrationAction",
    "OrchestrationPlannerDecision",
    "DelegateToAgent",
    "ReadWorkspaceFile",
    "WriteWorkspaceFile",
    "InstallSkill",
    "RespondUser",
    "Finish",
    "normalize_task_key",
    # Ledger
    "AgentCall",
    "ArtifactIO",
    "LedgerError",
    "LedgerStore",
    "OrchestrationRunLedger",
    "OrchestrationStepLog",
    "RunStatus",
    "RunSummary",
    "SessionGraph",
    "SessionGraphEdge",
    "SessionGraphNode",
    "TaskThread",
    # Run state and events
    "LoopState",
    "OrchestrationRunEvent",
    "RunEventHook",
    "RunEventType",
    "RunState",
    # Workspace
    "InstalledSkill",
    "SkillInstaller",
    "WorkspaceFiles",
]
