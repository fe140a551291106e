"""Semantic event constants for structured logging.

All log events should use these constants rather than magic strings to ensure
consistency and enable reliable querying and analysis.
"""

# Orchestration run events
RUN_STARTED = "run_started"
RUN_COMPLETED = "run_completed"
RUN_DEGRADED = "run_degraded"
RUN_FAILED = "run_failed"
RUN_CANCELLED = "run_cancelled"
STEP_EXECUTED = "step_executed"
STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"
DELEGATION_LIMIT_REACHED = "delegation_limit_reached"
ORCHESTRATOR_FATAL_ERROR = "orchestrator_fatal_error"

# Planner events
PLANNER_STARTED = "planner_started"
PLANNER_DECISION = "planner_decision"
PLANNER_PARSE_ERROR = "planner_parse_error"
PLANNING_ERROR = "planning_error"

# Delegation and provider events
DELEGATION_STARTED = "delegation_started"
PROVIDER_INVOCATION_STARTED = "provider_invocation_started"
PROVIDER_INVOCATION_COMPLETED = "provider_invocation_completed"
PROVIDER_INVOCATION_FAILED = "provider_invocation_failed"
PROVIDER_REGISTERED = "provider_registered"

# Workspace events
WORKSPACE_FILE_READ = "workspace_file_read"
WORKSPACE_FILE_WRITTEN = "workspace_file_written"
WORKSPACE_PATH_BLOCKED = "workspace_path_blocked"
SKILL_INSTALLED = "skill_installed"

# Routing events
ROUTING_DECISION = "routing_decision"
ROUTING_FALLBACK = "routing_fallback"

# Session events
SESSION_CREATED = "session_created"
SESSION_REUSED = "session_reused"
SESSION_ROTATED = "session_rotated"
SESSION_COMPACTED = "session_compacted"
SESSION_RESET = "session_reset"
SESSION_REMOVED = "session_removed"

# Ledger events
LEDGER_STEP_PERSISTED = "ledger_step_persisted"
LEDGER_PERSISTED = "ledger_persisted"
LEDGER_PERSIST_FAILED = "ledger_persist_failed"
