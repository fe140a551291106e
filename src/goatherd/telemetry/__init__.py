"""Telemetry module for structured logging and trace correlation.

This module provides:
- TraceContext for run correlation
- Structured logging via structlog
- Semantic event constants
"""

from goatherd.telemetry.events import (
    DELEGATION_LIMIT_REACHED,
    DELEGATION_STARTED,
    LEDGER_PERSISTED,
    LEDGER_PERSIST_FAILED,
    LEDGER_STEP_PERSISTED,
    ORCHESTRATOR_FATAL_ERROR,
    PLANNER_DECISION,
    PLANNER_PARSE_ERROR,
    PLANNER_STARTED,
    PLANNING_ERROR,
    PROVIDER_INVOCATION_COMPLETED,
    PROVIDER_INVOCATION_FAILED,
    PROVIDER_INVOCATION_STARTED,
    PROVIDER_REGISTERED,
    ROUTING_DECISION,
    ROUTING_FALLBACK,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_DEGRADED,
    RUN_FAILED,
    RUN_STARTED,
    SESSION_COMPACTED,
    SESSION_CREATED,
    SESSION_REMOVED,
    SESSION_RESET,
    SESSION_REUSED,
    SESSION_ROTATED,
    SKILL_INSTALLED,
    STEP_BUDGET_EXHAUSTED,
    STEP_EXECUTED,
    WORKSPACE_FILE_READ,
    WORKSPACE_FILE_WRITTEN,
    WORKSPACE_PATH_BLOCKED,
)
from goatherd.telemetry.logger import configure_logging, get_logger
from goatherd.telemetry.trace import TraceContext

__all__ = [
    # Core exports
    "TraceContext",
    "get_logger",
    "configure_logging",
    # Run events
    "RUN_STARTED",
    "RUN_COMPLETED",
    "RUN_DEGRADED",
    "RUN_FAILED",
    "RUN_CANCELLED",
    "STEP_EXECUTED",
    "STEP_BUDGET_EXHAUSTED",
    "DELEGATION_LIMIT_REACHED",
    "ORCHESTRATOR_FATAL_ERROR",
    # Planner events
    "PLANNER_STARTED",
    "PLANNER_DECISION",
    "PLANNER_PARSE_ERROR",
    "PLANNING_ERROR",
    # Provider events
    "DELEGATION_STARTED",
    "PROVIDER_INVOCATION_STARTED",
    "PROVIDER_INVOCATION_COMPLETED",
    "PROVIDER_INVOCATION_FAILED",
    "PROVIDER_REGISTERED",
    # Workspace events
    "WORKSPACE_FILE_READ",
    "WORKSPACE_FILE_WRITTEN",
    "WORKSPACE_PATH_BLOCKED",
    "SKILL_INSTALLED",
    # Routing events
    "ROUTING_DECISION",
    "ROUTING_FALLBACK",
    # Session events
    "SESSION_CREATED",
    "SESSION_REUSED",
    "SESSION_ROTATED",
    "SESSION_COMPACTED",
    "SESSION_RESET",
    "SESSION_REMOVED",
    # Ledger events
    "LEDGER_STEP_PERSISTED",
    "LEDGER_PERSISTED",
    "LEDGER_PERSIST_FAILED",
]
