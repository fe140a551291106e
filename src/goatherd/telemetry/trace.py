"""Run correlation ids.

A run's id doubles as its trace id; every provider call inside the run gets
its own span id so log lines for one call can be grouped.
"""

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class TraceContext:
    """Trace id plus the span that is currently open, if any."""

    trace_id: str
    parent_span_id: str | None = None

    @classmethod
    def new_trace(cls) -> "TraceContext":
        return cls(trace_id=str(uuid.uuid4()))

    def new_span(self) -> tuple["TraceContext", str]:
        """Open a child span; returns the child context and the new span id."""
        span_id = uuid.uuid4().hex
        return TraceContext(trace_id=self.trace_id, parent_span_id=span_id), span_id
