"""Tests for trace context."""

import dataclasses

import pytest

from goatherd.telemetry import TraceContext


class TestTraceContext:
    """Test TraceContext."""

    def test_new_trace_is_unique(self) -> None:
        first = TraceContext.new_trace()
        second = TraceContext.new_trace()

        assert first.trace_id != second.trace_id
        assert first.parent_span_id is None

    def test_new_span_keeps_trace_id(self) -> None:
        trace = TraceContext(trace_id="run-1")

        child, span_id = trace.new_span()

        assert child.trace_id == "run-1"
        assert child.parent_span_id == span_id
        assert trace.new_span()[1] != span_id

    def test_frozen(self) -> None:
        trace = TraceContext.new_trace()

        with pytest.raises(dataclasses.FrozenInstanceError):
            trace.trace_id = "other"  # type: ignore[misc]
