"""Tests for the run ledger and its store."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import orjson
import pytest

from goatherd.orchestrator import (
    ArtifactIO,
    Finish,
    LedgerError,
    LedgerStore,
    OrchestrationPlannerDecision,
    OrchestrationRunLedger,
    OrchestrationStepLog,
    RunStatus,
    SessionGraph,
    TaskThread,
)


def make_step(number: int) -> OrchestrationStepLog:
    return OrchestrationStepLog(
        step=number,
        planner_raw_output="{}",
        planner_decision=OrchestrationPlannerDecision(action=Finish(message=f"step {number}")),
        artifact_io=ArtifactIO(read_path="notes.md"),
    )


def make_ledger(run_id: str = "run-1", **overrides) -> OrchestrationRunLedger:
    return OrchestrationRunLedger(
        run_id=run_id, entry_agent_id="goat", user_message="hello", **overrides
    )


class TestAppendStep:
    """Test step contiguity and idempotence."""

    def test_appends_in_order(self) -> None:
        ledger = make_ledger()

        assert ledger.append_step(make_step(1))
        assert ledger.append_step(make_step(2))
        assert [s.step for s in ledger.steps] == [1, 2]
        assert ledger.next_step == 3

    def test_duplicate_step_is_noop(self) -> None:
        ledger = make_ledger()
        ledger.append_step(make_step(1))

        assert not ledger.append_step(make_step(1))
        assert len(ledger.steps) == 1

    def test_gap_raises(self) -> None:
        ledger = make_ledger()
        ledger.append_step(make_step(1))

        with pytest.raises(LedgerError, match="does not follow"):
            ledger.append_step(make_step(3))


class TestLedgerStore:
    """Test LedgerStore persistence."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = LedgerStore(tmp_path / "runs")
        ledger = make_ledger()
        store.append_step(ledger, make_step(1))

        loaded = store.load("run-1")

        assert loaded.run_id == "run-1"
        assert loaded.status == RunStatus.RUNNING
        assert loaded.steps[0].artifact_io.read_path == "notes.md"

    def test_persisted_keys_are_camel_case(self, tmp_path: Path) -> None:
        store = LedgerStore(tmp_path / "runs")
        path = store.save(make_ledger(steps=[make_step(1)]))

        data = orjson.loads(path.read_bytes())

        assert data["schemaVersion"] == 2
        assert data["entryAgentId"] == "goat"
        assert "artifactIO" in data["steps"][0]
        assert data["steps"][0]["plannerDecision"]["action"]["type"] == "finish"

    def test_retried_append_after_reload(self, tmp_path: Path) -> None:
        """Re-appending a persisted step leaves a single copy on disk."""
        store = LedgerStore(tmp_path / "runs")
        store.append_step(make_ledger(), make_step(1))

        reloaded = store.load("run-1")
        appended = store.append_step(reloaded, make_step(1))

        assert not appended
        assert len(store.load("run-1").steps) == 1

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            LedgerStore(tmp_path / "runs").load("nope")

    def test_save_failure_raises_ledger_error(self, tmp_path: Path) -> None:
        runs_dir = tmp_path / "runs"
        runs_dir.write_text("not a directory", encoding="utf-8")

        with pytest.raises(LedgerError, match="Failed to write run ledger"):
            LedgerStore(runs_dir).save(make_ledger())

    def test_load_corrupt(self, tmp_path: Path) -> None:
        runs_dir = tmp_path / "runs"
        runs_dir.mkdir()
        (runs_dir / "bad.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(LedgerError):
            LedgerStore(runs_dir).load("bad")

    def test_list_runs_newest_first(self, tmp_path: Path) -> None:
        store = LedgerStore(tmp_path / "runs")
        now = datetime.now(UTC)
        store.save(make_ledger("old", started_at=now - timedelta(hours=1)))
        store.save(make_ledger("new", started_at=now, status=RunStatus.COMPLETED))
        (store.runs_dir / "junk.json").write_text("[]", encoding="utf-8")

        summaries = store.list_runs()

        assert [s.run_id for s in summaries] == ["new", "old"]
        assert summaries[0].status == RunStatus.COMPLETED
        assert [s.run_id for s in store.list_runs(limit=1)] == ["new"]

    def test_list_runs_without_directory(self, tmp_path: Path) -> None:
        assert LedgerStore(tmp_path / "missing").list_runs() == []


class TestSessionGraph:
    """Test SessionGraph node and edge bookkeeping."""

    def test_upsert_node_refreshes_bindings(self) -> None:
        graph = SessionGraph()
        graph.upsert_node("writer", provider_id="writer", session_id="s1")

        graph.upsert_node("writer", provider_session_id="p1")

        assert len(graph.nodes) == 1
        assert graph.nodes[0].session_id == "s1"
        assert graph.nodes[0].provider_session_id == "p1"

    def test_edges_deduplicated(self) -> None:
        graph = SessionGraph()

        graph.add_edge("goat", "writer", "first")
        graph.add_edge("goat", "writer", "second")
        graph.add_edge("goat", "coder")

        assert [(e.to_agent_id, e.reason) for e in graph.edges] == [
            ("writer", "second"),
            ("coder", None),
        ]


class TestTaskThreads:
    """Test task thread lookup and upsert."""

    def test_upsert_replaces_by_key(self) -> None:
        ledger = make_ledger()
        first = TaskThread(task_key="blog", agent_id="writer", created_step=1, updated_step=1)
        ledger.upsert_task_thread(first)

        ledger.upsert_task_thread(first.model_copy(update={"updated_step": 3}))

        assert len(ledger.task_threads) == 1
        assert ledger.get_task_thread("blog").updated_step == 3
        assert ledger.get_task_thread("other") is None
