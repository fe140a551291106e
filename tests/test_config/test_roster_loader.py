"""Tests for loading the agent roster from YAML."""

from pathlib import Path

import pytest

from goatherd.config import RosterConfigError, load_roster
from goatherd.domain import AgentRole

ROSTER_YAML = """
agents:
  - id: Goat
    name: Goat
    description: Routes tasks to specialists
    provider: codex
    type: manager
  - id: writer
    description: Writes blog posts
    provider: local
    skills: [blog, copywriting]
    tags: [writing]
    priority: 80
    reports_to: goat
  - id: archivist
    provider: codex
    can_receive: false
    sessions_enabled: false
providers:
  codex:
    kind: command
    command: ["codex", "exec"]
  local:
    kind: http
    base_url: http://localhost:1234/v1
    model: qwen3
"""


def write_roster(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "agents.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadRoster:
    """Test load_roster."""

    def test_loads_agents_and_providers(self, tmp_path: Path) -> None:
        config = load_roster(write_roster(tmp_path, ROSTER_YAML))

        roster = config.roster
        assert roster.agent_ids == ["goat", "writer", "archivist"]
        goat = roster.require("goat")
        assert goat.role == AgentRole.MANAGER
        assert goat.can_delegate
        assert goat.is_manager
        writer = roster.require("writer")
        assert writer.name == "writer"
        assert writer.skills == ("blog", "copywriting")
        assert writer.priority == 80
        assert writer.reports_to == "goat"
        assert not writer.can_delegate
        archivist = roster.require("archivist")
        assert not archivist.can_receive
        assert not archivist.sessions_enabled
        assert config.providers["local"]["model"] == "qwen3"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RosterConfigError, match="not found"):
            load_roster(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(RosterConfigError, match="Failed to parse"):
            load_roster(write_roster(tmp_path, "agents: [unclosed"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(RosterConfigError, match="Expected a mapping"):
            load_roster(write_roster(tmp_path, "- just\n- a list\n"))

    def test_empty_file(self, tmp_path: Path) -> None:
        config = load_roster(write_roster(tmp_path, ""))

        assert len(config.roster) == 0

    def test_missing_provider_field(self, tmp_path: Path) -> None:
        with pytest.raises(RosterConfigError, match="provider"):
            load_roster(write_roster(tmp_path, "agents:\n  - id: goat\n"))

    def test_duplicate_ids(self, tmp_path: Path) -> None:
        content = "agents:\n  - id: goat\n    provider: a\n  - id: GOAT\n    provider: b\n"

        with pytest.raises(RosterConfigError, match="Duplicate agent id"):
            load_roster(write_roster(tmp_path, content))

    def test_example_roster_is_valid(self) -> None:
        example = Path(__file__).resolve().parents[2] / "config" / "agents.example.yaml"

        config = load_roster(example)

        assert config.roster.agent_ids == ["goat", "writer", "coder"]
        assert config.providers["codex"]["kind"] == "command"
