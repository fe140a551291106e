"""Workspace file collaborator and skill installer.

All planner-requested paths are resolved inside one agent's workspace
directory. Any ``..`` segment is redirected to a fixed blocked-path file
instead of escaping the workspace. Empty and ``.`` segments are dropped; a
path that names the workspace root itself maps to the shared context file.
"""

import shutil
from dataclasses import dataclass
from pathlib import Path

from goatherd.domain import normalize_agent_id
from goatherd.orchestrator.text import ensure_trailing_newline
from goatherd.telemetry import (
    SKILL_INSTALLED,
    WORKSPACE_FILE_READ,
    WORKSPACE_FILE_WRITTEN,
    WORKSPACE_PATH_BLOCKED,
    get_logger,
)

log = get_logger(__name__)

BLOCKED_PATH = "coordination/unsafe-path-blocked.md"
DEFAULT_CONTEXT_PATH = "coordination/context.md"
SKILL_FILE_NAME = "SKILL.md"


class WorkspaceFiles:
    """Read and write files inside one agent's workspace.

    Args:
        workspaces_dir: Root holding one directory per agent.
        agent_id: Owner of the workspace (the run's entry agent).
    """

    def __init__(self, workspaces_dir: Path, agent_id: str) -> None:
        self.agent_id = normalize_agent_id(agent_id)
        self.root = Path(workspaces_dir) / self.agent_id

    def resolve(self, requested_path: str) -> Path:
        """Map a planner path to an absolute path strictly inside the workspace."""
        segments = requested_path.replace("\\", "/").strip().split("/")
        if ".." in segments:
            return self._blocked(requested_path)
        relative = "/".join(s for s in segments if s not in ("", "."))
        resolved = self.root / (relative or DEFAULT_CONTEXT_PATH)

        # Symlinks inside the workspace may still point outside it.
        root = self.root.resolve()
        real = resolved.resolve()
        if real == root or root not in real.parents:
            return self._blocked(requested_path)
        return resolved

    def _blocked(self, requested_path: str) -> Path:
        log.warning(WORKSPACE_PATH_BLOCKED, agent_id=self.agent_id, requested_path=requested_path)
        return self.root / BLOCKED_PATH

    def read(self, requested_path: str) -> tuple[Path, str | None]:
        """Read a workspace file.

        Returns:
            The resolved path and its content, or None if it does not exist.
        """
        resolved = self.resolve(requested_path)
        if not resolved.is_file():
            log.info(WORKSPACE_FILE_READ, path=str(resolved), found=False)
            return resolved, None
        content = resolved.read_text(encoding="utf-8", errors="replace")
        log.info(WORKSPACE_FILE_READ, path=str(resolved), found=True, chars=len(content))
        return resolved, content

    def write(self, requested_path: str, content: str) -> Path:
        """Write a workspace file, creating parent directories."""
        resolved = self.resolve(requested_path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(ensure_trailing_newline(content), encoding="utf-8")
        log.info(WORKSPACE_FILE_WRITTEN, path=str(resolved), chars=len(content))
        return resolved

    def handoff_path(self, run_id: str, step: int, direction: str, agent_id: str) -> Path:
        """Path of a delegation handoff artifact.

        ``direction`` is ``"to"`` (request) or ``"from"`` (response).
        """
        return self.root / "coordination" / run_id / f"step-{step:02d}-{direction}-{agent_id}.md"

    def write_handoff(
        self, run_id: str, step: int, direction: str, agent_id: str, content: str
    ) -> Path:
        path = self.handoff_path(run_id, step, direction, agent_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(ensure_trailing_newline(content), encoding="utf-8")
        log.debug(WORKSPACE_FILE_WRITTEN, path=str(path), handoff=direction, agent_id=agent_id)
        return path


@dataclass(frozen=True)
class InstalledSkill:
    agent_id: str
    skill_id: str
    skill_name: str
    source: str  # "source-path" or "generated"
    installed_path: Path
    replaced: bool


def render_skill_markdown(skill_id: str, description: str) -> str:
    return "\n".join(
        [
            "---",
            f"name: {skill_id}",
            f"description: {description}",
            "---",
            "",
            f"# {skill_id}",
            "",
            "## When to Use",
            f"- {description}",
            "",
            "## Steps",
            "- Describe the procedure for this skill here.",
        ]
    )


class SkillInstaller:
    """Installs skills as ``<workspace>/skills/<skill_id>/SKILL.md``."""

    def __init__(self, workspaces_dir: Path) -> None:
        self.workspaces_dir = Path(workspaces_dir)

    def install(
        self,
        agent_id: str,
        skill_name: str,
        description: str | None = None,
        content: str | None = None,
        source_path: str | None = None,
    ) -> InstalledSkill:
        """Install or replace a skill for an agent.

        A ``source_path`` (a skill directory or its SKILL.md) is copied as-is;
        otherwise ``content`` or a generated template is written.

        Raises:
            ValueError: If the skill name has no usable characters.
            FileNotFoundError: If ``source_path`` has no SKILL.md.
        """
        agent_id = normalize_agent_id(agent_id)
        skill_id = normalize_agent_id(skill_name)
        if not skill_id:
            raise ValueError("Skill name must contain at least one alphanumeric character")

        target_dir = self.workspaces_dir / agent_id / "skills" / skill_id
        target_file = target_dir / SKILL_FILE_NAME
        replaced = target_dir.exists()

        if source_path and source_path.strip():
            source = Path(source_path.strip()).expanduser()
            source_file = source if source.name.lower() == "skill.md" else source / SKILL_FILE_NAME
            if not source_file.is_file():
                raise FileNotFoundError(f"Source skill not found: {source_file}")
            if replaced:
                shutil.rmtree(target_dir)
            shutil.copytree(source_file.parent, target_dir)
            origin = "source-path"
        else:
            summary = (description or "").strip() or f"Skill instructions for {skill_name.strip()}."
            body = (content or "").strip() or render_skill_markdown(skill_id, summary)
            target_dir.mkdir(parents=True, exist_ok=True)
            target_file.write_text(ensure_trailing_newline(body), encoding="utf-8")
            origin = "generated"

        log.info(
            SKILL_INSTALLED,
            agent_id=agent_id,
            skill_id=skill_id,
            source=origin,
            replaced=replaced,
        )
        return InstalledSkill(
            agent_id=agent_id,
            skill_id=skill_id,
            skill_name=skill_name.strip(),
            source=origin,
            installed_path=target_file,
            replaced=replaced,
        )
