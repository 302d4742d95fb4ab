"""Per-project filesystem layout."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

AGENT_FILE_SUFFIX = ".md"
SESSION_FILE_SUFFIX = ".json"


@dataclass(frozen=True)
class ProjectPaths:
    """Locations of agent definitions, team manifest and session artifacts."""

    root: Path

    @classmethod
    def from_cwd(cls, cwd: Path | str | None = None) -> "ProjectPaths":
        return cls(root=Path(cwd).resolve() if cwd else Path.cwd())

    @property
    def agent_dirs(self) -> list[Path]:
        """Definition roots in precedence order (first identity wins)."""
        return [
            self.root / "agents",
            self.root / ".claude" / "agents",
            self.root / ".pi" / "agents",
        ]

    @property
    def teams_file(self) -> Path:
        return self.root / ".pi" / "agents" / "teams.yaml"

    @property
    def session_dir(self) -> Path:
        return self.root / ".pi" / "agent-sessions"


# Broker settings passed from `agentteam serve` to the uvicorn worker
ENV_PROJECT_DIR = "AGENTTEAM_DIR"
ENV_CHILD_COMMAND = "AGENTTEAM_COMMAND"
ENV_DISPATCHER_MODEL = "AGENTTEAM_MODEL"
ENV_CONTEXT_WINDOW = "AGENTTEAM_CONTEXT_WINDOW"
