"""Team manifest loading and roster activation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

from agentteam.config import SESSION_FILE_SUFFIX
from agentteam.schemas import AgentDefinition, AgentStatus, Severity, ValidationWarning

logger = logging.getLogger(__name__)

DEFAULT_TEAM_NAME = "all"
MAX_GRID_COLUMNS = 6


class UnknownTeamError(KeyError):
    """Raised when activating a team the manifest does not define."""


@dataclass
class AgentState:
    """Live execution record of one agent in the active team.

    Mutated only by the DispatchEngine once created.
    """

    definition: AgentDefinition
    status: AgentStatus = AgentStatus.IDLE
    task: str = ""
    tool_count: int = 0
    elapsed: float = 0.0
    last_work: str = ""
    context_pct: float = 0.0
    session_file: Path | None = None
    run_count: int = 0

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def resumable(self) -> bool:
        return self.session_file is not None


def session_key(name: str) -> str:
    """File-safe session key for an agent name."""
    return re.sub(r"\s+", "-", name.lower())


def parse_team_manifest(raw: str) -> tuple[dict[str, list[str]], list[ValidationWarning]]:
    """Parse a teams.yaml mapping of team name to ordered member list.

    Malformed entries are dropped and reported; an unparseable document
    yields no teams.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        return {}, [ValidationWarning(
            severity=Severity.ERROR, field="teams", message=f"could not parse team manifest: {e}",
        )]

    if data is None:
        return {}, []
    if not isinstance(data, dict):
        return {}, [ValidationWarning(
            severity=Severity.ERROR, field="teams", message="team manifest must be a mapping of team name to members",
        )]

    teams: dict[str, list[str]] = {}
    warnings: list[ValidationWarning] = []
    for team_name, members in data.items():
        name = str(team_name).strip()
        if members is None:
            members = []
        if not isinstance(members, list):
            warnings.append(ValidationWarning(
                severity=Severity.WARNING, field="teams", message=f"team '{name}' members must be a list",
            ))
            continue

        teams[name] = []
        for member in members:
            if isinstance(member, (dict, list)) or member is None:
                warnings.append(ValidationWarning(
                    severity=Severity.WARNING, field="teams", message=f"team '{name}' has a non-scalar member",
                ))
                continue
            teams[name].append(str(member).strip())

    return teams, warnings


def load_team_manifest(path: Path | str) -> tuple[dict[str, list[str]], list[ValidationWarning]]:
    """Read a team manifest from disk; a missing file defines no teams."""
    path = Path(path)
    if not path.exists():
        return {}, []
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return {}, [ValidationWarning(
            severity=Severity.ERROR, field="teams", message=f"could not read {path}: {e}",
        )]
    return parse_team_manifest(raw)


def purge_sessions(session_dir: Path | str) -> int:
    """Delete stored session artifacts so agents start fresh.

    Returns:
        Number of artifacts removed
    """
    session_dir = Path(session_dir)
    if not session_dir.is_dir():
        return 0

    removed = 0
    for artifact in session_dir.glob(f"*{SESSION_FILE_SUFFIX}"):
        try:
            artifact.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not remove session artifact {artifact}: {e}")
    if removed:
        logger.info(f"Purged {removed} session artifacts from {session_dir}")
    return removed


def auto_grid_columns(size: int) -> int:
    """Column count for a dashboard grid of `size` agents."""
    if size <= 3:
        return size
    if size == 4:
        return 2
    return 3


class TeamManager:
    """Resolves team manifests into the live roster of agent states."""

    def __init__(
        self,
        agents: dict[str, AgentDefinition],
        teams: dict[str, list[str]] | None,
        session_dir: Path | str,
    ):
        """Initialize the manager.

        Args:
            agents: Loaded definitions keyed by lowercase name
            teams: Team name to member names; empty or None synthesizes
                a single team of every loaded agent
            session_dir: Directory holding per-agent session artifacts
        """
        self.agents = dict(agents)
        self.teams = dict(teams) if teams else {}
        if not self.teams:
            self.teams = {DEFAULT_TEAM_NAME: [a.name for a in self.agents.values()]}
        self.session_dir = Path(session_dir)
        self.session_dir.mkdir(parents=True, exist_ok=True)

        self.active_team = ""
        self.grid_columns = 0
        self._states: dict[str, AgentState] = {}

    @property
    def states(self) -> dict[str, AgentState]:
        """States of the active team, keyed by lowercase name."""
        return self._states

    @property
    def team_names(self) -> list[str]:
        return list(self.teams)

    def get_state(self, name: str) -> AgentState | None:
        return self._states.get(name.lower())

    def session_file_for(self, name: str) -> Path:
        return self.session_dir / f"{session_key(name)}{SESSION_FILE_SUFFIX}"

    def activate(self, team_name: str) -> dict[str, AgentState]:
        """Replace the active roster with fresh idle states for a team.

        Members that do not match a loaded definition are skipped.

        Raises:
            UnknownTeamError: If the team is not defined
        """
        if team_name not in self.teams:
            raise UnknownTeamError(team_name)

        states: dict[str, AgentState] = {}
        for member in self.teams[team_name]:
            definition = self.agents.get(member.lower())
            if definition is None:
                logger.debug(f"Team '{team_name}' member '{member}' has no definition, skipping")
                continue
            session_file = self.session_file_for(definition.name)
            states[definition.key] = AgentState(
                definition=definition,
                session_file=session_file if session_file.exists() else None,
            )

        self._states = states
        self.active_team = team_name
        self.grid_columns = auto_grid_columns(len(states))
        logger.info(f"Activated team '{team_name}' with {len(states)} agents")
        return states

    def set_grid_columns(self, columns: int) -> None:
        """Override the auto-sized grid width until the next activation."""
        if not 1 <= columns <= MAX_GRID_COLUMNS:
            raise ValueError(f"grid columns must be between 1 and {MAX_GRID_COLUMNS}")
        self.grid_columns = columns
