"""Session runtime: wires discovery, teams, probes and dispatch together."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from pathlib import Path

from agentteam.config import (
    ENV_CHILD_COMMAND,
    ENV_CONTEXT_WINDOW,
    ENV_DISPATCHER_MODEL,
    ENV_PROJECT_DIR,
    ProjectPaths,
)
from agentteam.dispatch import DispatchEngine
from agentteam.loader import scan_agent_dirs
from agentteam.model_check import ModelCapabilityChecker, parse_model_string
from agentteam.notifications import NotificationLog
from agentteam.policies import CHILD_COMMAND, DEFAULT_DISPATCHER_MODEL, is_local_provider
from agentteam.prompt_engine import build_dispatcher_prompt, display_name
from agentteam.schemas import (
    AgentSummary,
    AuditFinding,
    CollisionWarning,
    DispatchResult,
    ScanResult,
    Severity,
    ValidationWarning,
)
from agentteam.teams import AgentState, TeamManager, load_team_manifest, purge_sessions

logger = logging.getLogger(__name__)


class AgentTeamRuntime:
    """One orchestrator session for a project directory.

    Lifecycle: ``start()`` on session start, ``shutdown()`` on session end.
    """

    def __init__(
        self,
        paths: ProjectPaths,
        command: tuple[str, ...] = CHILD_COMMAND,
        dispatcher_model: str = DEFAULT_DISPATCHER_MODEL,
        context_window: int = 0,
        checker: ModelCapabilityChecker | None = None,
        notifications: NotificationLog | None = None,
    ):
        self.paths = paths
        self.command = command
        self.dispatcher_model = dispatcher_model
        self.context_window = context_window
        self.checker = checker or ModelCapabilityChecker()
        self.notifications = notifications or NotificationLog()

        self.scan = ScanResult()
        self.team: TeamManager | None = None
        self.engine: DispatchEngine | None = None
        self._audits: set[asyncio.Task] = set()

    def start(self, purge: bool = True) -> None:
        """Load definitions and teams, then activate the first team."""
        if purge:
            purge_sessions(self.paths.session_dir)

        findings: list[str] = []

        def report(path: str, finding: ValidationWarning | CollisionWarning) -> None:
            label = Path(path).name
            if isinstance(finding, CollisionWarning):
                findings.append(f"{label}: {finding.message}")
            else:
                findings.append(f"{label}: [{finding.severity.value}] {finding.field}: {finding.message}")
                logger.warning(f"{path}: {finding.field}: {finding.message}")

        self.scan = scan_agent_dirs(self.paths.agent_dirs, on_warning=report)
        if findings:
            self.notifications(
                f"Agent definitions: {len(findings)} finding(s)\n" + "\n".join(findings),
                "warning",
            )

        teams, team_warnings = load_team_manifest(self.paths.teams_file)
        for warning in team_warnings:
            level = "error" if warning.severity == Severity.ERROR else "warning"
            self.notifications(f"{self.paths.teams_file.name}: {warning.message}", level)

        self.team = TeamManager(self.scan.agents, teams, self.paths.session_dir)
        self.engine = DispatchEngine(
            self.team,
            self.checker,
            notify=self.notifications,
            command=self.command,
            dispatcher_model=self.dispatcher_model,
            context_window=self.context_window,
            cwd=self.paths.root,
        )

        self.activate_team(self.team.team_names[0])

    def _require_team(self) -> TeamManager:
        if self.team is None:
            raise RuntimeError("runtime not started")
        return self.team

    def activate_team(self, team_name: str) -> dict[str, AgentState]:
        """Switch the active roster and schedule a background model audit.

        Raises:
            UnknownTeamError: If the team is not defined
        """
        team = self._require_team()
        states = team.activate(team_name)
        members = ", ".join(display_name(s.name) for s in states.values())
        self.notifications(f"Team: {team_name} ({members or 'no agents'})", "info")
        self.schedule_audit()
        return states

    def local_model_states(self) -> list[AgentState]:
        """Active agents whose explicit model override is locally hosted."""
        team = self._require_team()
        return [
            s for s in team.states.values()
            if s.definition.model and is_local_provider(parse_model_string(s.definition.model)[0])
        ]

    def schedule_audit(self) -> asyncio.Task | None:
        """Audit the active team in the background; needs a running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping background audit")
            return None

        states = list(self._require_team().states.values())
        task = loop.create_task(self.checker.audit(states, notify=self.notifications))
        self._audits.add(task)
        task.add_done_callback(self._audits.discard)
        return task

    async def recheck(self) -> list[AuditFinding]:
        """Clear probe results and audit the active team again."""
        self.checker.cache.clear()
        states = self.local_model_states()
        if not states:
            self.notifications("No agents use local models, nothing to check", "info")
            return []
        findings = await self.checker.audit(states, notify=self.notifications)
        if not findings:
            self.notifications(f"Model Audit: all {len(states)} local model(s) OK", "success")
        return findings

    async def dispatch(self, agent: str, task: str, model: str | None = None) -> DispatchResult:
        if self.engine is None:
            raise RuntimeError("runtime not started")
        return await self.engine.dispatch(agent, task, ambient_model=model)

    def agent_summaries(self) -> list[AgentSummary]:
        team = self._require_team()
        return [
            AgentSummary(
                name=s.definition.name,
                description=s.definition.description,
                tools=s.definition.tools,
                model=s.definition.model,
                thinking=s.definition.thinking,
                status=s.status,
                task=s.task,
                tool_count=s.tool_count,
                elapsed=s.elapsed,
                last_work=s.last_work,
                context_pct=s.context_pct,
                resumable=s.resumable,
                run_count=s.run_count,
            )
            for s in team.states.values()
        ]

    def dispatcher_prompt(self) -> str:
        team = self._require_team()
        return build_dispatcher_prompt(team.active_team, team.states.values())

    async def shutdown(self) -> None:
        """Cancel audits still in flight."""
        pending = list(self._audits)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._audits.clear()


def runtime_from_env() -> AgentTeamRuntime:
    """Build a runtime from the AGENTTEAM_* environment variables."""
    command = os.environ.get(ENV_CHILD_COMMAND)
    context_window = os.environ.get(ENV_CONTEXT_WINDOW, "0")
    return AgentTeamRuntime(
        paths=ProjectPaths.from_cwd(os.environ.get(ENV_PROJECT_DIR)),
        command=tuple(shlex.split(command)) if command else CHILD_COMMAND,
        dispatcher_model=os.environ.get(ENV_DISPATCHER_MODEL) or DEFAULT_DISPATCHER_MODEL,
        context_window=int(context_window) if context_window.isdigit() else 0,
    )


# Global runtime instance
_runtime: AgentTeamRuntime | None = None


def get_runtime() -> AgentTeamRuntime:
    """Get or create (and start) the global runtime."""
    global _runtime
    if _runtime is None:
        _runtime = runtime_from_env()
        _runtime.start()
    return _runtime


def set_runtime(runtime: AgentTeamRuntime | None) -> None:
    """Replace the global runtime (None resets it)."""
    global _runtime
    _runtime = runtime
