"""Pydantic schemas for AgentTeam definitions, probe results and dispatch contracts."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from agentteam.policies import (
    DEFAULT_THINKING,
    MAX_DISPLAY_OUTPUT_CHARS,
    TRUNCATION_MARKER,
    parse_tools,
)


class Severity(str, Enum):
    """Severity of a validation finding."""

    ERROR = "error"
    WARNING = "warning"


class AgentStatus(str, Enum):
    """Lifecycle status of an agent within the active team."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class DispatchOutcome(str, Enum):
    """How a dispatch request was resolved."""

    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    ALREADY_RUNNING = "already_running"
    BLOCKED = "blocked"
    LAUNCH_FAILED = "launch_failed"


class AdvisoryLevel(str, Enum):
    """Severity of a model audit finding."""

    BLOCK = "block"
    WARN = "warn"
    UPDATE = "update"
    ADVISORY = "advisory"


# --- Agent definitions ---


class AgentDefinition(BaseModel):
    """Static configuration of one specialist agent."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    name: str
    description: str = ""
    tools: str = ""
    model: str = Field(default="", description="provider/model override; empty inherits the dispatcher")
    thinking: str = Field(default="", description="Thinking level override; empty means off")
    system_prompt: str = ""
    file: str = ""

    @property
    def key(self) -> str:
        """Case-insensitive identity used for lookup and deduplication."""
        return self.name.lower()

    @property
    def tool_list(self) -> list[str]:
        return parse_tools(self.tools)

    @property
    def effective_thinking(self) -> str:
        return self.thinking or DEFAULT_THINKING


class ValidationWarning(BaseModel):
    """One finding from validating a definition."""

    severity: Severity
    field: str
    message: str


class CollisionWarning(BaseModel):
    """A duplicate identity found during a directory scan."""

    name: str
    original_path: str
    duplicate_path: str

    @property
    def message(self) -> str:
        return (
            f"duplicate agent name '{self.name}' in {self.duplicate_path} "
            f"(already defined in {self.original_path})"
        )


class LoadResult(BaseModel):
    """Outcome of parsing one definition file."""

    path: str
    agent: AgentDefinition | None = None
    warnings: list[ValidationWarning] = Field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.agent is None


class ScanResult(BaseModel):
    """Outcome of scanning one or more definition directories."""

    agents: dict[str, AgentDefinition] = Field(default_factory=dict)
    collisions: list[CollisionWarning] = Field(default_factory=list)
    files: list[LoadResult] = Field(default_factory=list)

    @property
    def rejected(self) -> list[LoadResult]:
        return [f for f in self.files if f.rejected]


# --- Model capability probes ---


class ModelCheckResult(BaseModel):
    """Capability probe outcome for one locally hosted model."""

    model_config = ConfigDict(protected_namespaces=())

    model: str
    reachable: bool = False
    capabilities: list[str] = Field(default_factory=list)
    has_tools: bool = False
    parameter_size: str = ""
    parameter_size_b: float = 0.0
    context_length: int = 0
    update_available: bool | None = None

    @property
    def installed(self) -> bool:
        return self.reachable and (bool(self.capabilities) or self.has_tools)


class AuditFinding(BaseModel):
    """One advisory produced by a team model audit."""

    agent: str
    model: str
    level: AdvisoryLevel
    message: str


# --- Dispatch ---


def truncate_output(text: str, limit: int = MAX_DISPLAY_OUTPUT_CHARS) -> str:
    """Truncate a transcript for display, marking the cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class DispatchResult(BaseModel):
    """Result returned to the caller of a dispatch, in every path."""

    agent: str
    task: str
    outcome: DispatchOutcome
    status: AgentStatus | None = None
    full_output: str = ""
    exit_code: int = 1
    elapsed: float = Field(default=0.0, description="Seconds")

    @property
    def output(self) -> str:
        return truncate_output(self.full_output)

    @property
    def ok(self) -> bool:
        return self.outcome == DispatchOutcome.COMPLETED

    @property
    def summary(self) -> str:
        label = "done" if self.ok else "error"
        return f"[{self.agent}] {label} in {round(self.elapsed)}s"


# --- Broker request/response ---


class DispatchRequest(BaseModel):
    """Request to dispatch a task to an agent."""

    model_config = ConfigDict(protected_namespaces=())

    agent: str = Field(..., min_length=1, description="Agent name (case-insensitive)")
    task: str = Field(..., min_length=1, description="Task for the agent to execute")
    model: str | None = Field(default=None, description="Ambient dispatcher model as provider/id")


class DispatchResponse(BaseModel):
    """Response from a dispatch."""

    agent: str
    task: str
    outcome: DispatchOutcome
    status: AgentStatus | None = None
    summary: str
    output: str
    full_output: str
    exit_code: int
    elapsed: float


class AgentSummary(BaseModel):
    """Live view of one agent in the active team."""

    model_config = ConfigDict(protected_namespaces=())

    name: str
    description: str
    tools: str
    model: str
    thinking: str
    status: AgentStatus
    task: str
    tool_count: int
    elapsed: float
    last_work: str
    context_pct: float
    resumable: bool
    run_count: int


class TeamsResponse(BaseModel):
    """Available teams and the active one."""

    active: str
    teams: dict[str, list[str]]
    grid_columns: int


class AuditResponse(BaseModel):
    """Findings from a model audit."""

    checked: int
    findings: list[AuditFinding] = Field(default_factory=list)


class Notification(BaseModel):
    """A user-facing notice emitted by the orchestrator."""

    message: str
    level: Literal["info", "success", "warning", "error"] = "info"
    created_at: float


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    active_team: str = ""
    agents: int = 0
    running: int = 0
