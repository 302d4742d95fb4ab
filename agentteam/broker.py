"""HTTP broker exposing the AgentTeam dispatcher to host tools."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from agentteam.runtime import get_runtime
from agentteam.schemas import (
    AgentStatus,
    AgentSummary,
    AuditResponse,
    DispatchRequest,
    DispatchResponse,
    ErrorResponse,
    HealthResponse,
    Notification,
    TeamsResponse,
)
from agentteam.teams import UnknownTeamError

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="AgentTeam Broker",
    description="HTTP broker for dispatching tasks to specialist agent teams",
    version="0.1.0",
)


@app.post("/dispatch", response_model=DispatchResponse)
async def dispatch(request: DispatchRequest) -> DispatchResponse:
    """Dispatch a task to an agent in the active team and wait for it.

    Args:
        request: DispatchRequest with agent name, task and optional model

    Returns:
        DispatchResponse with summary line, truncated and full output
    """
    logger.info(f"Received dispatch request: agent={request.agent}")
    runtime = get_runtime()

    result = await runtime.dispatch(request.agent, request.task, request.model)

    logger.info(f"Completed dispatch: agent={request.agent}, outcome={result.outcome.value}")
    return DispatchResponse(
        agent=result.agent,
        task=result.task,
        outcome=result.outcome,
        status=result.status,
        summary=result.summary,
        output=result.output,
        full_output=result.full_output,
        exit_code=result.exit_code,
        elapsed=result.elapsed,
    )


@app.get("/agents", response_model=list[AgentSummary])
async def list_agents() -> list[AgentSummary]:
    """List the active team's agents with their live state."""
    return get_runtime().agent_summaries()


@app.get("/teams", response_model=TeamsResponse)
async def list_teams() -> TeamsResponse:
    team = get_runtime().team
    return TeamsResponse(active=team.active_team, teams=team.teams, grid_columns=team.grid_columns)


@app.post("/teams/{name}/activate", response_model=TeamsResponse)
async def activate_team(name: str) -> TeamsResponse:
    """Switch the active team; a model audit runs in the background."""
    runtime = get_runtime()
    try:
        runtime.activate_team(name)
    except UnknownTeamError:
        raise HTTPException(status_code=404, detail=f"Unknown team: {name}")

    team = runtime.team
    return TeamsResponse(active=team.active_team, teams=team.teams, grid_columns=team.grid_columns)


@app.post("/audit", response_model=AuditResponse)
async def audit() -> AuditResponse:
    """Re-probe every local model used by the active team."""
    runtime = get_runtime()
    checked = len(runtime.local_model_states())
    findings = await runtime.recheck()
    return AuditResponse(checked=checked, findings=findings)


@app.get("/prompt")
async def dispatcher_prompt() -> dict[str, str]:
    runtime = get_runtime()
    return {"team": runtime.team.active_team, "prompt": runtime.dispatcher_prompt()}


@app.get("/notifications", response_model=list[Notification])
async def notifications(limit: int = 50) -> list[Notification]:
    return get_runtime().notifications.recent(limit)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check broker health and the active roster."""
    runtime = get_runtime()
    states = runtime.team.states.values()
    return HealthResponse(
        broker="healthy",
        active_team=runtime.team.active_team,
        agents=len(states),
        running=sum(1 for s in states if s.status == AgentStatus.RUNNING),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
