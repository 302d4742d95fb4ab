"""MCP server exposing AgentTeam dispatch to an MCP host."""

import os

import httpx
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("agentteam")
BROKER = os.environ.get("AGENTTEAM_BROKER", "http://localhost:8000")


@mcp.tool()
async def dispatch_agent(agent: str, task: str) -> dict:
    """Dispatch a task to a specialist agent in the active team.

    Blocks until the agent finishes. Returns a summary line, the (possibly
    truncated) output, the agent's final status and elapsed seconds.

    Args:
        agent: Agent name as listed by list_agents (case-insensitive)
        task: Clear, focused description of what the agent should do
    """
    async with httpx.AsyncClient(timeout=None) as client:
        r = await client.post(f"{BROKER}/dispatch", json={"agent": agent, "task": task})
        data = r.json()
    data.pop("full_output", None)
    return data


@mcp.tool()
async def list_agents() -> dict:
    """List the active team's agents with their status and tools."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        teams = (await client.get(f"{BROKER}/teams")).json()
        agents = (await client.get(f"{BROKER}/agents")).json()
    return {"team": teams.get("active", ""), "agents": agents}


if __name__ == "__main__":
    mcp.run()
