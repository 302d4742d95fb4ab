"""Dispatcher prompt generation from the active team."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentteam.teams import AgentState

DISPATCHER_TEMPLATE = """You are a dispatcher agent. You coordinate specialist agents to accomplish tasks.
You do NOT have direct access to the codebase. You MUST delegate all work through
agents using the dispatch_agent tool.

## Active Team: {team}
Members: {members}
You can ONLY dispatch to agents listed below. Do not attempt to dispatch to agents outside this team.

## How to Work
- Analyze the user's request and break it into clear sub-tasks
- Choose the right agent(s) for each sub-task
- Dispatch tasks using the dispatch_agent tool
- Review results and dispatch follow-up agents if needed
- If a task fails, try a different agent or adjust the task description
- Summarize the outcome for the user

## Rules
- NEVER try to read, write, or execute code directly - you have no such tools
- ALWAYS use dispatch_agent to get work done
- You can chain agents: use one to explore, then another to implement
- You can dispatch the same agent multiple times with different tasks
- Keep tasks focused - one clear objective per dispatch

## Agents

{catalog}"""


def display_name(name: str) -> str:
    """Human-readable agent name: "red-team" -> "Red Team"."""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("-"))


def _catalog_entry(state: AgentState) -> str:
    definition = state.definition
    return (
        f"### {display_name(definition.name)}\n"
        f"**Dispatch as:** `{definition.name}`\n"
        f"{definition.description}\n"
        f"**Tools:** {definition.tools}"
    )


def build_dispatcher_prompt(team_name: str, states: Iterable[AgentState]) -> str:
    """Build the dispatcher's system prompt listing the active team's agents."""
    states = list(states)
    members = ", ".join(display_name(s.definition.name) for s in states)
    catalog = "\n\n".join(_catalog_entry(s) for s in states)
    return DISPATCHER_TEMPLATE.format(
        team=team_name,
        members=members or "(none)",
        catalog=catalog or "No agents loaded.",
    )


def describe_agent(state: AgentState) -> str:
    """One-line status summary of an agent."""
    definition = state.definition
    session = "resumed" if state.resumable else "new"
    model_info = f" [{definition.model}]" if definition.model else " [dispatcher]"
    thinking_info = f" thinking:{definition.thinking}" if definition.thinking else ""
    return (
        f"{display_name(definition.name)} ({state.status.value}, {session}, runs: {state.run_count})"
        f"{model_info}{thinking_info}: {definition.description}"
    )
