"""CLI for AgentTeam - specialist agent teams behind a dispatcher."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys

import click

from agentteam.config import (
    ENV_CHILD_COMMAND,
    ENV_CONTEXT_WINDOW,
    ENV_DISPATCHER_MODEL,
    ENV_PROJECT_DIR,
    ProjectPaths,
)
from agentteam.policies import CHILD_COMMAND, DEFAULT_DISPATCHER_MODEL
from agentteam.schemas import AdvisoryLevel, Severity


def _build_runtime(directory: str, purge: bool = False, **kwargs):
    from agentteam.runtime import AgentTeamRuntime

    runtime = AgentTeamRuntime(paths=ProjectPaths.from_cwd(directory), **kwargs)
    runtime.start(purge=purge)
    return runtime


def _activate(runtime, team: str | None) -> None:
    from agentteam.teams import UnknownTeamError

    if not team:
        return
    try:
        runtime.activate_team(team)
    except UnknownTeamError:
        raise click.BadParameter(
            f"unknown team '{team}' (available: {', '.join(runtime.team.team_names)})",
            param_hint="--team",
        )


@click.group()
@click.version_option(version="0.1.0", prog_name="agentteam")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--dir", "-d",
    "directory",
    default=".",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, resolve_path=True),
    help="Project directory (defaults to current directory)",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, directory: str) -> None:
    """AgentTeam - dispatch tasks to teams of specialist agents.

    Agents are Markdown definitions under agents/, .claude/agents/ or
    .pi/agents/; teams are listed in .pi/agents/teams.yaml.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = {"directory": directory}


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--model", default=DEFAULT_DISPATCHER_MODEL, help="Dispatcher model as provider/id")
@click.option("--command", "child_command", default=None, help="Agent CLI command (defaults to 'pi')")
@click.option("--context-window", default=0, help="Dispatcher model context window in tokens")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(
    ctx: click.Context,
    port: int,
    host: str,
    model: str,
    child_command: str | None,
    context_window: int,
    reload: bool,
) -> None:
    """Start the AgentTeam HTTP broker server."""
    import uvicorn

    os.environ[ENV_PROJECT_DIR] = ctx.obj["directory"]
    os.environ[ENV_DISPATCHER_MODEL] = model
    os.environ[ENV_CONTEXT_WINDOW] = str(context_window)
    if child_command:
        os.environ[ENV_CHILD_COMMAND] = child_command

    click.echo(f"Starting AgentTeam broker on {host}:{port} for {ctx.obj['directory']}")
    uvicorn.run(
        "agentteam.broker:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.option("--team", "-t", default=None, help="Team to list (defaults to the first team)")
@click.pass_context
def agents(ctx: click.Context, team: str | None) -> None:
    """List loaded agents with definition findings and collisions."""
    from agentteam.prompt_engine import describe_agent

    runtime = _build_runtime(ctx.obj["directory"])
    _activate(runtime, team)

    click.echo(f"Team: {runtime.team.active_team}")
    if runtime.team.states:
        for state in runtime.team.states.values():
            click.echo(f"  {describe_agent(state)}")
    else:
        click.echo("  No agents loaded.")

    for loaded in runtime.scan.files:
        for warning in loaded.warnings:
            click.echo(f"{warning.severity.value.upper()} {loaded.path}: {warning.field}: {warning.message}")
    for collision in runtime.scan.collisions:
        click.echo(f"COLLISION {collision.message}")


@main.command()
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, resolve_path=True),
)
def validate(directory: str) -> None:
    """Validate every agent definition under DIRECTORY.

    Exits with status 1 if any file was rejected.

    \b
    Example:
        agentteam validate .pi/agents
    """
    from agentteam.loader import scan_agent_directory

    result = scan_agent_directory(directory)

    for loaded in result.files:
        status = "REJECTED" if loaded.rejected else "ok"
        click.echo(f"[{status}] {loaded.path}")
        for warning in loaded.warnings:
            marker = "error" if warning.severity == Severity.ERROR else "warning"
            click.echo(f"    {marker}: {warning.field}: {warning.message}")
    for collision in result.collisions:
        click.echo(f"[duplicate] {collision.message}")

    click.echo(
        f"\n{len(result.agents)} loaded, {len(result.rejected)} rejected, "
        f"{len(result.collisions)} duplicates"
    )
    if result.rejected:
        sys.exit(1)


@main.command()
@click.pass_context
def teams(ctx: click.Context) -> None:
    """List teams defined for the project."""
    runtime = _build_runtime(ctx.obj["directory"])
    for name, members in runtime.team.teams.items():
        marker = "*" if name == runtime.team.active_team else " "
        click.echo(f"{marker} {name}: {', '.join(members) or '(empty)'}")


@main.command()
@click.option("--team", "-t", default=None, help="Team to audit (defaults to the first team)")
@click.pass_context
def check(ctx: click.Context, team: str | None) -> None:
    """Audit local model overrides for tool-calling support.

    Exits with status 1 if any agent is blocked.
    """
    runtime = _build_runtime(ctx.obj["directory"])
    _activate(runtime, team)

    local = runtime.local_model_states()
    if not local:
        click.echo("No agents use local models.")
        return

    findings = asyncio.run(runtime.recheck())
    if not findings:
        click.echo(f"All {len(local)} local model(s) OK.")
        return

    click.echo(f"Model Audit: {len(findings)} finding(s)\n")
    for finding in findings:
        click.echo(finding.message)
        click.echo()
    if any(f.level == AdvisoryLevel.BLOCK for f in findings):
        sys.exit(1)


@main.command()
@click.argument("agent")
@click.argument("task")
@click.option("--team", "-t", default=None, help="Team to activate before dispatching")
@click.option("--model", "-m", default=None, help="Ambient model used when the agent has no override")
@click.option("--command", "child_command", default=None, help="Agent CLI command (defaults to 'pi')")
@click.option("--resume", is_flag=True, help="Keep stored sessions so the agent continues its last one")
@click.option("--full", is_flag=True, help="Print the untruncated transcript")
@click.pass_context
def dispatch(
    ctx: click.Context,
    agent: str,
    task: str,
    team: str | None,
    model: str | None,
    child_command: str | None,
    resume: bool,
    full: bool,
) -> None:
    """Dispatch TASK to AGENT and print its output.

    \b
    Example:
        agentteam dispatch scout "map the auth module"
        agentteam dispatch builder "add a test" --team dev --resume
    """
    command = tuple(shlex.split(child_command)) if child_command else CHILD_COMMAND
    runtime = _build_runtime(ctx.obj["directory"], purge=not resume, command=command)
    _activate(runtime, team)

    result = asyncio.run(runtime.dispatch(agent, task, model))

    click.echo(result.summary)
    click.echo()
    click.echo(result.full_output if full else result.output)
    if not result.ok:
        sys.exit(1)


@main.command()
@click.option("--team", "-t", default=None, help="Team to describe (defaults to the first team)")
@click.pass_context
def prompt(ctx: click.Context, team: str | None) -> None:
    """Print the dispatcher system prompt for a team."""
    runtime = _build_runtime(ctx.obj["directory"])
    _activate(runtime, team)
    click.echo(runtime.dispatcher_prompt())


@main.command()
def mcp() -> None:
    """Run the MCP server exposing dispatch to an MCP host.

    The server forwards to a running broker (`agentteam serve`).

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "agentteam": {
                    "command": "agentteam",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_agentteam.server import mcp as mcp_server
    mcp_server.run()


if __name__ == "__main__":
    main()
