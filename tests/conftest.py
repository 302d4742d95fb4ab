"""Pytest configuration and fixtures for AgentTeam tests."""

import json
import sys
from pathlib import Path

import httpx
import pytest


def make_agent_md(fields: dict[str, str], body: str) -> str:
    """Render a definition file: key: value header, then persona text."""
    header = "\n".join(f"{key}: {value}" for key, value in fields.items())
    return f"---\n{header}\n---\n{body}"


def write_agent(directory: Path, filename: str, content: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(content, encoding="utf-8")
    return path


# Stand-in for the agent CLI: reads the task (last argument) and streams
# newline-delimited JSON events the way a real session does.
FAKE_AGENT_CLI = '''\
import json
import sys
import time
from pathlib import Path

args = sys.argv[1:]
task = args[-1]
Path(__file__).with_name("last_args.json").write_text(json.dumps(args))
Path(args[args.index("--session") + 1]).write_text("{}")


def emit(event):
    sys.stdout.write(json.dumps(event) + "\\n")
    sys.stdout.flush()


def text(delta):
    emit({"type": "message_update", "assistantMessageEvent": {"type": "text_delta", "delta": delta}})


if "slow" in task:
    time.sleep(0.5)
if "silent-fail" in task:
    sys.stderr.write("starting\\nfatal: model not available\\n")
    sys.exit(2)

text("Working on it\\n")
if "garbage" in task:
    sys.stdout.write("not json at all\\n")
    sys.stdout.write(json.dumps({"type": "unknown_event"}) + "\\n")
for _ in range(3):
    emit({"type": "tool_execution_start", "toolName": "read"})
if "big" in task:
    text("x" * 9000)
else:
    text("All done")
emit({"type": "message_end", "message": {"role": "assistant", "usage": {"input": 500, "output": 20}}})
emit({"type": "agent_end", "messages": [
    {"role": "user"},
    {"role": "assistant", "usage": {"input": 800, "output": 30}},
]})
if "fail" in task:
    sys.exit(3)
'''


@pytest.fixture
def fake_agent_cli(tmp_path: Path) -> tuple[str, ...]:
    """Command tuple launching the fake agent CLI with this interpreter."""
    script_dir = tmp_path / "bin"
    script_dir.mkdir()
    script = script_dir / "fake_agent.py"
    script.write_text(FAKE_AGENT_CLI)
    return (sys.executable, str(script))


@pytest.fixture
def last_child_args(fake_agent_cli):
    """Read the arguments the fake CLI was last launched with."""
    def read() -> list[str]:
        return json.loads((Path(fake_agent_cli[1]).parent / "last_args.json").read_text())
    return read


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project with three agents and two teams under .pi/agents."""
    root = tmp_path / "project"
    agents_dir = root / ".pi" / "agents"
    write_agent(agents_dir, "scout.md", make_agent_md(
        {"name": "scout", "description": "Fast recon", "tools": "read,grep,find,ls"},
        "You are a scout agent.",
    ))
    write_agent(agents_dir, "builder.md", make_agent_md(
        {"name": "builder", "description": "Implements changes", "tools": "read,write,edit,bash"},
        "You are a builder agent.",
    ))
    write_agent(agents_dir, "red-team.md", make_agent_md(
        {"name": "red-team", "description": "Security review", "thinking": "high"},
        "You are a security reviewer.",
    ))
    (agents_dir / "teams.yaml").write_text(
        "dev:\n  - scout\n  - builder\nsecurity:\n  - red-team\n  - scout\n"
    )
    return root


@pytest.fixture
def ollama_transport():
    """Build a MockTransport answering /api/show and registry manifest requests.

    show: JSON body for /api/show, or None to answer 404
    registry: JSON body for the registry manifest, or None to answer 404
    """
    def build(show: dict | None = None, registry: dict | None = None, calls: list | None = None):
        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            if request.url.path == "/api/show":
                if show is None:
                    return httpx.Response(404, json={"error": "model not found"})
                return httpx.Response(200, json=show)
            if "/manifests/" in request.url.path:
                if registry is None:
                    return httpx.Response(404)
                return httpx.Response(200, json=registry)
            return httpx.Response(404)

        return httpx.MockTransport(handler)

    return build


@pytest.fixture
def unreachable_transport():
    """MockTransport that fails every request with a connection error."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)
