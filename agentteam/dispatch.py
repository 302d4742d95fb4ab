"""Dispatch engine: runs delegated tasks as isolated child sessions.

Each dispatch launches the agent CLI in JSON mode with the agent's tools,
model, thinking level and persona, streams its events into the agent's
live state and reconciles the final status when the process exits. At most
one dispatch per agent is in flight; a second request is rejected, not
queued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from agentteam.events import (
    AgentEndEvent,
    EventLineDecoder,
    MessageEndEvent,
    MessageUpdateEvent,
    SessionEvent,
    ToolExecutionStartEvent,
    Usage,
)
from agentteam.model_check import ModelCapabilityChecker, parse_model_string
from agentteam.notifications import Notifier, log_notifier, safe_notify
from agentteam.policies import (
    CHILD_COMMAND,
    DEFAULT_DISPATCHER_MODEL,
    DEFAULT_TOOLS,
    TICK_INTERVAL,
    is_local_provider,
)
from agentteam.prompt_engine import display_name
from agentteam.schemas import (
    AgentDefinition,
    AgentStatus,
    DispatchOutcome,
    DispatchResult,
)
from agentteam.teams import AgentState, TeamManager

logger = logging.getLogger(__name__)

StateObserver = Callable[[AgentState], None]

READ_CHUNK_SIZE = 64 * 1024
STDERR_TAIL_CHARS = 4000


def last_non_blank_line(text: str) -> str:
    for line in reversed(text.split("\n")):
        if line.strip():
            return line
    return ""


class Transcript:
    """Assistant text of one run; the last non-blank line is kept as deltas arrive."""

    def __init__(self):
        self._parts: list[str] = []
        self._partial = ""
        self._last_complete = ""

    def append(self, delta: str) -> None:
        self._parts.append(delta)
        lines = (self._partial + delta).split("\n")
        self._partial = lines.pop()
        for line in reversed(lines):
            if line.strip():
                self._last_complete = line
                break

    @property
    def last_line(self) -> str:
        return self._partial if self._partial.strip() else self._last_complete

    def text(self) -> str:
        return "".join(self._parts)


def build_child_args(
    definition: AgentDefinition,
    task: str,
    model: str,
    session_file: Path,
    resume: bool,
) -> list[str]:
    """Build the child CLI arguments; the task is always last."""
    args = [
        "--mode", "json",
        "-p",
        "--no-extensions",
        "--model", model,
        "--tools", definition.tools or DEFAULT_TOOLS,
        "--thinking", definition.effective_thinking,
        "--append-system-prompt", definition.system_prompt,
        "--session", str(session_file),
    ]
    if resume:
        args.append("-c")
    args.append(task)
    return args


class DispatchEngine:
    """Launches and tracks agent sessions for the active team."""

    def __init__(
        self,
        team: TeamManager,
        checker: ModelCapabilityChecker,
        notify: Notifier = log_notifier,
        command: Sequence[str] = CHILD_COMMAND,
        dispatcher_model: str = DEFAULT_DISPATCHER_MODEL,
        context_window: int = 0,
        tick_interval: float = TICK_INTERVAL,
        cwd: Path | str | None = None,
    ):
        """Initialize the engine.

        Args:
            team: Team manager owning the active agent states
            checker: Capability checker used for the pre-flight gate
            notify: Sink for completion notices
            command: Child CLI executable (and any leading arguments)
            dispatcher_model: Model used when neither agent nor caller names one
            context_window: Dispatcher model context size in tokens (0 = unknown)
            tick_interval: Seconds between elapsed-time updates
            cwd: Working directory for child sessions
        """
        self.team = team
        self.checker = checker
        self.notify = notify
        self.command = tuple(command)
        self.dispatcher_model = dispatcher_model
        self.context_window = context_window
        self.tick_interval = tick_interval
        self.cwd = str(cwd) if cwd else None

        self._in_flight: set[str] = set()
        self._observers: list[StateObserver] = []

    # --- Observation ---

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register a callback for state changes; returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, state: AgentState) -> None:
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception as e:
                logger.error(f"State observer failed: {e}")

    def is_running(self, name: str) -> bool:
        return name.lower() in self._in_flight

    # --- Dispatch ---

    async def dispatch(self, agent: str, task: str, ambient_model: str | None = None) -> DispatchResult:
        """Run a task on an agent and wait for it to finish.

        Args:
            agent: Agent name (case-insensitive)
            task: Task text passed to the child session
            ambient_model: Caller's "provider/model", used when the agent has no override

        Returns:
            DispatchResult; errors are reported in the result, never raised
        """
        key = agent.lower()
        state = self.team.get_state(key)
        if state is None:
            available = ", ".join(display_name(s.name) for s in self.team.states.values())
            return DispatchResult(
                agent=agent,
                task=task,
                outcome=DispatchOutcome.NOT_FOUND,
                full_output=f'Agent "{agent}" not found. Available: {available}',
            )

        if key in self._in_flight or state.status == AgentStatus.RUNNING:
            return DispatchResult(
                agent=agent,
                task=task,
                outcome=DispatchOutcome.ALREADY_RUNNING,
                status=state.status,
                full_output=f'Agent "{display_name(state.name)}" is already running. Wait for it to finish.',
            )

        # Claimed before the first await so a concurrent request sees it
        self._in_flight.add(key)
        try:
            model = state.definition.model or ambient_model or self.dispatcher_model
            blocked = await self._preflight(state, model, task)
            if blocked is not None:
                return blocked
            return await self._run(state, task, model)
        finally:
            self._in_flight.discard(key)

    async def _preflight(self, state: AgentState, model: str, task: str) -> DispatchResult | None:
        """Refuse local models that cannot call tools."""
        provider, model_name = parse_model_string(model)
        if not is_local_provider(provider):
            return None

        check = self.checker.cache.get(model_name)
        if check is None:
            check = await self.checker.check(model_name)

        if check.reachable and not check.has_tools:
            logger.warning(f"Blocked dispatch to {state.name}: {model_name} lacks tool calling")
            return DispatchResult(
                agent=state.name,
                task=task,
                outcome=DispatchOutcome.BLOCKED,
                status=state.status,
                full_output=(
                    f'BLOCKED: "{model_name}" does not support tool calling '
                    f"(capabilities: [{', '.join(check.capabilities)}]). "
                    f'Agent "{display_name(state.name)}" would fail to use tools. '
                    f"Fix the model override in {state.definition.file} or run `agentteam check`."
                ),
            )
        return None

    def _context_window_for(self, model: str) -> int:
        provider, model_name = parse_model_string(model)
        if is_local_provider(provider):
            check = self.checker.cache.get(model_name)
            if check is not None and check.context_length > 0:
                return check.context_length
        return self.context_window

    async def _tick(self, state: AgentState, started: float) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            state.elapsed = time.monotonic() - started
            self._publish(state)

    async def _run(self, state: AgentState, task: str, model: str) -> DispatchResult:
        definition = state.definition
        session_file = self.team.session_file_for(definition.name)
        resume = state.session_file is not None
        context_window = self._context_window_for(model)

        state.status = AgentStatus.RUNNING
        state.task = task
        state.tool_count = 0
        state.elapsed = 0.0
        state.last_work = ""
        state.run_count += 1
        self._publish(state)

        logger.info(f"Dispatching to {definition.name} (model={model}, resume={resume}): {task[:80]}")
        started = time.monotonic()
        ticker = asyncio.create_task(self._tick(state, started))

        args = build_child_args(definition, task, model, session_file, resume)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=os.environ.copy(),
            )
        except (OSError, ValueError) as e:
            # ValueError: NUL byte in an argument
            await _stop(ticker)
            self._interrupt(state, started, f"Error: {e}")
            logger.warning(f"Failed to launch {definition.name}: {e}")
            return DispatchResult(
                agent=definition.name,
                task=task,
                outcome=DispatchOutcome.LAUNCH_FAILED,
                status=state.status,
                full_output=f"Error spawning agent: {e}",
                exit_code=1,
                elapsed=state.elapsed,
            )
        except asyncio.CancelledError:
            await _stop(ticker)
            self._interrupt(state, started, "Cancelled")
            raise

        transcript = Transcript()
        stderr_reader = asyncio.create_task(_read_tail(proc.stderr))
        finished = False
        try:
            decoder = EventLineDecoder()
            while True:
                chunk = await proc.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for event in decoder.feed(chunk):
                    self._apply_event(state, event, transcript, context_window)
            for event in decoder.flush():
                self._apply_event(state, event, transcript, context_window)

            returncode = await proc.wait()
            stderr_tail = await stderr_reader
            finished = True
        finally:
            await _stop(ticker)
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            await _stop(stderr_reader)
            if not finished:
                logger.warning(f"Dispatch to {definition.name} interrupted, child killed")
                self._interrupt(state, started, state.last_work or "Cancelled")

        full_output = transcript.text()
        state.elapsed = time.monotonic() - started
        state.status = AgentStatus.DONE if returncode == 0 else AgentStatus.ERROR
        if state.status == AgentStatus.DONE:
            state.session_file = session_file
        state.last_work = transcript.last_line
        if state.status == AgentStatus.ERROR and not state.last_work:
            state.last_work = last_non_blank_line(stderr_tail) or f"exit code {returncode}"
        self._publish(state)

        logger.info(
            f"{definition.name} finished with exit code {returncode} "
            f"after {state.elapsed:.1f}s ({state.tool_count} tool calls)"
        )
        safe_notify(
            self.notify,
            f"{display_name(definition.name)} {state.status.value} in {round(state.elapsed)}s",
            "success" if state.status == AgentStatus.DONE else "error",
        )

        return DispatchResult(
            agent=definition.name,
            task=task,
            outcome=DispatchOutcome.COMPLETED if returncode == 0 else DispatchOutcome.FAILED,
            status=state.status,
            full_output=full_output,
            exit_code=returncode if returncode is not None else 1,
            elapsed=state.elapsed,
        )

    def _interrupt(self, state: AgentState, started: float, last_work: str) -> None:
        state.elapsed = time.monotonic() - started
        state.status = AgentStatus.ERROR
        state.last_work = last_work
        self._publish(state)

    def _apply_event(
        self,
        state: AgentState,
        event: SessionEvent,
        transcript: Transcript,
        context_window: int,
    ) -> None:
        if isinstance(event, MessageUpdateEvent):
            delta = event.text_delta
            if delta is None:
                return
            transcript.append(delta)
            state.last_work = transcript.last_line
        elif isinstance(event, ToolExecutionStartEvent):
            state.tool_count += 1
        elif isinstance(event, (MessageEndEvent, AgentEndEvent)):
            if not _update_context(state, event.usage, context_window):
                return
        self._publish(state)


def _update_context(state: AgentState, usage: Usage | None, context_window: int) -> bool:
    if usage is None or context_window <= 0:
        return False
    state.context_pct = usage.input / context_window * 100
    return True


async def _read_tail(stream: asyncio.StreamReader | None) -> str:
    """Drain a stream, keeping only its tail for diagnostics."""
    if stream is None:
        return ""
    tail = ""
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return tail
        tail = (tail + chunk.decode("utf-8", errors="replace"))[-STDERR_TAIL_CHARS:]


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
