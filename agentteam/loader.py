"""Agent definition loader with safety validation.

Agent definitions are Markdown files with a ``---`` delimited key: value
header followed by the persona text. They may come from untrusted
repositories, so every field is validated before a definition is accepted:

- ``name`` is the dispatch key and ends up on a command line, so it must
  be a short safe token.
- ``tools`` is checked against the known tool set.
- The persona is scanned for embedded shell and injection payloads.

Error-severity findings reject the file. Warning-severity findings are
surfaced but the definition still loads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from agentteam.config import AGENT_FILE_SUFFIX
from agentteam.policies import (
    DEFAULT_TOOLS,
    KNOWN_TOOLS,
    MAX_NAME_LENGTH,
    MAX_SYSTEM_PROMPT_LENGTH,
    NAME_PATTERN,
    is_known_tool,
    parse_tools,
)
from agentteam.schemas import (
    AgentDefinition,
    CollisionWarning,
    LoadResult,
    ScanResult,
    Severity,
    ValidationWarning,
)

logger = logging.getLogger(__name__)

FindingCallback = Callable[[str, "ValidationWarning | CollisionWarning"], None]

_NAME_RE = re.compile(NAME_PATTERN)
_FRONTMATTER_RE = re.compile(r"^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n(.*))?$", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")

# Commands that make a backtick span look like a shell invocation
SHELL_VERBS = {
    "bash", "sh", "zsh", "rm", "curl", "wget", "chmod", "chown", "sudo",
    "su", "dd", "mkfs", "nc", "ncat", "python", "python3", "perl", "ruby",
    "node", "eval", "exec", "source", "kill", "shutdown", "reboot",
}

# Persona patterns (regex, finding). Each pattern reports at most once.
SUSPICIOUS_PATTERNS = [
    (r"\$\(", "contains shell command substitution $(...)"),
    (r"\x00", "contains a null byte"),
    (r"\|\s*(?:sudo\s+)?(?:ba|z|k|da|c)?sh\b", "contains a pipe to shell"),
    (
        r"(?:;|&&|\|\|)\s*(?:sudo\s+)?(?:rm\s+-[a-zA-Z]*[rf]|mkfs\b|dd\s+if=|shutdown\b|reboot\b|:\(\)\s*\{)",
        "contains a chained destructive command",
    ),
    (r">\s*/dev/(?!null\b|stdout\b|stderr\b)\w", "contains a redirect into a device file"),
    (r"\b(?:eval|exec)\s*\(", "contains a dynamic evaluation call eval()/exec()"),
]


def _error(field: str, message: str) -> ValidationWarning:
    return ValidationWarning(severity=Severity.ERROR, field=field, message=message)


def _warning(field: str, message: str) -> ValidationWarning:
    return ValidationWarning(severity=Severity.WARNING, field=field, message=message)


def has_errors(warnings: Iterable[ValidationWarning]) -> bool:
    """Check if any finding rejects the definition."""
    return any(w.severity == Severity.ERROR for w in warnings)


# --- Field validators ---


def validate_name(name: str) -> list[ValidationWarning]:
    """Validate an agent identity.

    Args:
        name: The declared (or file-derived) agent name

    Returns:
        Error findings; empty if the name is safe
    """
    if not name:
        return [_error("name", "name is empty")]

    warnings = []
    if len(name) > MAX_NAME_LENGTH:
        warnings.append(_error("name", f"name exceeds {MAX_NAME_LENGTH} characters ({len(name)})"))
    if not _NAME_RE.fullmatch(name):
        warnings.append(_error(
            "name",
            f"name '{name}' contains invalid characters (allowed: letters, digits, '.', '-', '_')",
        ))
    if name[0] in ".-":
        warnings.append(_error("name", f"name '{name}' must not start with '.' or '-'"))
    return warnings


def validate_tools(
    tools: str,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> list[ValidationWarning]:
    """Warn once per tool outside the known set. Never errors."""
    return [
        _warning("tools", f"unknown tool '{tool}'")
        for tool in parse_tools(tools)
        if not is_known_tool(tool, known_tools)
    ]


def _has_shell_backticks(prompt: str) -> bool:
    """Detect backtick spans wrapping shell commands.

    Short inline code naming a tool (e.g. `read`) is ordinary Markdown.
    """
    for match in _INLINE_CODE_RE.finditer(prompt):
        span = match.group(1).strip()
        if span.lower() in KNOWN_TOOLS:
            continue
        words = span.split()
        if words and words[0].lower() in SHELL_VERBS:
            return True
    return False


def validate_system_prompt(prompt: str) -> list[ValidationWarning]:
    """Scan persona text for oversize content and injection payloads."""
    warnings = []

    if len(prompt) > MAX_SYSTEM_PROMPT_LENGTH:
        warnings.append(_error(
            "system_prompt",
            f"system prompt exceeds {MAX_SYSTEM_PROMPT_LENGTH} characters ({len(prompt)})",
        ))

    for pattern, finding in SUSPICIOUS_PATTERNS:
        if re.search(pattern, prompt, re.IGNORECASE):
            warnings.append(_warning("system_prompt", f"system prompt {finding}"))

    if _has_shell_backticks(prompt):
        warnings.append(_warning("system_prompt", "system prompt contains backtick shell command"))

    return warnings


def validate_agent(
    agent: AgentDefinition,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> list[ValidationWarning]:
    """Run every field validator over a definition."""
    return [
        *validate_name(agent.name),
        *validate_tools(agent.tools, known_tools),
        *validate_system_prompt(agent.system_prompt),
    ]


# --- File parsing ---


def parse_frontmatter(raw: str) -> tuple[dict[str, str], str] | None:
    """Split a definition into header fields and body.

    Returns None when the file has no frontmatter block.
    """
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return None

    fields: dict[str, str] = {}
    for line in match.group(1).splitlines():
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        fields[key.strip()] = value.strip().strip('"').strip("'")
    return fields, (match.group(2) or "").strip()


def load_agent_file(
    file_path: Path | str,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> LoadResult:
    """Parse and validate one agent definition file.

    Args:
        file_path: Path to a Markdown definition
        known_tools: Tool whitelist for the tools field

    Returns:
        LoadResult with the definition (None if rejected) and all findings
    """
    path = Path(file_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return LoadResult(path=str(path), warnings=[_error("file", f"could not read {path}: {e}")])

    parsed = parse_frontmatter(raw)
    if parsed is None:
        return LoadResult(path=str(path), warnings=[_error("file", "missing frontmatter block")])
    fields, body = parsed

    agent = AgentDefinition(
        name=fields.get("name") or path.stem,
        description=fields.get("description", ""),
        tools=fields.get("tools") or DEFAULT_TOOLS,
        model=fields.get("model", ""),
        thinking=fields.get("thinking", ""),
        system_prompt=body,
        file=str(path),
    )

    warnings = validate_agent(agent, known_tools)
    if has_errors(warnings):
        return LoadResult(path=str(path), agent=None, warnings=warnings)
    return LoadResult(path=str(path), agent=agent, warnings=warnings)


# --- Directory scanning ---


def _iter_definition_files(root: Path) -> Iterator[Path]:
    """Yield definition files depth-first: files before subdirectories, sorted."""
    try:
        entries = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.warning(f"Cannot list {root}: {e}")
        return

    subdirs = []
    for entry in entries:
        if entry.is_symlink() and entry.is_dir():
            continue
        if entry.is_dir():
            subdirs.append(entry)
        elif entry.is_file() and entry.suffix == AGENT_FILE_SUFFIX:
            yield entry

    for subdir in subdirs:
        yield from _iter_definition_files(subdir)


def _scan_into(
    result: ScanResult,
    root: Path,
    on_warning: FindingCallback | None,
    known_tools: frozenset[str] | set[str],
) -> None:
    if not root.is_dir():
        logger.debug(f"Agent directory does not exist: {root}")
        return

    for file_path in _iter_definition_files(root):
        loaded = load_agent_file(file_path.resolve(), known_tools)
        result.files.append(loaded)

        if on_warning:
            for warning in loaded.warnings:
                on_warning(loaded.path, warning)

        agent = loaded.agent
        if agent is None:
            continue

        existing = result.agents.get(agent.key)
        if existing is not None:
            collision = CollisionWarning(
                name=agent.name,
                original_path=existing.file,
                duplicate_path=agent.file,
            )
            result.collisions.append(collision)
            logger.warning(collision.message)
            if on_warning:
                on_warning(loaded.path, collision)
            continue

        result.agents[agent.key] = agent


def scan_agent_directory(
    root: Path | str,
    on_warning: FindingCallback | None = None,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> ScanResult:
    """Recursively load every definition under a directory.

    The first definition of an identity (case-insensitive) wins; later ones
    are recorded as collisions and excluded.

    Args:
        root: Directory to scan; a missing directory gives an empty result
        on_warning: Called with (file path, finding) for every validation
            finding and every collision
        known_tools: Tool whitelist

    Returns:
        ScanResult keyed by lowercase name
    """
    result = ScanResult()
    _scan_into(result, Path(root), on_warning, known_tools)
    return result


def scan_agent_dirs(
    roots: Iterable[Path | str],
    on_warning: FindingCallback | None = None,
    known_tools: frozenset[str] | set[str] = KNOWN_TOOLS,
) -> ScanResult:
    """Scan several roots in precedence order with one shared identity map."""
    result = ScanResult()
    for root in roots:
        _scan_into(result, Path(root), on_warning, known_tools)

    logger.info(
        f"Loaded {len(result.agents)} agents "
        f"({len(result.rejected)} rejected, {len(result.collisions)} collisions)"
    )
    return result
