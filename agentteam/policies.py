"""Capability and safety policies for agent definitions and dispatch."""

from __future__ import annotations

import os

# Tools a dispatched session may be granted. Anything else is flagged.
KNOWN_TOOLS: frozenset[str] = frozenset({
    "read",
    "write",
    "edit",
    "bash",
    "grep",
    "find",
    "ls",
})

# Read-only set used when a definition omits its tools field
DEFAULT_TOOLS = "read,grep,find,ls"

# Identity limits
MAX_NAME_LENGTH = 64
NAME_PATTERN = r"[a-zA-Z0-9._-]+"

# Persona (system prompt) limit
MAX_SYSTEM_PROMPT_LENGTH = 50_000

# Self-hosted backends get capability probes. Everything else is assumed
# to be a cloud provider with tool calling.
LOCAL_PROVIDERS: frozenset[str] = frozenset({
    "ollama",
    "m3-ollama",
    "llama.cpp",
    "lmstudio",
    "llamafile",
    "jan",
})

# Below this size tool calling is unreliable for agentic use
MIN_RELIABLE_PARAMS_B = 30

# Ollama endpoints
OLLAMA_HOST = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_REGISTRY_URL = "https://registry.ollama.com"
PROBE_TIMEOUT = 5.0  # seconds

# Dispatch settings
DEFAULT_DISPATCHER_MODEL = "openrouter/google/gemini-3-flash-preview"
DEFAULT_THINKING = "off"
CHILD_COMMAND = ("pi",)
TICK_INTERVAL = 1.0  # seconds
MAX_DISPLAY_OUTPUT_CHARS = 8000
TRUNCATION_MARKER = "\n\n... [truncated]"


def parse_tools(tools: str) -> list[str]:
    """Split a comma-delimited tool list, dropping blanks."""
    return [t.strip() for t in tools.split(",") if t.strip()]


def is_known_tool(tool: str, known_tools: frozenset[str] | set[str] = KNOWN_TOOLS) -> bool:
    """Check if a tool name is in the allowed set."""
    return tool in known_tools


def is_local_provider(provider: str) -> bool:
    """Check if a provider is self-hosted and needs a capability probe.

    An empty provider means the model is inherited from the dispatcher.
    """
    if not provider:
        return False
    return provider.lower() in LOCAL_PROVIDERS
