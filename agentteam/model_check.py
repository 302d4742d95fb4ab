"""Capability probes for locally hosted models (Ollama API).

Cloud models are assumed to support tool calling. Local models are asked
via ``/api/show`` whether they do, how large they are and how much context
they have, and are compared against the public registry to flag stale
installs.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx

from agentteam.notifications import Notifier, log_notifier, safe_notify
from agentteam.policies import (
    MIN_RELIABLE_PARAMS_B,
    OLLAMA_HOST,
    OLLAMA_REGISTRY_URL,
    PROBE_TIMEOUT,
    is_local_provider,
)
from agentteam.prompt_engine import display_name
from agentteam.schemas import AdvisoryLevel, AuditFinding, ModelCheckResult

if TYPE_CHECKING:
    from agentteam.teams import AgentState

logger = logging.getLogger(__name__)

MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
MODEL_LAYER_MEDIA_TYPE = "application/vnd.ollama.image.model"

# Only plain library names are sent to the registry
_SAFE_REGISTRY_NAME = re.compile(r"[a-zA-Z0-9._-]+")
_PARAM_SIZE_RE = re.compile(r"([\d.]+)\s*([TBMK])", re.IGNORECASE)
_DIGEST_RE = re.compile(r"sha256-([a-f0-9]+)")

_UNIT_TO_BILLIONS = {
    "T": 1000.0,
    "B": 1.0,
    "M": 1 / 1000,
    "K": 1 / 1_000_000,
}


def parse_model_string(model: str) -> tuple[str, str]:
    """Split "provider/model-id" at the first slash.

    A string without a slash has no provider.
    """
    provider, sep, name = model.partition("/")
    if not sep:
        return "", model
    return provider, name


def parse_param_size(size: str) -> float:
    """Normalize Ollama's parameter size ("30.5B", "7.6B", "500M") to billions."""
    match = _PARAM_SIZE_RE.search(size or "")
    if not match:
        return 0.0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0.0
    return value * _UNIT_TO_BILLIONS[match.group(2).upper()]


def split_model_tag(model_name: str) -> tuple[str, str]:
    """Split "name:tag", defaulting the tag to latest."""
    base, sep, tag = model_name.rpartition(":")
    if not sep:
        return model_name, "latest"
    return base, tag


def find_context_length(model_info: dict[str, Any]) -> int:
    """Find context length under its architecture-specific key (e.g. qwen3.context_length)."""
    for key, value in model_info.items():
        if "context_length" in key and isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


class ModelCheckCache:
    """Probe results keyed by model name.

    Owned by a ModelCapabilityChecker; unreachable results are never stored.
    """

    def __init__(self) -> None:
        self._results: dict[str, ModelCheckResult] = {}

    def get(self, model_name: str) -> ModelCheckResult | None:
        return self._results.get(model_name)

    def store(self, result: ModelCheckResult) -> None:
        if not result.reachable:
            return
        self._results[result.model] = result

    def invalidate(self, model_name: str) -> None:
        self._results.pop(model_name, None)

    def clear(self) -> None:
        self._results.clear()

    def __contains__(self, model_name: object) -> bool:
        return model_name in self._results

    def __len__(self) -> int:
        return len(self._results)


class ModelCapabilityChecker:
    """Checks local models for tool-calling support before agents rely on them."""

    def __init__(
        self,
        host: str = OLLAMA_HOST,
        registry_url: str = OLLAMA_REGISTRY_URL,
        cache: ModelCheckCache | None = None,
        timeout: float = PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the checker.

        Args:
            host: Ollama base URL
            registry_url: Registry base URL for update checks
            cache: Shared result cache (a new one is created if omitted)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used to stub the network)
        """
        self.host = host.rstrip("/")
        self.registry_url = registry_url.rstrip("/")
        self.cache = cache if cache is not None else ModelCheckCache()
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def check(self, model_name: str) -> ModelCheckResult:
        """Probe one model by its backend name (without provider prefix)."""
        cached = self.cache.get(model_name)
        if cached is not None:
            logger.debug(f"Model check cache hit for {model_name}")
            return cached

        result = ModelCheckResult(model=model_name)

        try:
            async with self._client() as client:
                response = await client.post(f"{self.host}/api/show", json={"model": model_name})

                if response.status_code != 200:
                    # Host is up but the model is not installed
                    result.reachable = True
                    self.cache.store(result)
                    return result

                info = response.json()
                result.reachable = True
                result.capabilities = list(info.get("capabilities") or [])
                result.has_tools = "tools" in result.capabilities
                result.parameter_size = (info.get("details") or {}).get("parameter_size", "") or ""
                result.parameter_size_b = parse_param_size(result.parameter_size)
                result.context_length = find_context_length(info.get("model_info") or {})

                result.update_available = await self._check_for_update(
                    client, model_name, info.get("modelfile") or ""
                )

        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"Ollama unreachable at {self.host} while checking {model_name}: {e}")
            return ModelCheckResult(model=model_name)

        self.cache.store(result)
        return result

    async def _check_for_update(
        self,
        client: httpx.AsyncClient,
        model_name: str,
        modelfile: str,
    ) -> bool | None:
        """Compare the local model blob digest with the registry manifest.

        Returns None whenever the comparison cannot be made.
        """
        base, tag = split_model_tag(model_name)
        if not (_SAFE_REGISTRY_NAME.fullmatch(base) and _SAFE_REGISTRY_NAME.fullmatch(tag)):
            return None

        digest_match = _DIGEST_RE.search(modelfile)
        if not digest_match:
            return None
        local_digest = digest_match.group(1)

        try:
            response = await client.get(
                f"{self.registry_url}/v2/library/{base}/manifests/{tag}",
                headers={"Accept": MANIFEST_MEDIA_TYPE},
            )
            if response.status_code != 200:
                return None
            layers = response.json().get("layers") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.debug(f"Registry check failed for {model_name}: {e}")
            return None

        if not isinstance(layers, list):
            return None
        for layer in layers:
            if isinstance(layer, dict) and layer.get("mediaType") == MODEL_LAYER_MEDIA_TYPE:
                remote_digest = str(layer.get("digest", "")).removeprefix("sha256:")
                return local_digest != remote_digest
        return None

    async def ensure(self, model: str) -> ModelCheckResult | None:
        """Probe a "provider/model" identifier if it is locally hosted.

        Returns None for cloud or inherited models, which are never probed.
        """
        provider, model_name = parse_model_string(model)
        if not is_local_provider(provider):
            return None
        return await self.check(model_name)

    async def audit(
        self,
        states: Iterable[AgentState],
        notify: Notifier = log_notifier,
    ) -> list[AuditFinding]:
        """Probe every explicit local model override concurrently.

        All findings are delivered in a single notification once every probe
        has settled.
        """
        targets = []
        for state in states:
            model = state.definition.model
            if not model:
                continue
            provider, model_name = parse_model_string(model)
            if is_local_provider(provider):
                targets.append((state, model_name))

        outcomes = await asyncio.gather(
            *(self.check(model_name) for _, model_name in targets),
            return_exceptions=True,
        )

        findings: list[AuditFinding] = []
        for (state, model_name), outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Model check for {model_name} failed: {outcome}")
                outcome = ModelCheckResult(model=model_name)
            findings.extend(classify_check(display_name(state.definition.name), outcome))

        if findings:
            body = "\n\n".join(f.message for f in findings)
            safe_notify(notify, f"Model Audit: {len(findings)} finding(s):\n\n{body}", "warning")

        return findings


def classify_check(label: str, result: ModelCheckResult) -> list[AuditFinding]:
    """Turn one probe result into audit findings for the named agent."""
    model = result.model

    def finding(level: AdvisoryLevel, message: str) -> AuditFinding:
        return AuditFinding(agent=label, model=model, level=level, message=message)

    if not result.reachable:
        return [finding(
            AdvisoryLevel.ADVISORY,
            f"{label}: Ollama unreachable, cannot verify \"{model}\"\n"
            f"  Check OLLAMA_HOST or network connectivity",
        )]

    if not result.installed:
        return [finding(
            AdvisoryLevel.ADVISORY,
            f"{label}: model \"{model}\" not found on Ollama\n"
            f"  Run: ollama pull {model}",
        )]

    findings = []
    if not result.has_tools:
        findings.append(finding(
            AdvisoryLevel.BLOCK,
            f"BLOCK  {label}: \"{model}\" does NOT support tool calling\n"
            f"  Capabilities: [{', '.join(result.capabilities)}]\n"
            f"  Agent will fail to use tools (read, write, bash, etc.)\n"
            f"  Fix: use a tool-capable model or remove the model override",
        ))
    elif 0 < result.parameter_size_b < MIN_RELIABLE_PARAMS_B:
        findings.append(finding(
            AdvisoryLevel.WARN,
            f"WARN   {label}: \"{model}\" ({result.parameter_size}) tool calling "
            f"unreliable below {MIN_RELIABLE_PARAMS_B}B\n"
            f"  Recommend: a 30B+ tool-capable model or a cloud model",
        ))

    if result.update_available is True:
        findings.append(finding(
            AdvisoryLevel.UPDATE,
            f"UPDATE {label}: \"{model}\" has a newer version\n"
            f"  Run: ollama pull {model}",
        ))
    return findings
