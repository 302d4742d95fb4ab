"""Tests for local model capability probes and team audits."""

import pytest

from agentteam.model_check import (
    ModelCapabilityChecker,
    ModelCheckCache,
    classify_check,
    find_context_length,
    parse_model_string,
    parse_param_size,
    split_model_tag,
)
from agentteam.schemas import AdvisoryLevel, AgentDefinition, ModelCheckResult
from agentteam.teams import AgentState

LOCAL_DIGEST = "a" * 64
REMOTE_DIGEST = "b" * 64


def show_body(capabilities=("completion", "tools"), size="30.5B", digest=LOCAL_DIGEST):
    return {
        "capabilities": list(capabilities),
        "details": {"parameter_size": size},
        "model_info": {"general.architecture": "qwen3", "qwen3.context_length": 40960},
        "modelfile": f"FROM /root/.ollama/models/blobs/sha256-{digest}\n",
    }


def manifest(digest):
    return {"layers": [
        {"mediaType": "application/vnd.ollama.image.model", "digest": f"sha256:{digest}"},
        {"mediaType": "application/vnd.ollama.image.template", "digest": "sha256:" + "c" * 64},
    ]}


def state_for(name, model=""):
    return AgentState(definition=AgentDefinition(name=name, model=model, file=f"/agents/{name}.md"))


class TestParsing:
    """Test model string and metadata parsing helpers."""

    def test_parse_model_string(self):
        assert parse_model_string("ollama/qwen3:30b") == ("ollama", "qwen3:30b")
        assert parse_model_string("openrouter/google/gemini-3-flash-preview") == (
            "openrouter", "google/gemini-3-flash-preview",
        )

    def test_parse_model_string_without_provider(self):
        assert parse_model_string("qwen3:30b") == ("", "qwen3:30b")

    @pytest.mark.parametrize("size,expected", [
        ("30.5B", 30.5),
        ("7.6B", 7.6),
        ("500M", 0.5),
        ("1.2T", 1200.0),
        ("", 0.0),
        ("unknown", 0.0),
    ])
    def test_parse_param_size(self, size, expected):
        assert parse_param_size(size) == pytest.approx(expected)

    def test_split_model_tag(self):
        assert split_model_tag("qwen3:30b") == ("qwen3", "30b")
        assert split_model_tag("llama3") == ("llama3", "latest")

    def test_find_context_length(self):
        assert find_context_length({"llama.context_length": 8192, "llama.block_count": 32}) == 8192
        assert find_context_length({"general.architecture": "x"}) == 0


class TestModelCheckCache:
    """Test asymmetric caching of probe results."""

    def test_unreachable_not_stored(self):
        cache = ModelCheckCache()
        cache.store(ModelCheckResult(model="qwen3:30b", reachable=False))
        assert "qwen3:30b" not in cache

    def test_reachable_stored_and_invalidated(self):
        cache = ModelCheckCache()
        cache.store(ModelCheckResult(model="qwen3:30b", reachable=True, has_tools=True))
        assert cache.get("qwen3:30b").has_tools
        cache.invalidate("qwen3:30b")
        assert len(cache) == 0


class TestModelCapabilityChecker:
    """Test probes against a stubbed Ollama host."""

    @pytest.mark.asyncio
    async def test_tool_capable_model(self, ollama_transport):
        checker = ModelCapabilityChecker(transport=ollama_transport(show=show_body()))

        result = await checker.check("qwen3:30b")

        assert result.reachable
        assert result.installed
        assert result.has_tools
        assert result.parameter_size == "30.5B"
        assert result.parameter_size_b == pytest.approx(30.5)
        assert result.context_length == 40960

    @pytest.mark.asyncio
    async def test_model_without_tools(self, ollama_transport):
        checker = ModelCapabilityChecker(transport=ollama_transport(show=show_body(capabilities=["completion"])))

        result = await checker.check("gemma:2b")

        assert result.reachable
        assert not result.has_tools
        assert result.capabilities == ["completion"]

    @pytest.mark.asyncio
    async def test_not_installed_is_reachable_and_cached(self, ollama_transport):
        calls = []
        checker = ModelCapabilityChecker(transport=ollama_transport(show=None, calls=calls))

        first = await checker.check("missing:7b")
        second = await checker.check("missing:7b")

        assert first.reachable
        assert not first.installed
        assert second is first
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unreachable_not_cached(self, unreachable_transport):
        checker = ModelCapabilityChecker(transport=unreachable_transport)

        result = await checker.check("qwen3:30b")

        assert not result.reachable
        assert "qwen3:30b" not in checker.cache

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(self, ollama_transport):
        calls = []
        checker = ModelCapabilityChecker(transport=ollama_transport(show=show_body(), calls=calls))

        await checker.check("qwen3:30b")
        calls_after_first = len(calls)
        await checker.check("qwen3:30b")

        assert len(calls) == calls_after_first

    @pytest.mark.asyncio
    async def test_update_available_when_digests_differ(self, ollama_transport):
        checker = ModelCapabilityChecker(
            transport=ollama_transport(show=show_body(), registry=manifest(REMOTE_DIGEST)),
        )
        result = await checker.check("qwen3:30b")
        assert result.update_available is True

    @pytest.mark.asyncio
    async def test_no_update_when_digests_match(self, ollama_transport):
        checker = ModelCapabilityChecker(
            transport=ollama_transport(show=show_body(), registry=manifest(LOCAL_DIGEST)),
        )
        result = await checker.check("qwen3:30b")
        assert result.update_available is False

    @pytest.mark.asyncio
    async def test_update_unknown_when_registry_fails(self, ollama_transport):
        checker = ModelCapabilityChecker(transport=ollama_transport(show=show_body(), registry=None))
        result = await checker.check("qwen3:30b")
        assert result.update_available is None

    @pytest.mark.asyncio
    async def test_registry_queried_by_name_and_tag(self, ollama_transport):
        calls = []
        checker = ModelCapabilityChecker(
            transport=ollama_transport(show=show_body(), registry=manifest(LOCAL_DIGEST), calls=calls),
        )

        await checker.check("qwen3:30b")

        paths = [r.url.path for r in calls]
        assert "/v2/library/qwen3/manifests/30b" in paths

    @pytest.mark.asyncio
    async def test_ensure_skips_cloud_models(self, unreachable_transport):
        checker = ModelCapabilityChecker(transport=unreachable_transport)
        assert await checker.ensure("anthropic/claude-sonnet-4") is None
        assert await checker.ensure("qwen3:30b") is None


class TestClassifyCheck:
    """Test advisory classification."""

    def test_unreachable(self):
        findings = classify_check("Scout", ModelCheckResult(model="qwen3:30b"))
        assert [f.level for f in findings] == [AdvisoryLevel.ADVISORY]
        assert "unreachable" in findings[0].message

    def test_not_installed(self):
        findings = classify_check("Scout", ModelCheckResult(model="qwen3:30b", reachable=True))
        assert [f.level for f in findings] == [AdvisoryLevel.ADVISORY]
        assert "ollama pull qwen3:30b" in findings[0].message

    def test_no_tools_blocks(self):
        result = ModelCheckResult(model="gemma:2b", reachable=True, capabilities=["completion"])
        findings = classify_check("Scout", result)
        assert [f.level for f in findings] == [AdvisoryLevel.BLOCK]

    def test_small_model_warns(self):
        result = ModelCheckResult(
            model="qwen3:8b", reachable=True, capabilities=["tools"], has_tools=True,
            parameter_size="8.2B", parameter_size_b=8.2,
        )
        assert [f.level for f in classify_check("Scout", result)] == [AdvisoryLevel.WARN]

    def test_large_tool_model_is_clean(self):
        result = ModelCheckResult(
            model="qwen3:30b", reachable=True, capabilities=["tools"], has_tools=True,
            parameter_size="30.5B", parameter_size_b=30.5, update_available=False,
        )
        assert classify_check("Scout", result) == []

    def test_update_is_reported_alongside(self):
        result = ModelCheckResult(
            model="qwen3:8b", reachable=True, capabilities=["tools"], has_tools=True,
            parameter_size_b=8.0, update_available=True,
        )
        levels = [f.level for f in classify_check("Scout", result)]
        assert levels == [AdvisoryLevel.WARN, AdvisoryLevel.UPDATE]


class TestAudit:
    """Test concurrent team audits."""

    @pytest.mark.asyncio
    async def test_single_aggregated_notification(self, ollama_transport):
        checker = ModelCapabilityChecker(transport=ollama_transport(show=show_body(capabilities=["completion"])))
        states = [
            state_for("scout", "ollama/gemma:2b"),
            state_for("builder", "ollama/phi3:mini"),
            state_for("planner", "anthropic/claude-sonnet-4"),
            state_for("reviewer"),
        ]
        notices = []

        findings = await checker.audit(states, notify=lambda message, level: notices.append((message, level)))

        assert len(findings) == 2
        assert {f.agent for f in findings} == {"Scout", "Builder"}
        assert len(notices) == 1
        message, level = notices[0]
        assert level == "warning"
        assert message.startswith("Model Audit: 2 finding(s)")

    @pytest.mark.asyncio
    async def test_no_local_models_no_notification(self, unreachable_transport):
        checker = ModelCapabilityChecker(transport=unreachable_transport)
        notices = []

        findings = await checker.audit(
            [state_for("scout", "openai/gpt-4o")],
            notify=lambda message, level: notices.append(message),
        )

        assert findings == []
        assert notices == []

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_raise(self, unreachable_transport):
        checker = ModelCapabilityChecker(transport=unreachable_transport)

        def broken(message, level):
            raise RuntimeError("sink down")

        findings = await checker.audit([state_for("scout", "ollama/qwen3:30b")], notify=broken)

        assert [f.level for f in findings] == [AdvisoryLevel.ADVISORY]
