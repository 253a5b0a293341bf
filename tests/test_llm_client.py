from __future__ import annotations

import asyncio

import pytest

from oxtest.config.schema import LLMConfig
from oxtest.core.exceptions import GenerationServiceError
from oxtest.llm import client as client_module
from oxtest.llm.cache import CachingRepairClient, PromptCache
from oxtest.llm.client import (
    AnthropicCommandRepairClient,
    FallbackRepairClient,
    GeminiCommandRepairClient,
    OpenAICommandRepairClient,
    create_repair_client,
)
from oxtest.llm.costs import BudgetExceededError, CostTracker, calculate_cost
from tests.helpers import ScriptedGenerationService


def test_repair_client_factory_supports_gemini(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    client = create_repair_client(LLMConfig(provider="gemini", cache_enabled=False))
    assert isinstance(client, GeminiCommandRepairClient)
    assert client.provider_name == "gemini"


def test_repair_client_factory_reads_environment_without_config(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    client = create_repair_client()
    assert isinstance(client, CachingRepairClient)
    assert isinstance(client.inner, AnthropicCommandRepairClient)


def test_repair_client_factory_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(GenerationServiceError, match="OPENAI_API_KEY"):
        create_repair_client(LLMConfig(provider="openai"))


def test_factory_wraps_fallback_providers(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "a")
    monkeypatch.setenv("GEMINI_API_KEY", "b")
    client = create_repair_client(
        LLMConfig(provider="openai", fallback_providers=["gemini"], cache_enabled=False, budget_usd=2)
    )
    assert isinstance(client, FallbackRepairClient)
    assert client.provider_name == "openai+gemini"
    assert client.clients[0].cost_tracker is client.clients[1].cost_tracker


def test_openai_client_parses_response_and_records_usage(monkeypatch):
    sent = {}

    def fake_post(url, payload, headers):
        sent.update(url=url, payload=payload, headers=headers)
        return {
            "choices": [{"message": {"content": "```\nclick css=.ok\n```"}}],
            "usage": {"prompt_tokens": 1000, "completion_tokens": 100},
        }

    monkeypatch.setattr(client_module, "_post_json", fake_post)
    tracker = CostTracker()
    client = OpenAICommandRepairClient("key", model="gpt-4o-mini", cost_tracker=tracker)

    assert asyncio.run(client.repair({"error": "boom"})) == "click css=.ok"
    assert sent["headers"]["Authorization"] == "Bearer key"
    assert '"error": "boom"' in sent["payload"]["messages"][1]["content"]
    assert tracker.records[0].input_tokens == 1000
    assert tracker.total_cost == pytest.approx(calculate_cost("gpt-4o-mini", 1000, 100))


def test_empty_response_is_a_generation_error(monkeypatch):
    monkeypatch.setattr(
        client_module,
        "_post_json",
        lambda url, payload, headers: {"content": [{"type": "text", "text": "   "}]},
    )
    with pytest.raises(GenerationServiceError):
        asyncio.run(AnthropicCommandRepairClient("key").repair({}))


def test_fallback_client_moves_to_next_provider():
    class Failing:
        provider_name = "down"

        async def repair(self, payload):
            raise GenerationServiceError("503")

    backup = ScriptedGenerationService(["reload"])
    backup.provider_name = "backup"
    assert asyncio.run(FallbackRepairClient([Failing(), backup]).repair({})) == "reload"

    with pytest.raises(GenerationServiceError, match="All providers failed"):
        asyncio.run(FallbackRepairClient([Failing()]).repair({}))


def test_prompt_cache_expires_and_evicts():
    now = [0.0]
    cache = PromptCache(max_entries=2, ttl_seconds=10, clock=lambda: now[0])
    cache.set("a", "1")
    cache.set("b", "2")
    assert cache.get("a") == "1"
    cache.set("c", "3")
    assert cache.get("b") is None
    assert cache.get("a") == "1"
    now[0] = 11.0
    assert cache.get("c") is None
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.evictions) == (2, 2, 1)
    assert PromptCache.make_key({"a": 1, "b": 2}) == PromptCache.make_key({"b": 2, "a": 1})


def test_caching_client_calls_inner_once_per_payload():
    inner = ScriptedGenerationService(["reload"])
    client = CachingRepairClient(inner, PromptCache())
    assert asyncio.run(client.repair({"error": "x"})) == "reload"
    assert asyncio.run(client.repair({"error": "x"})) == "reload"
    assert len(inner.payloads) == 1


def test_cost_tracker_enforces_budget():
    tracker = CostTracker(budget_usd=0.01)
    tracker.record("openai", "gpt-4o-mini", 1000, 1000)
    with pytest.raises(BudgetExceededError):
        tracker.record("anthropic", "unknown-model", 10_000, 10_000)
    summary = tracker.summary()
    assert summary["total_requests"] == 2
    assert set(summary["by_provider"]) == {"openai", "anthropic"}
    assert tracker.remaining_budget == 0.0


def test_fallback_moves_on_when_provider_body_is_malformed(monkeypatch):
    def fake_post(url, payload, headers):
        if "openai" in url:
            return {}
        return {"candidates": [{"content": {"parts": [{"text": "click testid=login"}]}}]}

    monkeypatch.setattr(client_module, "_post_json", fake_post)
    client = FallbackRepairClient([OpenAICommandRepairClient("a"), GeminiCommandRepairClient("b")])

    assert asyncio.run(client.repair({"error": "boom"})) == "click testid=login"
    with pytest.raises(GenerationServiceError, match="unexpected response shape"):
        asyncio.run(OpenAICommandRepairClient("a").repair({}))


class _Response:
    def __init__(self, body: bytes = b"", error: Exception | None = None) -> None:
        self.body = body
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def read(self) -> bytes:
        if self.error is not None:
            raise self.error
        return self.body


def test_post_json_reports_undecodable_and_slow_responses(monkeypatch):
    monkeypatch.setattr(client_module.request, "urlopen", lambda req, timeout: _Response(b"<html>busy</html>"))
    with pytest.raises(GenerationServiceError, match="not valid JSON"):
        client_module._post_json("https://llm.test", {}, {})

    monkeypatch.setattr(
        client_module.request, "urlopen", lambda req, timeout: _Response(error=TimeoutError("read timed out"))
    )
    with pytest.raises(GenerationServiceError, match="timed out"):
        client_module._post_json("https://llm.test", {}, {})
