from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Sequence
from urllib import error, request

from oxtest.config.schema import LLMConfig
from oxtest.core.exceptions import GenerationServiceError
from oxtest.llm.cache import CachingRepairClient, PromptCache
from oxtest.llm.costs import CostTracker
from oxtest.llm.parser import parse_repair_response
from oxtest.llm.prompts import SYSTEM_PROMPT, build_user_prompt

log = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 2048


class CommandRepairClient(ABC):
    """Provider-neutral interface for command sequence repair."""

    provider_name = "unknown"
    model = "unknown"

    def __init__(self, cost_tracker: CostTracker | None = None) -> None:
        self.cost_tracker = cost_tracker

    async def repair(self, payload: dict[str, Any]) -> str:
        try:
            content = await asyncio.to_thread(self.repair_sync, payload)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise GenerationServiceError(
                f"{self.provider_name} returned an unexpected response shape: {exc!r}"
            ) from exc
        return parse_repair_response(content)

    @abstractmethod
    def repair_sync(self, payload: dict[str, Any]) -> str:
        raise NotImplementedError

    def _record_usage(self, input_tokens: int | None, output_tokens: int | None) -> None:
        if self.cost_tracker is not None:
            self.cost_tracker.record(self.provider_name, self.model, input_tokens or 0, output_tokens or 0)


class OpenAICommandRepairClient(CommandRepairClient):
    provider_name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = 0.0,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        super().__init__(cost_tracker)
        self.api_key = api_key
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.temperature = temperature

    def repair_sync(self, payload: dict[str, Any]) -> str:
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(payload)},
            ],
        }
        response = _post_json(
            self.endpoint,
            body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        usage = response.get("usage", {})
        self._record_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))
        return response["choices"][0]["message"]["content"]


class AnthropicCommandRepairClient(CommandRepairClient):
    provider_name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = 0.0,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        super().__init__(cost_tracker)
        self.api_key = api_key
        self.model = model or os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")
        self.temperature = temperature

    def repair_sync(self, payload: dict[str, Any]) -> str:
        body = {
            "model": self.model,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "temperature": self.temperature,
            "system": SYSTEM_PROMPT,
            "messages": [
                {"role": "user", "content": build_user_prompt(payload)},
            ],
        }
        response = _post_json(
            self.endpoint,
            body,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
        )
        usage = response.get("usage", {})
        self._record_usage(usage.get("input_tokens"), usage.get("output_tokens"))
        parts = [part.get("text", "") for part in response.get("content", []) if part.get("type") == "text"]
        return "".join(parts)


class GeminiCommandRepairClient(CommandRepairClient):
    provider_name = "gemini"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = 0.0,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        super().__init__(cost_tracker)
        self.api_key = api_key
        self.model = model or os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.temperature = temperature

    def repair_sync(self, payload: dict[str, Any]) -> str:
        body = {
            "system_instruction": {
                "parts": [
                    {"text": SYSTEM_PROMPT},
                ]
            },
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_user_prompt(payload)},
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self.temperature,
            },
        }
        response = _post_json(
            self.endpoint_template.format(model=self.model),
            body,
            headers={
                "x-goog-api-key": self.api_key,
                "x-goog-api-client": "oxtest/0.1.0",
                "Content-Type": "application/json",
            },
        )
        usage = response.get("usageMetadata", {})
        self._record_usage(usage.get("promptTokenCount"), usage.get("candidatesTokenCount"))
        candidates = response.get("candidates", [])
        if not candidates:
            raise GenerationServiceError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        text_parts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        content = "".join(text_parts).strip()
        if not content:
            raise GenerationServiceError("Gemini returned an empty response")
        return content


class FallbackRepairClient:
    """Tries each client in order and returns the first repair that succeeds."""

    def __init__(self, clients: Sequence[CommandRepairClient]) -> None:
        if not clients:
            raise ValueError("FallbackRepairClient needs at least one client")
        self.clients = list(clients)
        self.provider_name = "+".join(client.provider_name for client in self.clients)

    async def repair(self, payload: dict[str, Any]) -> str:
        failures = []
        for client in self.clients:
            try:
                return await client.repair(payload)
            except GenerationServiceError as exc:
                log.warning("Provider %s failed, trying next: %s", client.provider_name, exc)
                failures.append(f"{client.provider_name}: {exc}")
        raise GenerationServiceError("All providers failed: " + "; ".join(failures))


PROVIDERS: dict[str, type[CommandRepairClient]] = {
    "openai": OpenAICommandRepairClient,
    "anthropic": AnthropicCommandRepairClient,
    "gemini": GeminiCommandRepairClient,
}


def create_provider_client(
    provider: str,
    model: str | None = None,
    temperature: float = 0.0,
    cost_tracker: CostTracker | None = None,
) -> CommandRepairClient:
    normalized = provider.lower()
    client_class = PROVIDERS.get(normalized)
    if client_class is None:
        raise GenerationServiceError(f"Unsupported LLM provider: {provider}")
    env_name = f"{normalized.upper()}_API_KEY"
    api_key = os.getenv(env_name)
    if not api_key:
        raise GenerationServiceError(f"{env_name} is required when LLM_PROVIDER={normalized}")
    return client_class(api_key, model=model, temperature=temperature, cost_tracker=cost_tracker)


def create_repair_client(config: LLMConfig | None = None, cost_tracker: CostTracker | None = None):
    """Builds the repair client for one run.

    Without a config the provider comes from ``LLM_PROVIDER``. Fallback
    providers wrap the primary in a :class:`FallbackRepairClient` and caching
    wraps the result in a :class:`CachingRepairClient` with its own cache.
    """

    if config is None:
        config = LLMConfig(provider=os.getenv("LLM_PROVIDER", "openai"))
    if cost_tracker is None and config.budget_usd is not None:
        cost_tracker = CostTracker(budget_usd=config.budget_usd)

    client = create_provider_client(config.provider, config.model, config.temperature, cost_tracker)
    if config.fallback_providers:
        clients = [client]
        clients.extend(
            create_provider_client(provider, temperature=config.temperature, cost_tracker=cost_tracker)
            for provider in config.fallback_providers
            if provider != config.provider
        )
        client = FallbackRepairClient(clients)
    if config.cache_enabled:
        cache = PromptCache(max_entries=config.cache_max_entries, ttl_seconds=config.cache_ttl_seconds)
        return CachingRepairClient(client, cache)
    return client


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=60) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise GenerationServiceError(f"LLM request failed with status {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise GenerationServiceError(f"LLM request could not be completed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise GenerationServiceError("LLM request timed out") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GenerationServiceError(f"LLM response is not valid JSON: {exc.msg}") from exc
