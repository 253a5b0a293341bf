from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from oxtest.core.validation import ValidationPredicate


class BrowserConfig(BaseModel):
    name: str = "chrome"
    headless: bool = True
    window_size: str = "1440,1200"
    page_load_timeout_seconds: int = 30

    @field_validator("name")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized

    @field_validator("window_size")
    @classmethod
    def validate_window_size(cls, value: str) -> str:
        width, _, height = value.partition(",")
        if not (width.strip().isdigit() and height.strip().isdigit()):
            raise ValueError("window_size must look like '<width>,<height>'")
        return f"{width.strip()},{height.strip()}"


class ResolverConfig(BaseModel):
    timeout_seconds: float = Field(default=2.0, gt=0)
    poll_interval_seconds: float = Field(default=0.2, gt=0)


class HealingConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    capture_html: bool = True
    capture_screenshot: bool = False
    max_selectors: int = Field(default=50, ge=1)


class LLMConfig(BaseModel):
    provider: Literal["openai", "anthropic", "gemini"] = "openai"
    model: str | None = None
    temperature: float = 0.0
    cache_enabled: bool = True
    cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=256, ge=1)
    budget_usd: float | None = Field(default=None, ge=0)
    fallback_providers: list[Literal["openai", "anthropic", "gemini"]] = Field(default_factory=list)

    @field_validator("provider", "fallback_providers", mode="before")
    @classmethod
    def normalize_provider(cls, value):
        if isinstance(value, str):
            return value.lower()
        if isinstance(value, list):
            return [item.lower() if isinstance(item, str) else item for item in value]
        return value


class EngineConfig(BaseModel):
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    healing: HealingConfig = Field(default_factory=HealingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    artifacts_root: str = "artifacts"


class SubtaskDefinition(BaseModel):
    id: str
    description: str = ""
    content: str

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Subtask id cannot be empty")
        return value


class TaskDefinition(BaseModel):
    id: str
    description: str = ""
    subtasks: list[str] = Field(default_factory=list)
    setup: str | None = None
    teardown: str | None = None
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("subtasks")
    @classmethod
    def validate_unique_subtasks(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        duplicates = [item for item in value if item in seen or seen.add(item)]
        if duplicates:
            raise ValueError(f"Duplicate subtask ids: {', '.join(duplicates)}")
        return value


class SuiteConfig(BaseModel):
    engine: EngineConfig = Field(default_factory=EngineConfig)
    subtasks: list[SubtaskDefinition] = Field(default_factory=list)
    tasks: list[TaskDefinition] = Field(default_factory=list)
    expectations: list[ValidationPredicate] = Field(default_factory=list)

    def get_subtask(self, subtask_id: str) -> SubtaskDefinition:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        raise KeyError(f"Unknown subtask id: {subtask_id}")

    def get_task(self, task_id: str) -> TaskDefinition:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(f"Unknown task id: {task_id}")
