from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Mapping

from oxtest.config.schema import SuiteConfig
from oxtest.core.tasks import Subtask, Task
from oxtest.graph.dag import DependencyGraph, build_graph
from oxtest.language.parser import ContentParser
from oxtest.logging.artifacts import ArtifactManager

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ConfigLoader:
    """Loads and validates the JSON suite configuration."""

    @staticmethod
    def load(path: str | Path, environ: Mapping[str, str] | None = None) -> SuiteConfig:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return SuiteConfig.model_validate(resolve_placeholders(payload, environ))


def resolve_placeholders(value: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Substitutes ``${VAR}`` and ``${VAR:-default}`` in every string value."""

    env = os.environ if environ is None else environ
    if isinstance(value, str):
        return PLACEHOLDER_PATTERN.sub(lambda match: _lookup(match, env), value)
    if isinstance(value, list):
        return [resolve_placeholders(item, env) for item in value]
    if isinstance(value, dict):
        return {key: resolve_placeholders(item, env) for key, item in value.items()}
    return value


def _lookup(match: re.Match[str], env: Mapping[str, str]) -> str:
    name, default = match.group(1), match.group(2)
    if name in env:
        return env[name]
    if default is not None:
        return default
    raise ValueError(f"Environment variable {name} is not set and has no default")


def build_subtasks(config: SuiteConfig, parser: ContentParser | None = None) -> dict[str, Subtask]:
    parser = parser or ContentParser()
    return {
        definition.id: Subtask(definition.id, definition.description, parser.parse_content(definition.content))
        for definition in config.subtasks
    }


def build_tasks(config: SuiteConfig, parser: ContentParser | None = None) -> dict[str, Task]:
    parser = parser or ContentParser()
    tasks = {}
    for definition in config.tasks:
        tasks[definition.id] = Task(
            id=definition.id,
            description=definition.description,
            subtask_ids=tuple(definition.subtasks),
            setup=parser.parse_content(definition.setup or ""),
            teardown=parser.parse_content(definition.teardown or ""),
        )
    return tasks


def build_task_graph(config: SuiteConfig, parser: ContentParser | None = None) -> DependencyGraph[Task]:
    """Orders the suite's tasks by their ``depends_on`` lists.

    Unknown dependency ids raise ``UnknownNodeError`` and cyclic ones ``CycleError``.
    """

    tasks = build_tasks(config, parser)
    return build_graph(tasks.values(), {definition.id: definition.depends_on for definition in config.tasks})


def build_artifact_manager(config: SuiteConfig) -> ArtifactManager:
    return ArtifactManager(config.engine.artifacts_root)
