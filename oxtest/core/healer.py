from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, Awaitable, Callable

from oxtest.config.schema import HealingConfig
from oxtest.core.analyzer import FailureAnalyzer, FailureCategory, FailureContext
from oxtest.core.exceptions import ParseError, RefinementError
from oxtest.core.metadata import HealAttempt
from oxtest.core.protocols import PageSnapshotProvider
from oxtest.core.refinement import RefinementEngine
from oxtest.core.tasks import Subtask
from oxtest.language.parser import ContentParser
from oxtest.logging.artifacts import ArtifactManager
from oxtest.logging.audit import HealingAuditLogger

log = logging.getLogger(__name__)

# Receives the attempt's subtask and returns an object with ``success``,
# ``error`` and ``failed_command_index`` (``SubtaskExecutionResult`` fits).
ExecuteFn = Callable[[Subtask], Awaitable[Any]]


@dataclass(slots=True)
class SelfHealingOptions:
    max_attempts: int = 3
    capture_html: bool = True
    capture_screenshot: bool = False
    snapshot_provider: PageSnapshotProvider | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_config(
        cls, config: HealingConfig, snapshot_provider: PageSnapshotProvider | None = None
    ) -> SelfHealingOptions:
        return cls(
            max_attempts=config.max_attempts,
            capture_html=config.capture_html,
            capture_screenshot=config.capture_screenshot,
            snapshot_provider=snapshot_provider,
        )


@dataclass(slots=True)
class SelfHealingResult:
    success: bool
    attempts: int
    final_content: str
    total_duration: float
    failure_history: list[FailureContext] = field(default_factory=list)
    error: str | None = None


class SelfHealingOrchestrator:
    """Runs the execute, analyze, refine, retry loop for one test."""

    def __init__(
        self,
        analyzer: FailureAnalyzer,
        refinement_engine: RefinementEngine,
        parser: ContentParser | None = None,
        audit_logger: HealingAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.refinement_engine = refinement_engine
        self.parser = parser or ContentParser()
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager

    async def refine_test(
        self,
        content: str,
        test_name: str,
        execute_fn: ExecuteFn,
        options: SelfHealingOptions | None = None,
    ) -> SelfHealingResult:
        options = options or SelfHealingOptions()
        started = monotonic()
        history: list[FailureContext] = []
        current = content
        last_error: str | None = None

        # The caller's own content has to parse; only repaired candidates may fail to.
        self.parser.parse_content(content)

        for attempt in range(1, options.max_attempts + 1):
            try:
                commands = self.parser.parse_content(current)
            except ParseError as exc:
                command, command_index, error = None, 0, f"Candidate did not parse: {exc}"
            else:
                subtask = Subtask(f"{test_name}-attempt-{attempt}", test_name, commands)
                result = await execute_fn(subtask)
                if result.success:
                    log.info("%s passed on attempt %d", test_name, attempt)
                    self._audit(test_name, attempt, None, current, success=True)
                    return SelfHealingResult(True, attempt, current, monotonic() - started, history)
                command_index = result.failed_command_index or 0
                command = commands[command_index] if command_index < len(commands) else None
                error = result.error or "Unknown error"

            last_error = error
            provider = options.snapshot_provider
            if provider is None:
                log.warning("%s failed on attempt %d and no page snapshot is available", test_name, attempt)
                self._audit(test_name, attempt, None, current, success=False, error=error, command=command)
                return SelfHealingResult(
                    False, options.max_attempts, current, monotonic() - started, history, error
                )

            failure = self.analyzer.analyze(
                command,
                error,
                provider,
                attempt_index=attempt,
                command_index=command_index,
                capture_html=options.capture_html,
                capture_screenshot=options.capture_screenshot,
            )
            if command is None:
                failure.category = FailureCategory.OTHER
            history.append(failure)
            self._audit(test_name, attempt, failure, current, success=False)

            if attempt < options.max_attempts:
                try:
                    current = await self.refinement_engine.refine(test_name, current, failure, history[:-1])
                except RefinementError as exc:
                    log.warning("Stopping healing of %s: %s", test_name, exc)
                    return SelfHealingResult(False, attempt, current, monotonic() - started, history, str(exc))

        return SelfHealingResult(
            False, options.max_attempts, current, monotonic() - started, history, last_error
        )

    def _audit(
        self,
        test_name: str,
        attempt: int,
        failure: FailureContext | None,
        content: str,
        success: bool,
        error: str | None = None,
        command=None,
    ) -> None:
        artifact_paths: dict[str, str] = {}
        if failure is not None and self.artifact_manager is not None:
            stamp = self.artifact_manager.timestamp()
            name = f"{test_name}_attempt{attempt}"
            if failure.page_html:
                artifact_paths["html"] = str(self.artifact_manager.write_html_snapshot(name, failure.page_html, stamp))
            if failure.screenshot:
                artifact_paths["screenshot"] = str(self.artifact_manager.write_screenshot(name, failure.screenshot, stamp))
        if self.audit_logger is None:
            return
        if failure is not None:
            category, error, command = failure.category.value, failure.error_message, failure.failed_command
        else:
            category = "" if success else FailureCategory.OTHER.value
        self.audit_logger.write(
            HealAttempt(
                test_name=test_name,
                attempt=attempt,
                category=category,
                error=error or "",
                failed_command=command.to_line() if command is not None else None,
                candidate_content=content,
                success=success,
                artifact_paths=artifact_paths,
            )
        )
