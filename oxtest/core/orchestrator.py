from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import monotonic
from typing import Iterable, Mapping

from oxtest.core.commands import Command, CommandType
from oxtest.core.context import ExecutionContext, ExecutionContextManager
from oxtest.core.metadata import CommandResult
from oxtest.core.protocols import Executor
from oxtest.core.tasks import Subtask, Task, TaskStatus
from oxtest.graph.dag import DependencyGraph

log = logging.getLogger(__name__)

# Commands answered from the execution context; the browser is never involved.
CONTEXT_COMMANDS = frozenset({CommandType.SET_VARIABLE, CommandType.GET_VARIABLE})


@dataclass(slots=True)
class SubtaskExecutionResult:
    success: bool
    subtask_id: str
    commands_executed: int
    duration: float
    error: str | None = None
    failed_command_index: int | None = None


@dataclass(slots=True)
class TaskExecutionResult:
    success: bool
    task_id: str
    subtasks_executed: int
    duration: float
    error: str | None = None
    blocked: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _SequenceOutcome:
    success: bool
    executed: int
    error: str | None = None
    failed_index: int | None = None


class TestOrchestrator:
    """Drives subtasks and tasks through their lifecycle against an executor."""

    def __init__(self, executor: Executor, context_manager: ExecutionContextManager | None = None) -> None:
        self.executor = executor
        self.context_manager = context_manager or ExecutionContextManager()

    def get_context(self) -> ExecutionContext:
        return self.context_manager.get_context()

    async def execute_subtask(self, subtask: Subtask) -> SubtaskExecutionResult:
        if not subtask.is_pending():
            error = f"Subtask {subtask.id} is not pending (status: {subtask.status.value})"
            log.warning("%s", error)
            return SubtaskExecutionResult(
                success=False, subtask_id=subtask.id, commands_executed=0, duration=0.0, error=error
            )

        started = monotonic()
        subtask.mark_in_progress()
        log.info("Running subtask %s (%d commands)", subtask.id, len(subtask.commands))

        outcome = await self._run_commands(subtask.commands)
        duration = monotonic() - started
        metadata = {"commands_executed": outcome.executed, "subtask_id": subtask.id}

        if not outcome.success:
            failed = subtask.commands[outcome.failed_index]
            metadata["failed_command"] = failed.type.value
            metadata["failed_command_index"] = outcome.failed_index
            subtask.mark_failed(outcome.error or f"Command failed: {failed.type.value}", metadata)
            log.warning("Subtask %s failed at command %d: %s", subtask.id, outcome.failed_index, outcome.error)
            return SubtaskExecutionResult(
                success=False,
                subtask_id=subtask.id,
                commands_executed=outcome.executed,
                duration=duration,
                error=outcome.error,
                failed_command_index=outcome.failed_index,
            )

        subtask.mark_completed(metadata)
        return SubtaskExecutionResult(
            success=True,
            subtask_id=subtask.id,
            commands_executed=outcome.executed,
            duration=duration,
        )

    async def execute_task(self, task: Task, subtasks: Mapping[str, Subtask] | Iterable[Subtask]) -> TaskExecutionResult:
        """Runs setup, the task's subtasks in order, then teardown.

        Teardown runs exactly once whatever happened before it. Subtasks that
        never got to run because of an earlier failure end up Blocked.
        """

        started = monotonic()
        lookup = _index_subtasks(subtasks)
        executed = 0
        error: str | None = None
        blocked: list[str] = []

        if task.has_setup:
            setup = await self._run_commands(task.setup)
            if not setup.success:
                error = f"Setup failed: {setup.error}"
                blocked = self._block_pending(task.subtask_ids, lookup, "Setup failed")

        if error is None:
            for position, subtask_id in enumerate(task.subtask_ids):
                subtask = lookup.get(subtask_id)
                if subtask is None:
                    error = f"Subtask not found: {subtask_id}"
                else:
                    result = await self.execute_subtask(subtask)
                    executed += 1
                    if not result.success:
                        error = result.error or "Subtask execution failed"
                if error is not None:
                    blocked = self._block_pending(
                        task.subtask_ids[position + 1 :],
                        lookup,
                        f"Previous subtask failed: {subtask_id}",
                    )
                    break

        if task.has_teardown:
            teardown = await self._run_commands(task.teardown)
            if not teardown.success and error is None:
                error = f"Teardown failed: {teardown.error}"
            elif not teardown.success:
                log.warning("Teardown of task %s failed after earlier error: %s", task.id, teardown.error)

        duration = monotonic() - started
        if error is not None:
            log.warning("Task %s failed: %s", task.id, error)
        else:
            log.info("Task %s completed in %.2fs", task.id, duration)
        return TaskExecutionResult(
            success=error is None,
            task_id=task.id,
            subtasks_executed=executed,
            duration=duration,
            error=error,
            blocked=blocked,
        )

    async def execute_graph(self, graph: DependencyGraph[Subtask]) -> list[SubtaskExecutionResult]:
        """Runs every reachable subtask, one at a time, as dependencies allow."""

        results: list[SubtaskExecutionResult] = []
        while True:
            ready = graph.get_executable_nodes()
            if not ready:
                break
            for node_id in ready:
                if graph.status(node_id) is not TaskStatus.PENDING:
                    continue
                subtask = graph.payload(node_id)
                if not subtask.is_pending():
                    # Already ran elsewhere; this run never attempts it.
                    results.append(await self.execute_subtask(subtask))
                    newly_blocked = graph.update_node(node_id, TaskStatus.BLOCKED)
                else:
                    graph.update_node(node_id, TaskStatus.IN_PROGRESS)
                    result = await self.execute_subtask(subtask)
                    results.append(result)
                    newly_blocked = graph.update_node(
                        node_id, TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
                    )
                for blocked_id in newly_blocked:
                    dependent = graph.payload(blocked_id)
                    if dependent.is_pending():
                        dependent.mark_blocked(f"Dependency failed: {node_id}")
        return results

    async def _run_commands(self, commands: Iterable[Command]) -> _SequenceOutcome:
        executed = 0
        for index, command in enumerate(commands):
            result = await self._run_command(command)
            executed += 1
            if not result.success:
                return _SequenceOutcome(
                    success=False,
                    executed=executed,
                    error=result.error or f"Command failed: {command.type.value}",
                    failed_index=index,
                )
            self._update_context(command, result)
        return _SequenceOutcome(success=True, executed=executed)

    async def _run_command(self, command: Command) -> CommandResult:
        if command.type in CONTEXT_COMMANDS:
            return self._run_context_command(command)
        started = monotonic()
        try:
            return await self.executor.execute(command)
        except Exception as exc:  # noqa: BLE001 - executor errors become a failed command result.
            log.debug("Executor raised for %s", command.to_line(), exc_info=True)
            return CommandResult(success=False, error=str(exc) or type(exc).__name__, duration=monotonic() - started)

    def _run_context_command(self, command: Command) -> CommandResult:
        name = command.params["name"]
        if command.type is CommandType.SET_VARIABLE:
            return CommandResult(success=True, output=command.params["value"])
        current = self.context_manager.get_variable(name)
        if current is None:
            return CommandResult(success=False, error=f"Variable not set: {name}")
        expected = command.param("expected")
        if expected is not None and current != expected:
            return CommandResult(
                success=False,
                error=f'Expected variable {name} to be "{expected}", got "{current}"',
            )
        return CommandResult(success=True, output=current)

    def _update_context(self, command: Command, result: CommandResult) -> None:
        manager = self.context_manager
        if command.type is CommandType.NAVIGATE:
            url = command.params["url"]
            manager.set_current_url(url)
            manager.set_variable("lastUrl", url)
        elif command.type in (CommandType.TYPE, CommandType.FILL):
            key = command.selector.value if command.selector else "unknown"
            manager.set_variable(f"lastTyped_{key}", command.params["value"])
        elif command.type is CommandType.SET_VARIABLE:
            manager.set_variable(command.params["name"], command.params["value"])
        elif command.type in (CommandType.GET_TEXT, CommandType.GET_ATTRIBUTE):
            target = command.param("as", "variable")
            if target is None and command.type is CommandType.GET_TEXT:
                target = command.param("name")
            if target and result.output is not None:
                manager.set_variable(target, result.output)
        elif command.type is CommandType.SCREENSHOT and result.output:
            screenshots = list(manager.get_context().metadata.get("screenshots", []))
            screenshots.append(result.output)
            manager.set_metadata("screenshots", screenshots)

    @staticmethod
    def _block_pending(subtask_ids: Iterable[str], lookup: Mapping[str, Subtask], reason: str) -> list[str]:
        blocked = []
        for subtask_id in subtask_ids:
            subtask = lookup.get(subtask_id)
            if subtask is not None and subtask.is_pending():
                subtask.mark_blocked(reason)
                blocked.append(subtask_id)
        return blocked


def _index_subtasks(subtasks: Mapping[str, Subtask] | Iterable[Subtask]) -> dict[str, Subtask]:
    if isinstance(subtasks, Mapping):
        return dict(subtasks)
    return {subtask.id: subtask for subtask in subtasks}
