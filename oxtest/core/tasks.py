from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from time import monotonic
from typing import Any, Iterable

from oxtest.core.commands import Command
from oxtest.core.exceptions import InvalidTransitionError

log = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    # Never ran because something it depends on did not succeed.
    BLOCKED = "blocked"


VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.BLOCKED: frozenset(),
}


def is_valid_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def is_terminal(status: TaskStatus) -> bool:
    return not VALID_TRANSITIONS[status]


def is_terminal_success(status: TaskStatus) -> bool:
    return status is TaskStatus.COMPLETED


def ensure_transition(subject: str, current: TaskStatus, target: TaskStatus) -> None:
    if not is_valid_transition(current, target):
        allowed = ", ".join(sorted(item.value for item in VALID_TRANSITIONS[current])) or "none"
        raise InvalidTransitionError(
            f"Invalid state transition for {subject}: {current.value} -> {target.value} "
            f"(allowed: {allowed})"
        )


@dataclass(slots=True)
class ExecutionRecord:
    success: bool
    timestamp: datetime
    error: str | None = None
    duration: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Subtask:
    """An ordered command sequence with its own lifecycle."""

    def __init__(self, subtask_id: str, description: str, commands: Iterable[Command]) -> None:
        if not subtask_id or not subtask_id.strip():
            raise ValueError("Subtask id cannot be empty")
        self.id = subtask_id
        self.description = description
        self.commands: tuple[Command, ...] = tuple(commands)
        self.status = TaskStatus.PENDING
        self.result: ExecutionRecord | None = None
        self._started_at: float | None = None

    def mark_in_progress(self) -> None:
        self._transition(TaskStatus.IN_PROGRESS)
        self._started_at = monotonic()

    def mark_completed(self, metadata: dict[str, Any] | None = None) -> None:
        self._transition(TaskStatus.COMPLETED)
        self.result = ExecutionRecord(
            success=True,
            timestamp=datetime.now(UTC),
            duration=self._elapsed(),
            metadata=dict(metadata or {}),
        )

    def mark_failed(self, error: str, metadata: dict[str, Any] | None = None) -> None:
        self._transition(TaskStatus.FAILED)
        self.result = ExecutionRecord(
            success=False,
            timestamp=datetime.now(UTC),
            error=error,
            duration=self._elapsed(),
            metadata=dict(metadata or {}),
        )

    def mark_blocked(self, reason: str) -> None:
        self._transition(TaskStatus.BLOCKED)
        self.result = ExecutionRecord(
            success=False,
            timestamp=datetime.now(UTC),
            error=f"Blocked: {reason}",
        )

    def is_pending(self) -> bool:
        return self.status is TaskStatus.PENDING

    def is_in_progress(self) -> bool:
        return self.status is TaskStatus.IN_PROGRESS

    def is_completed(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status is TaskStatus.FAILED

    def is_blocked(self) -> bool:
        return self.status is TaskStatus.BLOCKED

    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def _transition(self, target: TaskStatus) -> None:
        ensure_transition(f"subtask {self.id}", self.status, target)
        log.debug("Subtask %s: %s -> %s", self.id, self.status.value, target.value)
        self.status = target

    def _elapsed(self) -> float | None:
        if self._started_at is None:
            return None
        return monotonic() - self._started_at

    def __repr__(self) -> str:
        return f"Subtask({self.id!r}, status={self.status.value}, commands={len(self.commands)})"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    description: str
    subtask_ids: tuple[str, ...] = ()
    setup: tuple[Command, ...] = ()
    teardown: tuple[Command, ...] = ()

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Task id cannot be empty")
        subtask_ids = tuple(self.subtask_ids)
        if len(set(subtask_ids)) != len(subtask_ids):
            raise ValueError(f"Duplicate subtask ids in task {self.id}")
        object.__setattr__(self, "subtask_ids", subtask_ids)
        object.__setattr__(self, "setup", tuple(self.setup))
        object.__setattr__(self, "teardown", tuple(self.teardown))

    @property
    def has_setup(self) -> bool:
        return bool(self.setup)

    @property
    def has_teardown(self) -> bool:
        return bool(self.teardown)
