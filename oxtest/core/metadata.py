from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class CommandResult:
    success: bool
    error: str | None = None
    output: str | None = None
    duration: float = 0.0


@dataclass(slots=True)
class PageSnapshot:
    available_selectors: list[str] = field(default_factory=list)
    html: str | None = None
    screenshot: bytes | None = None
    url: str | None = None


@dataclass(slots=True)
class HealAttempt:
    test_name: str
    attempt: int
    category: str
    error: str
    failed_command: str | None
    candidate_content: str
    success: bool
    artifact_paths: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "test_name": self.test_name,
            "attempt": self.attempt,
            "category": self.category,
            "error": self.error,
            "failed_command": self.failed_command,
            "candidate_content": self.candidate_content,
            "success": self.success,
            "artifact_paths": self.artifact_paths,
        }
