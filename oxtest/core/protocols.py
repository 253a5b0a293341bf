from __future__ import annotations

from typing import Any, Protocol

from oxtest.core.commands import Command
from oxtest.core.metadata import CommandResult, PageSnapshot


class Executor(Protocol):
    """Runs one command against a live browser session."""

    async def execute(self, command: Command) -> CommandResult: ...


class PageSnapshotProvider(Protocol):
    def capture(self, html: bool = True, screenshot: bool = False) -> PageSnapshot: ...


class GenerationService(Protocol):
    """Returns a candidate replacement command sequence for a repair request."""

    async def repair(self, payload: dict[str, Any]) -> str: ...
