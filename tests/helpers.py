from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

import pytest
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from oxtest.core.commands import Command, CommandType
from oxtest.core.metadata import CommandResult, PageSnapshot


@dataclass
class FakeElement:
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    displayed: bool = True
    enabled: bool = True
    selected: bool = False
    clicks: int = 0
    typed: list[str] = field(default_factory=list)

    def click(self) -> None:
        self.clicks += 1
        if self.attributes.get("type") == "checkbox":
            self.selected = not self.selected

    def clear(self) -> None:
        self.attributes["value"] = ""

    def send_keys(self, value: str) -> None:
        self.typed.append(value)
        self.attributes["value"] = self.attributes.get("value", "") + value

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def is_displayed(self) -> bool:
        return self.displayed

    def is_enabled(self) -> bool:
        return self.enabled

    def is_selected(self) -> bool:
        return self.selected


class FakeDriver:
    """Answers ``find_elements`` from a (by, query) -> elements table."""

    def __init__(
        self,
        elements: dict[tuple[str, str], list[FakeElement]] | None = None,
        current_url: str = "https://app.test/",
        title: str = "App",
    ) -> None:
        self.elements = elements or {}
        self.current_url = current_url
        self.title = title
        self.page_source = "<html><body></body></html>"
        self.queries: list[tuple[str, str]] = []
        self.scripts: list[str] = []
        self.script_result: Any = None
        self.visited: list[str] = []

    def find_elements(self, by: str, query: str) -> list[FakeElement]:
        self.queries.append((by, query))
        return list(self.elements.get((by, query), []))

    def get(self, url: str) -> None:
        self.visited.append(url)
        self.current_url = url

    def execute_script(self, script: str, *args):
        self.scripts.append(script)
        return self.script_result

    def get_screenshot_as_png(self) -> bytes:
        return b"\x89PNG-fake"

    def save_screenshot(self, path: str) -> bool:
        with open(path, "wb") as handle:
            handle.write(self.get_screenshot_as_png())
        return True

    def set_window_size(self, width: int, height: int) -> None:
        self.window_size = (width, height)


class BrokenDriver(FakeDriver):
    def execute_script(self, script: str, *args):
        raise WebDriverException("no such window")


def css(query: str) -> tuple[str, str]:
    return (By.CSS_SELECTOR, query)


class ScriptedExecutor:
    """Executor double; ``fail_on`` maps a predicate over commands to an error message."""

    def __init__(self, failures: Iterable[tuple[Callable[[Command], bool], str]] = (), outputs=None) -> None:
        self.failures = list(failures)
        self.outputs = outputs or {}
        self.executed: list[Command] = []

    async def execute(self, command: Command) -> CommandResult:
        self.executed.append(command)
        for predicate, message in self.failures:
            if predicate(command):
                return CommandResult(success=False, error=message)
        return CommandResult(success=True, output=self.outputs.get(command.type))

    def executed_types(self) -> list[CommandType]:
        return [command.type for command in self.executed]


class RaisingExecutor:
    async def execute(self, command: Command) -> CommandResult:
        raise RuntimeError("browser crashed")


class StaticSnapshotProvider:
    def __init__(self, selectors: list[str] | None = None, html: str = "<main></main>") -> None:
        self.selectors = selectors or []
        self.html = html
        self.calls: list[tuple[bool, bool]] = []

    def capture(self, html: bool = True, screenshot: bool = False) -> PageSnapshot:
        self.calls.append((html, screenshot))
        return PageSnapshot(
            available_selectors=list(self.selectors),
            html=self.html if html else None,
            screenshot=b"png" if screenshot else None,
            url="https://app.test/login",
        )


class FailingSnapshotProvider:
    def capture(self, html: bool = True, screenshot: bool = False) -> PageSnapshot:
        raise RuntimeError("page closed")


class ScriptedGenerationService:
    """Returns queued responses and records every payload it was sent."""

    def __init__(self, responses: Iterable[str] = (), error: Exception | None = None) -> None:
        self.responses = list(responses)
        self.error = error
        self.payloads: list[dict[str, Any]] = []

    async def repair(self, payload: dict[str, Any]) -> str:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def command_is(command_type: CommandType) -> Callable[[Command], bool]:
    return lambda command: command.type is command_type


def require_webdriver(browser_name: str = "chrome"):
    from oxtest.config.schema import BrowserConfig
    from oxtest.core.browser import BrowserSession

    if not os.getenv("OXTEST_BROWSER_TESTS"):
        pytest.skip("Set OXTEST_BROWSER_TESTS=1 to run browser-backed tests")
    session = BrowserSession(BrowserConfig(name=browser_name, headless=True))
    try:
        session.start()
    except WebDriverException as exc:
        pytest.skip(f"{browser_name} WebDriver unavailable: {exc.msg}")
    return session
