from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from time import monotonic, sleep
from typing import Callable

from selenium.common.exceptions import (
    ElementClickInterceptedException,
    ElementNotInteractableException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support.ui import Select

from oxtest.core.commands import Command, CommandType, SelectorSpec
from oxtest.core.exceptions import OxtestError
from oxtest.core.finder import SelectorResolver
from oxtest.core.metadata import CommandResult
from oxtest.language.lexer import Lexer
from oxtest.language.parser import CommandParser
from oxtest.logging.artifacts import ArtifactManager

log = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 10.0


class AssertionMismatch(OxtestError):
    """Raised inside the executor when an assertion command does not hold."""


class SeleniumExecutor:
    """Runs commands against a Selenium session.

    Each command runs in a worker thread so the event loop is never blocked
    by WebDriver round trips. Failures are reported through ``CommandResult``;
    nothing raised by the driver escapes :meth:`execute`.
    """

    def __init__(
        self,
        driver,
        resolver: SelectorResolver | None = None,
        artifact_manager: ArtifactManager | None = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self.driver = driver
        self.resolver = resolver or SelectorResolver(driver)
        self.artifact_manager = artifact_manager
        self.wait_timeout = wait_timeout
        self._handlers: dict[CommandType, Callable[[Command], str | None]] = {
            CommandType.NAVIGATE: self._navigate,
            CommandType.GO_BACK: lambda command: self.driver.back(),
            CommandType.GO_FORWARD: lambda command: self.driver.forward(),
            CommandType.RELOAD: lambda command: self.driver.refresh(),
            CommandType.CLICK: self._click,
            CommandType.TYPE: self._type,
            CommandType.FILL: self._type,
            CommandType.PRESS: self._press,
            CommandType.HOVER: self._hover,
            CommandType.DRAG_DROP: self._drag_drop,
            CommandType.SELECT: self._select,
            CommandType.SELECT_OPTION: self._select,
            CommandType.FOCUS: self._focus,
            CommandType.BLUR: self._blur,
            CommandType.CLEAR: lambda command: self._element(command).clear(),
            CommandType.CHECK: lambda command: self._set_checked(command, True),
            CommandType.UNCHECK: lambda command: self._set_checked(command, False),
            CommandType.UPLOAD_FILE: self._upload_file,
            CommandType.WAIT: self._wait,
            CommandType.WAIT_FOR_SELECTOR: self._wait_for_selector,
            CommandType.WAIT_FOR_URL: self._wait_for_url,
            CommandType.WAIT_FOR_LOAD_STATE: self._wait_for_load_state,
            CommandType.ASSERT_VISIBLE: self._assert_visible,
            CommandType.ASSERT_HIDDEN: self._assert_hidden,
            CommandType.ASSERT_TEXT: self._assert_text,
            CommandType.ASSERT_VALUE: self._assert_value,
            CommandType.ASSERT_URL: self._assert_url,
            CommandType.ASSERT_TITLE: self._assert_title,
            CommandType.ASSERT_COUNT: self._assert_count,
            CommandType.ASSERT_ENABLED: lambda command: self._assert_state(command, "enabled", True),
            CommandType.ASSERT_DISABLED: lambda command: self._assert_state(command, "enabled", False),
            CommandType.ASSERT_CHECKED: lambda command: self._assert_state(command, "checked", True),
            CommandType.ASSERT_UNCHECKED: lambda command: self._assert_state(command, "checked", False),
            CommandType.GET_ATTRIBUTE: self._get_attribute,
            CommandType.GET_TEXT: lambda command: self._element(command).text,
            CommandType.SCREENSHOT: self._screenshot,
            CommandType.SET_VIEWPORT: self._set_viewport,
        }

    async def execute(self, command: Command) -> CommandResult:
        started = monotonic()
        handler = self._handlers.get(command.type)
        if handler is None:
            return CommandResult(success=False, error=f"Unsupported command: {command.type.value}")
        try:
            output = await asyncio.to_thread(handler, command)
        except (OxtestError, WebDriverException, ValueError, OSError) as exc:
            log.debug("Command %s failed: %s", command.to_line(), exc)
            return CommandResult(success=False, error=_describe(exc), duration=monotonic() - started)
        return CommandResult(success=True, output=output, duration=monotonic() - started)

    def _element(self, command: Command, unique: bool = False):
        return self.resolver.resolve(command.selector, unique=unique)

    def _navigate(self, command: Command) -> str:
        url = command.params["url"]
        self.driver.get(url)
        return url

    def _click(self, command: Command) -> None:
        element = self._element(command)
        try:
            element.click()
        except ElementClickInterceptedException:
            log.debug("Click on %s intercepted, retrying through JavaScript", command.selector)
            self.driver.execute_script("arguments[0].click();", element)
        except (ElementNotInteractableException, StaleElementReferenceException):
            self._element(command).click()

    def _type(self, command: Command) -> None:
        element = self._element(command)
        clear_first = command.type is CommandType.FILL or command.param("clear", default="true") != "false"
        try:
            if clear_first:
                element.clear()
            element.send_keys(command.params["value"])
        except (ElementNotInteractableException, StaleElementReferenceException):
            element = self._element(command)
            if clear_first:
                element.clear()
            element.send_keys(command.params["value"])

    def _press(self, command: Command) -> None:
        key_name = command.params["key"]
        self._element(command).send_keys(getattr(Keys, key_name.upper(), key_name))

    def _hover(self, command: Command) -> None:
        ActionChains(self.driver).move_to_element(self._element(command)).perform()

    def _drag_drop(self, command: Command) -> None:
        source = self._element(command)
        target = self.resolver.resolve(_parse_selector(command.params["target"]))
        ActionChains(self.driver).drag_and_drop(source, target).perform()

    def _select(self, command: Command) -> str:
        dropdown = Select(self._element(command))
        if "value" in command.params:
            dropdown.select_by_value(command.params["value"])
        elif "label" in command.params:
            dropdown.select_by_visible_text(command.params["label"])
        else:
            dropdown.select_by_index(int(command.params["index"]))
        return dropdown.first_selected_option.get_attribute("value")

    def _focus(self, command: Command) -> None:
        self.driver.execute_script("arguments[0].focus();", self._element(command))

    def _blur(self, command: Command) -> None:
        self.driver.execute_script("arguments[0].blur();", self._element(command))

    def _set_checked(self, command: Command, checked: bool) -> None:
        element = self._element(command)
        if element.is_selected() != checked:
            element.click()

    def _upload_file(self, command: Command) -> str:
        path = Path(command.params["path"]).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Upload file not found: {path}")
        self._element(command).send_keys(str(path))
        return str(path)

    def _wait(self, command: Command) -> None:
        milliseconds = command.param("ms", "duration", "timeout", default="1000")
        sleep(int(milliseconds) / 1000)

    def _wait_for_selector(self, command: Command) -> None:
        self.resolver.resolve(command.selector, timeout=self._timeout(command))

    def _wait_for_url(self, command: Command) -> str:
        expected = command.param("pattern", "url")
        return self._poll(
            lambda: self.driver.current_url if _url_matches(self.driver.current_url, expected) else None,
            self._timeout(command),
            f"Timeout waiting for URL matching {expected}",
        )

    def _wait_for_load_state(self, command: Command) -> str:
        return self._poll(
            lambda: self.driver.execute_script("return document.readyState") == "complete" and "complete",
            self._timeout(command),
            "Timeout waiting for page load",
        )

    def _assert_visible(self, command: Command) -> None:
        element = self._element(command)
        if not element.is_displayed():
            raise AssertionMismatch(f"Expected {command.selector} to be visible, got hidden")

    def _assert_hidden(self, command: Command) -> None:
        matches = self.resolver.resolve_all(command.selector, timeout=0)
        if any(element.is_displayed() for element in matches):
            raise AssertionMismatch(f"Expected {command.selector} to be hidden, got visible")

    def _assert_text(self, command: Command) -> str:
        expected = command.param("expected", "text", "value")
        actual = (self._element(command).text or "").strip()
        exact = command.param("exact", default="false") == "true"
        if (actual != expected) if exact else (expected not in actual):
            raise AssertionMismatch(f'Expected text "{expected}", got "{actual}"')
        return actual

    def _assert_value(self, command: Command) -> str:
        expected = command.param("expected", "value")
        actual = self._element(command).get_attribute("value") or ""
        if actual != expected:
            raise AssertionMismatch(f'Expected value "{expected}", got "{actual}"')
        return actual

    def _assert_url(self, command: Command) -> str:
        expected = command.param("pattern", "url", "expected")
        actual = self.driver.current_url
        if not _url_matches(actual, expected):
            raise AssertionMismatch(f'Expected URL matching "{expected}", got "{actual}"')
        return actual

    def _assert_title(self, command: Command) -> str:
        expected = command.param("expected", "title")
        actual = self.driver.title
        if expected not in actual:
            raise AssertionMismatch(f'Expected title "{expected}", got "{actual}"')
        return actual

    def _assert_count(self, command: Command) -> str:
        expected = int(command.param("count", "expected"))
        actual = len(self.resolver.resolve_all(command.selector))
        if actual != expected:
            raise AssertionMismatch(f"Expected {expected} elements for {command.selector}, got {actual}")
        return str(actual)

    def _assert_state(self, command: Command, state: str, wanted: bool) -> None:
        element = self._element(command)
        actual = element.is_enabled() if state == "enabled" else element.is_selected()
        if actual != wanted:
            label = state if wanted else f"not {state}"
            raise AssertionMismatch(f"Expected {command.selector} to be {label}, got {'not ' if wanted else ''}{state}")

    def _get_attribute(self, command: Command) -> str | None:
        return self._element(command).get_attribute(command.param("attribute", "name"))

    def _screenshot(self, command: Command) -> str:
        name = command.param("name", "path", default="screenshot")
        if self.artifact_manager is not None:
            path = self.artifact_manager.screenshot_path(Path(name).stem)
        else:
            path = Path(name if name.endswith(".png") else f"{name}.png")
        if not self.driver.save_screenshot(str(path)):
            raise OSError(f"Could not write screenshot to {path}")
        return str(path)

    def _set_viewport(self, command: Command) -> str:
        width, height = int(command.params["width"]), int(command.params["height"])
        self.driver.set_window_size(width, height)
        return f"{width}x{height}"

    def _timeout(self, command: Command) -> float:
        raw = command.param("timeout")
        return int(raw) / 1000 if raw is not None else self.wait_timeout

    def _poll(self, check: Callable[[], str | None], timeout: float, message: str) -> str:
        deadline = monotonic() + timeout
        while True:
            result = check()
            if result:
                return result
            if monotonic() >= deadline:
                raise TimeoutException(message)
            sleep(self.resolver.config.poll_interval_seconds)


def _url_matches(actual: str, expected: str) -> bool:
    if expected in actual:
        return True
    try:
        return re.search(expected, actual) is not None
    except re.error:
        return False


def _parse_selector(text: str) -> SelectorSpec:
    tokens = Lexer().tokenize(f"waitForSelector {text}")
    return CommandParser().parse(tokens, 1).selector


def _describe(exc: Exception) -> str:
    if isinstance(exc, WebDriverException):
        return exc.msg or type(exc).__name__
    return str(exc) or type(exc).__name__
