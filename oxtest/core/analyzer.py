from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Iterable

from selenium.common.exceptions import WebDriverException

from oxtest.config.schema import HealingConfig
from oxtest.core.commands import Command
from oxtest.core.metadata import PageSnapshot
from oxtest.core.protocols import PageSnapshotProvider

log = logging.getLogger(__name__)

DEFAULT_MAX_SELECTORS = 50

SELECTOR_PATTERNS = (
    "not found",
    "no such element",
    "unable to locate",
    "waiting for selector",
    "locator",
    "selector",
)
TIMEOUT_PATTERNS = ("timeout", "timed out", "exceeded")
MISMATCH_PATTERN = re.compile(r"expected.*\b(got|but was|actual|received)\b", re.IGNORECASE | re.DOTALL)

COLLECT_SELECTORS_SCRIPT = r"""
const minLength = arguments[0];
const found = [];
for (const node of document.querySelectorAll("[id]")) {
  if (node.id) found.push(`#${node.id}`);
}
for (const node of document.querySelectorAll("[data-testid]")) {
  const value = node.getAttribute("data-testid");
  if (value) found.push(`[data-testid="${value}"]`);
}
for (const node of document.querySelectorAll("[aria-label]")) {
  const value = node.getAttribute("aria-label");
  if (value) found.push(`[aria-label="${value}"]`);
}
for (const node of document.querySelectorAll("[placeholder]")) {
  const value = node.getAttribute("placeholder");
  if (value) found.push(`[placeholder="${value}"]`);
}
for (const node of document.querySelectorAll("[class]")) {
  for (const name of node.classList) {
    if (name.length > minLength && !/^[a-z]\d+$/.test(name)) found.push(`.${name}`);
  }
}
return found;
"""


class FailureCategory(str, Enum):
    SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    ASSERTION_MISMATCH = "ASSERTION_MISMATCH"
    OTHER = "OTHER"


@dataclass(slots=True)
class FailureContext:
    error_message: str
    failed_command: Command | None
    category: FailureCategory
    attempt_index: int
    command_index: int = 0
    available_selectors: list[str] = field(default_factory=list)
    page_html: str | None = None
    screenshot: bytes | None = None
    page_url: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def summary(self) -> dict[str, object]:
        """Compact rendering used when replaying history to the generation service."""

        return {
            "attempt": self.attempt_index,
            "error": self.error_message,
            "failed_command": self.failed_command.to_line() if self.failed_command else None,
            "category": self.category.value,
        }


def _selector_priority(selector: str) -> int:
    if "data-testid" in selector:
        return 1
    if "aria-label" in selector:
        return 2
    if selector.startswith("#"):
        return 3
    if selector.startswith("."):
        return 4
    return 5


def prioritize_selectors(selectors: Iterable[str], max_selectors: int = DEFAULT_MAX_SELECTORS) -> list[str]:
    """Orders selectors data-testid > aria-label > id > class > other, keeping first occurrences."""

    unique = list(dict.fromkeys(selector for selector in selectors if selector))
    unique.sort(key=_selector_priority)
    return unique[:max_selectors]


class FailureAnalyzer:
    def __init__(self, max_selectors: int = DEFAULT_MAX_SELECTORS) -> None:
        self.max_selectors = max_selectors

    @classmethod
    def from_config(cls, config: HealingConfig) -> FailureAnalyzer:
        return cls(config.max_selectors)

    def analyze(
        self,
        command: Command | None,
        error: str,
        provider: PageSnapshotProvider,
        attempt_index: int,
        command_index: int = 0,
        capture_html: bool = True,
        capture_screenshot: bool = False,
    ) -> FailureContext:
        snapshot = self._capture(provider, capture_html, capture_screenshot)
        category = self.categorize(error, command)
        log.info("Attempt %d failed with %s: %s", attempt_index, category.value, error)
        return FailureContext(
            error_message=error,
            failed_command=command,
            category=category,
            attempt_index=attempt_index,
            command_index=command_index,
            available_selectors=prioritize_selectors(snapshot.available_selectors, self.max_selectors),
            page_html=snapshot.html,
            screenshot=snapshot.screenshot,
            page_url=snapshot.url,
        )

    @staticmethod
    def categorize(error: str, command: Command | None = None) -> FailureCategory:
        lowered = (error or "").lower()
        if any(pattern in lowered for pattern in SELECTOR_PATTERNS):
            return FailureCategory.SELECTOR_NOT_FOUND
        if any(pattern in lowered for pattern in TIMEOUT_PATTERNS):
            return FailureCategory.TIMEOUT
        if command is not None and command.is_assertion and MISMATCH_PATTERN.search(error):
            return FailureCategory.ASSERTION_MISMATCH
        return FailureCategory.OTHER

    @staticmethod
    def _capture(provider: PageSnapshotProvider, html: bool, screenshot: bool) -> PageSnapshot:
        try:
            return provider.capture(html=html, screenshot=screenshot)
        except Exception as exc:  # noqa: BLE001 - a closed page still yields a usable failure context.
            log.warning("Page snapshot failed: %s", exc)
            return PageSnapshot()


class SeleniumSnapshotProvider:
    """Captures selectors, HTML and screenshots from a Selenium session."""

    def __init__(self, driver, min_class_length: int = 2) -> None:
        self.driver = driver
        self.min_class_length = min_class_length

    def capture(self, html: bool = True, screenshot: bool = False) -> PageSnapshot:
        snapshot = PageSnapshot(url=self._safe(lambda: self.driver.current_url))
        snapshot.available_selectors = list(
            self._safe(lambda: self.driver.execute_script(COLLECT_SELECTORS_SCRIPT, self.min_class_length)) or []
        )
        if html:
            snapshot.html = self._safe(lambda: self.driver.page_source)
        if screenshot:
            snapshot.screenshot = self._safe(self.driver.get_screenshot_as_png)
        return snapshot

    @staticmethod
    def _safe(check):
        try:
            return check()
        except WebDriverException as exc:
            log.debug("Snapshot check failed: %s", exc.msg)
            return None
