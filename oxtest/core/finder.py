from __future__ import annotations

import logging
from time import monotonic, sleep

from selenium.common.exceptions import (
    InvalidSelectorException,
    StaleElementReferenceException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from oxtest.config.schema import ResolverConfig
from oxtest.core.commands import SelectorSpec, SelectorStrategy
from oxtest.core.exceptions import SelectorResolutionError

log = logging.getLogger(__name__)

# Tags that carry an ARIA role without declaring one.
IMPLICIT_ROLES: dict[str, tuple[str, ...]] = {
    "button": ("button", "input[type='button']", "input[type='submit']", "input[type='reset']"),
    "link": ("a[href]",),
    "textbox": ("input:not([type])", "input[type='text']", "input[type='email']", "input[type='password']", "textarea"),
    "checkbox": ("input[type='checkbox']",),
    "radio": ("input[type='radio']",),
    "combobox": ("select",),
    "heading": ("h1", "h2", "h3", "h4", "h5", "h6"),
    "list": ("ul", "ol"),
    "listitem": ("li",),
    "img": ("img[alt]",),
    "navigation": ("nav",),
    "form": ("form",),
    "table": ("table",),
}

_NORMALIZED_TEXT = "normalize-space(.)"


def xpath_literal(value: str) -> str:
    """Quotes ``value`` for use inside an XPath expression."""

    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    pieces = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{piece}'" for piece in pieces) + ")"


def css_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def lookups_for(spec: SelectorSpec) -> list[tuple[str, str]]:
    """Maps one selector strategy to the ordered Selenium queries that implement it."""

    value = spec.value
    strategy = spec.strategy
    if strategy is SelectorStrategy.CSS:
        return [(By.CSS_SELECTOR, value)]
    if strategy is SelectorStrategy.XPATH:
        return [(By.XPATH, value)]
    if strategy is SelectorStrategy.TEXT:
        literal = xpath_literal(value)
        return [
            (By.XPATH, f"//*[{_NORMALIZED_TEXT}={literal} and not(*[{_NORMALIZED_TEXT}={literal}])]"),
            (By.XPATH, f"//*[contains({_NORMALIZED_TEXT}, {literal}) and not(*[contains({_NORMALIZED_TEXT}, {literal})])]"),
        ]
    if strategy is SelectorStrategy.PLACEHOLDER:
        return [(By.CSS_SELECTOR, f"[placeholder={css_literal(value)}]")]
    if strategy is SelectorStrategy.LABEL:
        literal = xpath_literal(value)
        return [
            (By.XPATH, f"//*[@id=//label[{_NORMALIZED_TEXT}={literal}]/@for]"),
            (By.XPATH, f"//label[{_NORMALIZED_TEXT}={literal}]//*[self::input or self::select or self::textarea]"),
            (By.CSS_SELECTOR, f"[aria-label={css_literal(value)}]"),
        ]
    if strategy is SelectorStrategy.ROLE:
        selectors = [f"[role={css_literal(value)}]"]
        selectors.extend(IMPLICIT_ROLES.get(value.lower(), ()))
        return [(By.CSS_SELECTOR, ", ".join(selectors))]
    if strategy is SelectorStrategy.TESTID:
        return [(By.CSS_SELECTOR, f"[data-testid={css_literal(value)}]")]
    raise ValueError(f"Unsupported selector strategy: {strategy}")


class SelectorResolver:
    """Resolves selector chains to live elements, trying fallbacks in order."""

    def __init__(self, driver, config: ResolverConfig | None = None) -> None:
        self.driver = driver
        self.config = config or ResolverConfig()

    def resolve(self, spec: SelectorSpec, unique: bool = False, timeout: float | None = None):
        attempts: list[str] = []
        for candidate in spec.chain():
            check_unique = unique or candidate.strategy is SelectorStrategy.TEXT
            matches = self._wait_for_matches(candidate, timeout)
            if not matches:
                attempts.append(str(candidate))
                continue
            if check_unique and len(matches) > 1:
                log.debug("Selector %s is ambiguous (%d matches)", candidate, len(matches))
                attempts.append(f"{candidate} (ambiguous: {len(matches)} matches)")
                continue
            if attempts:
                log.info("Resolved %s through fallback %s", spec, candidate)
            return matches[0]
        raise SelectorResolutionError(attempts)

    def resolve_all(self, spec: SelectorSpec, timeout: float | None = None) -> list:
        """Returns every match of the first strategy in the chain that matches anything."""

        for candidate in spec.chain():
            matches = self._wait_for_matches(candidate, timeout)
            if matches:
                return matches
        return []

    def _wait_for_matches(self, spec: SelectorSpec, timeout: float | None) -> list:
        lookups = lookups_for(spec)
        deadline = monotonic() + (self.config.timeout_seconds if timeout is None else timeout)
        while True:
            for by, query in lookups:
                try:
                    matches = self.driver.find_elements(by, query)
                except InvalidSelectorException:
                    log.warning("Invalid selector %s", spec)
                    return []
                except (StaleElementReferenceException, WebDriverException) as exc:
                    log.debug("Lookup of %s raised %s", spec, type(exc).__name__)
                    matches = []
                if matches:
                    return list(matches)
            if monotonic() >= deadline:
                return []
            sleep(self.config.poll_interval_seconds)
