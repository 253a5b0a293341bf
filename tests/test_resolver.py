from __future__ import annotations

import pytest
from selenium.webdriver.common.by import By

from oxtest.config.schema import ResolverConfig
from oxtest.core.commands import SelectorSpec, SelectorStrategy
from oxtest.core.exceptions import SelectorResolutionError
from oxtest.core.finder import SelectorResolver, lookups_for, xpath_literal
from tests.helpers import FakeDriver, FakeElement, css

FAST = ResolverConfig(timeout_seconds=0.01, poll_interval_seconds=0.005)


def test_strategies_map_to_selenium_queries():
    assert lookups_for(SelectorSpec(SelectorStrategy.CSS, ".a")) == [(By.CSS_SELECTOR, ".a")]
    assert lookups_for(SelectorSpec(SelectorStrategy.XPATH, "//a")) == [(By.XPATH, "//a")]
    assert lookups_for(SelectorSpec(SelectorStrategy.TESTID, "save")) == [(By.CSS_SELECTOR, '[data-testid="save"]')]
    assert lookups_for(SelectorSpec(SelectorStrategy.PLACEHOLDER, "Email")) == [
        (By.CSS_SELECTOR, '[placeholder="Email"]')
    ]
    role_query = lookups_for(SelectorSpec(SelectorStrategy.ROLE, "button"))[0][1]
    assert role_query.startswith('[role="button"], button')
    text_lookups = lookups_for(SelectorSpec(SelectorStrategy.TEXT, "Log in"))
    assert len(text_lookups) == 2
    assert all(by == By.XPATH for by, _ in text_lookups)


def test_xpath_literal_handles_both_quote_kinds():
    assert xpath_literal("plain") == "'plain'"
    assert xpath_literal("it's") == '"it\'s"'
    assert xpath_literal("""say "it's" """).startswith("concat(")


def test_resolver_falls_back_in_chain_order():
    button = FakeElement(text="Save")
    driver = FakeDriver({css('[data-testid="save"]'): [button]})
    spec = SelectorSpec(
        SelectorStrategy.CSS,
        "#save",
        (SelectorSpec(SelectorStrategy.TESTID, "save"), SelectorSpec(SelectorStrategy.CSS, ".save")),
    )

    assert SelectorResolver(driver, FAST).resolve(spec) is button
    attempted = [query for _, query in driver.queries]
    assert attempted.index("#save") < attempted.index('[data-testid="save"]')
    assert ".save" not in attempted


def test_resolver_names_every_attempt_when_exhausted():
    spec = SelectorSpec(SelectorStrategy.CSS, ".a", (SelectorSpec(SelectorStrategy.XPATH, "//b"),))
    with pytest.raises(SelectorResolutionError) as info:
        SelectorResolver(FakeDriver(), FAST).resolve(spec)
    assert str(info.value) == "Element not found with selector(s): css=.a, xpath=//b"


def test_text_matches_must_be_unique():
    spec = SelectorSpec(SelectorStrategy.TEXT, "Delete")
    exact_query = lookups_for(spec)[0][1]
    driver = FakeDriver({(By.XPATH, exact_query): [FakeElement(), FakeElement(), FakeElement()]})

    with pytest.raises(SelectorResolutionError, match=r"text=Delete \(ambiguous: 3 matches\)"):
        SelectorResolver(driver, FAST).resolve(spec)


def test_first_match_wins_unless_uniqueness_requested():
    first, second = FakeElement(text="1"), FakeElement(text="2")
    driver = FakeDriver({css("li"): [first, second]})
    resolver = SelectorResolver(driver, FAST)
    spec = SelectorSpec(SelectorStrategy.CSS, "li")
    assert resolver.resolve(spec) is first
    with pytest.raises(SelectorResolutionError):
        resolver.resolve(spec, unique=True)
    assert resolver.resolve_all(spec) == [first, second]
