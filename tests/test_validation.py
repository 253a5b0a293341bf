from __future__ import annotations

import pytest
from pydantic import ValidationError

from oxtest.config.schema import ResolverConfig
from oxtest.core.finder import SelectorResolver
from oxtest.core.validation import (
    CountPredicate,
    PredicateValidationEngine,
    TextPredicate,
    UrlPredicate,
    ValidationContext,
    parse_predicate,
)
from tests.helpers import FakeDriver, FakeElement, css


@pytest.fixture()
def page():
    driver = FakeDriver(
        {
            css("h1"): [FakeElement(text="Welcome back, Ada")],
            css("li.item"): [FakeElement(), FakeElement()],
            css("#email"): [FakeElement(attributes={"value": "ada@example.com"})],
            css(".toast"): [FakeElement(displayed=False)],
        },
        current_url="https://app.test/dashboard?tab=1",
    )
    resolver = SelectorResolver(driver, ResolverConfig(timeout_seconds=0.01, poll_interval_seconds=0.005))
    return ValidationContext(driver=driver, resolver=resolver)


def test_parse_predicate_dispatches_on_kind():
    assert isinstance(parse_predicate({"kind": "count", "selector": "li", "expected": 2}), CountPredicate)
    assert isinstance(parse_predicate({"kind": "url", "pattern": "/dashboard"}), UrlPredicate)
    with pytest.raises(ValidationError):
        parse_predicate({"kind": "colour", "selector": "h1"})
    with pytest.raises(ValidationError):
        parse_predicate({"kind": "text", "selector": "h1"})


def test_each_predicate_evaluates_against_page(page):
    predicates = [
        parse_predicate({"kind": "exists", "selector": "h1"}),
        parse_predicate({"kind": "not_exists", "selector": ".error"}),
        parse_predicate({"kind": "visible", "selector": ".toast"}),
        parse_predicate({"kind": "text", "selector": "h1", "expected": "Welcome"}),
        parse_predicate({"kind": "value", "selector": "#email", "expected": "ada@example.com"}),
        parse_predicate({"kind": "url", "pattern": r"/dashboard\?tab=\d", "regex": True}),
        parse_predicate({"kind": "count", "selector": "li.item", "expected": 3}),
    ]

    results = PredicateValidationEngine().validate_all(predicates, page)

    assert [result.passed for result in results] == [True, True, False, True, True, True, False]
    assert results[6].actual_value == 2
    assert results[6].expected_value == 3


def test_text_predicate_exact_mode(page):
    result = TextPredicate(selector="h1", expected="Welcome", exact=True).evaluate(page)
    assert result.passed is False
    assert result.message == 'Expected text "Welcome", got "Welcome back, Ada"'


def test_engine_turns_exceptions_into_failures(page):
    class Exploding(UrlPredicate):
        def evaluate(self, context):
            raise RuntimeError("lost session")

    results = PredicateValidationEngine().validate_all([Exploding(pattern="x"), UrlPredicate(pattern="app.test")], page)
    assert results[0].passed is False
    assert "lost session" in results[0].message
    assert PredicateValidationEngine.all_passed(results) is False
    assert results[1].passed is True
