from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from selenium.webdriver.common.keys import Keys

import oxtest.core.orchestrator as engine
from oxtest.config.schema import ResolverConfig
from oxtest.core.actions import SeleniumExecutor
from oxtest.core.analyzer import FailureAnalyzer, FailureCategory
from oxtest.core.context import ExecutionContextManager
from oxtest.core.exceptions import ParseError
from oxtest.core.finder import SelectorResolver
from oxtest.core.tasks import Subtask
from oxtest.language.parser import parse_content
from tests.helpers import FakeDriver, FakeElement, css, require_webdriver


@pytest.fixture()
def login_page():
    return FakeDriver(
        {
            css("#email"): [FakeElement(attributes={"value": "old"})],
            css('[data-testid="submit"]'): [FakeElement(text="Sign in", attributes={"type": "submit"})],
            css("h1"): [FakeElement(text="Dashboard")],
            css("#terms"): [FakeElement(attributes={"type": "checkbox"})],
        }
    )


def _executor(driver, artifact_manager=None) -> SeleniumExecutor:
    resolver = SelectorResolver(driver, ResolverConfig(timeout_seconds=0.01, poll_interval_seconds=0.005))
    return SeleniumExecutor(driver, resolver, artifact_manager=artifact_manager, wait_timeout=0.02)


def _run(executor: SeleniumExecutor, line: str):
    return asyncio.run(executor.execute(parse_content(line)[0]))


def test_interactions_drive_the_page(login_page):
    executor = _executor(login_page)

    assert _run(executor, "navigate url=https://app.test/login").success
    assert _run(executor, "fill css=#email value=ada@example.com").success
    assert _run(executor, "click css=#missing fallback testid=submit").success
    assert _run(executor, "check css=#terms").success

    assert login_page.visited == ["https://app.test/login"]
    assert login_page.elements[css("#email")][0].attributes["value"] == "ada@example.com"
    assert login_page.elements[css('[data-testid="submit"]')][0].clicks == 1
    assert login_page.elements[css("#terms")][0].selected is True


def test_missing_element_reports_selector_failure(login_page):
    result = _run(_executor(login_page), "click css=.gone fallback text=Nope")
    assert result.success is False
    assert result.error.startswith("Element not found with selector(s): css=.gone, text=Nope")
    assert FailureAnalyzer.categorize(result.error) is FailureCategory.SELECTOR_NOT_FOUND


def test_assertion_mismatch_wording(login_page):
    executor = _executor(login_page)
    assert _run(executor, "assert_text css=h1 text=Dash").success
    result = _run(executor, 'assert_text css=h1 text=Settings')
    command = parse_content("assert_text css=h1 text=Settings")[0]
    assert result.error == 'Expected text "Settings", got "Dashboard"'
    assert FailureAnalyzer.categorize(result.error, command) is FailureCategory.ASSERTION_MISMATCH
    assert _run(executor, "assert_url url=/login").success is False


def test_context_commands_return_outputs(login_page, artifact_manager):
    executor = _executor(login_page, artifact_manager)
    assert _run(executor, "get_attribute css=#email attribute=value").output == "old"
    assert _run(executor, "set_viewport width=800 height=600").output == "800x600"
    screenshot = _run(executor, "screenshot name=after-login")
    assert screenshot.success
    assert Path(screenshot.output).parent == artifact_manager.screenshot_root
    assert Path(screenshot.output).exists()


def test_wait_for_url_times_out(login_page):
    result = _run(_executor(login_page), "wait_for_url pattern=/never timeout=10")
    assert result.success is False
    assert FailureAnalyzer.categorize(result.error) is FailureCategory.TIMEOUT


def test_orchestrator_runs_through_selenium_executor(login_page):
    orchestrator = engine.TestOrchestrator(_executor(login_page), ExecutionContextManager())
    subtask = Subtask(
        "login",
        "Sign in",
        parse_content("navigate url=https://app.test/login\nfill css=#email value=ada@example.com\nclick testid=submit"),
    )
    result = asyncio.run(orchestrator.execute_subtask(subtask))
    assert result.success is True
    assert orchestrator.get_context().variables["lastTyped_#email"] == "ada@example.com"


def test_press_sends_key_to_resolved_element(login_page):
    assert _run(_executor(login_page), "press css=#email key=Enter").success
    assert login_page.elements[css("#email")][0].typed == [Keys.ENTER]
    with pytest.raises(ParseError, match="press requires a selector"):
        parse_content("press key=Enter")


@pytest.mark.integration
def test_executor_against_real_browser(tmp_path):
    session = require_webdriver()
    page = tmp_path / "page.html"
    page.write_text(
        "<html><head><title>Local</title></head><body>"
        "<label for='q'>Search</label><input id='q' placeholder='Find'>"
        "<button data-testid='go'>Go</button><h1>Ready</h1></body></html>",
        encoding="utf-8",
    )
    try:
        executor = SeleniumExecutor(session.driver)
        orchestrator = engine.TestOrchestrator(executor)
        content = (
            f"navigate url={page.as_uri()}\n"
            "fill label=Search value=shoes\n"
            "assert_value placeholder=Find value=shoes\n"
            "click role=button\n"
            "assert_text text=Ready text=Ready\n"
            "assert_title title=Local"
        )
        result = asyncio.run(orchestrator.execute_subtask(Subtask("local", "Local page", parse_content(content))))
        assert result.success, result.error
    finally:
        session.stop()
