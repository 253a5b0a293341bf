from __future__ import annotations

import json

import pytest

from oxtest.core.commands import Command, CommandType, SelectorSpec, SelectorStrategy
from oxtest.core.metadata import HealAttempt
from oxtest.logging.artifacts import ArtifactManager
from oxtest.logging.audit import HealingAuditLogger


def test_selector_spec_flattens_nested_fallbacks():
    nested = SelectorSpec(SelectorStrategy.TEXT, "Save", (SelectorSpec(SelectorStrategy.XPATH, "//button"),))
    spec = SelectorSpec("css", "#save", (nested,))
    assert spec.strategy is SelectorStrategy.CSS
    assert [str(item) for item in spec.chain()] == ["css=#save", "text=Save", "xpath=//button"]
    with pytest.raises(ValueError):
        SelectorSpec(SelectorStrategy.CSS, "  ")


def test_command_classification_helpers():
    click = Command(CommandType.CLICK, {}, SelectorSpec(SelectorStrategy.CSS, ".a"))
    assert click.is_interaction and not click.is_assertion
    assert Command("assertUrl", {"url": "/home"}).is_assertion
    assert Command(CommandType.NAVIGATE, {"url": "/"}).param("href", "url") == "/"


def test_artifact_manager_reset_keeps_gitkeep(tmp_path):
    manager = ArtifactManager(tmp_path / "artifacts")
    (manager.root / ".gitkeep").write_text("", encoding="utf-8")
    html_path = manager.write_html_snapshot("login/attempt 1", "<html></html>", "20260101T000000Z")
    manager.write_screenshot("login", b"png")

    assert html_path.name == "20260101T000000Z_login_attempt_1.html"
    manager.reset()
    assert [child.name for child in manager.root.iterdir() if child.is_file()] == [".gitkeep"]
    assert not any(manager.dom_root.iterdir())
    assert not any(manager.screenshot_root.iterdir())


def test_audit_logger_appends_jsonl(tmp_path):
    logger = HealingAuditLogger(tmp_path)
    failed = HealAttempt("login", 1, "TIMEOUT", "Timeout", "click css=.a", "click css=.a", False)
    healed = HealAttempt("login", 2, "", "", None, "click testid=a", True)
    logger.write(failed)
    logger.write(healed)

    lines = logger.attempts_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["attempt"] for line in lines] == [1, 2]
    assert logger.read_healed_tests() == {"login": "click testid=a"}
