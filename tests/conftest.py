from __future__ import annotations

import pytest

from oxtest.core.context import ExecutionContextManager
from oxtest.language.parser import ContentParser
from oxtest.logging.artifacts import ArtifactManager
from oxtest.logging.audit import HealingAuditLogger
from tests.helpers import ScriptedExecutor


@pytest.fixture()
def parser():
    return ContentParser()


@pytest.fixture()
def executor():
    return ScriptedExecutor()


@pytest.fixture()
def context_manager():
    return ExecutionContextManager(session_id="session-test")


@pytest.fixture()
def artifact_manager(tmp_path):
    manager = ArtifactManager(tmp_path / "artifacts")
    manager.reset()
    return manager


@pytest.fixture()
def audit_logger(tmp_path):
    return HealingAuditLogger(tmp_path / "artifacts")
