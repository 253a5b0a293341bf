from __future__ import annotations

import json
from pathlib import Path

from oxtest.core.metadata import HealAttempt


class HealingAuditLogger:
    """Persists self-healing attempts and the latest repaired content per test."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.attempts_path = self.root / "healing_attempts.jsonl"
        self.healed_tests_path = self.root / "healed_tests.json"

    def write(self, attempt: HealAttempt) -> None:
        with self.attempts_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(attempt.to_payload()) + "\n")

        if attempt.success and attempt.attempt > 1:
            healed = self.read_healed_tests()
            healed[attempt.test_name] = attempt.candidate_content
            self.healed_tests_path.write_text(
                json.dumps(healed, indent=2, sort_keys=True),
                encoding="utf-8",
            )

    def read_attempts(self) -> list[dict]:
        if not self.attempts_path.exists():
            return []
        with self.attempts_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def read_healed_tests(self) -> dict[str, str]:
        if not self.healed_tests_path.exists():
            return {}
        return json.loads(self.healed_tests_path.read_text(encoding="utf-8"))
