from __future__ import annotations

import logging
from typing import Any, Sequence

from oxtest.core.analyzer import FailureContext
from oxtest.core.exceptions import RefinementError
from oxtest.core.protocols import GenerationService
from oxtest.llm.parser import strip_code_fences
from oxtest.llm.prompts import CATEGORY_GUIDANCE

log = logging.getLogger(__name__)

MAX_HTML_CHARS = 12000


class RefinementEngine:
    """Turns a failure and its history into one repair request."""

    def __init__(self, generation_service: GenerationService, max_html_chars: int = MAX_HTML_CHARS) -> None:
        self.generation_service = generation_service
        self.max_html_chars = max_html_chars

    async def refine(
        self,
        test_name: str,
        original_content: str,
        failure: FailureContext,
        previous_attempts: Sequence[FailureContext] = (),
    ) -> str:
        payload = self.build_payload(test_name, original_content, failure, previous_attempts)
        log.info("Requesting repair for %s after attempt %d", test_name, failure.attempt_index)
        try:
            response = await self.generation_service.repair(payload)
        except Exception as exc:  # noqa: BLE001 - every provider failure surfaces as a refinement failure.
            raise RefinementError(f"Refinement failed: {exc}") from exc
        return strip_code_fences(response)

    def build_payload(
        self,
        test_name: str,
        original_content: str,
        failure: FailureContext,
        previous_attempts: Sequence[FailureContext] = (),
    ) -> dict[str, Any]:
        html = failure.page_html
        if html is not None and len(html) > self.max_html_chars:
            html = html[: self.max_html_chars]
        return {
            "test_name": test_name,
            "original_content": original_content,
            "error": failure.error_message,
            "failed_command": failure.failed_command.to_line() if failure.failed_command else None,
            "command_index": failure.command_index,
            "category": failure.category.value,
            "available_selectors": list(failure.available_selectors),
            "page_html": html,
            "page_url": failure.page_url,
            "previous_attempts": [attempt.summary() for attempt in previous_attempts],
            "guidance": CATEGORY_GUIDANCE[failure.category.value],
        }
