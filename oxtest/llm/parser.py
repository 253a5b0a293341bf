from __future__ import annotations

import re

from oxtest.core.exceptions import GenerationServiceError

_OPENING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\r?\n?")
_CLOSING_FENCE = re.compile(r"\r?\n?```\s*$")


def strip_code_fences(response: str) -> str:
    """Removes a surrounding ``` wrapper, optionally language tagged, and trims."""

    text = response.strip()
    if text.startswith("```"):
        text = _OPENING_FENCE.sub("", text, count=1)
        text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def parse_repair_response(response: str) -> str:
    content = strip_code_fences(response or "")
    if not content:
        raise GenerationServiceError("LLM returned an empty repair")
    return content
