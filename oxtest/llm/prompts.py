from __future__ import annotations

import json
from typing import Any

SYSTEM_PROMPT = """You repair failing browser test scripts written in a line-oriented command language.
Return the complete corrected script and nothing else.
Format, one command per line:
  <command> [<strategy>=<value> [fallback <strategy>=<value>]] [<key>=<value> ...]
Strategies: css, xpath, text, placeholder, label, role, testid.
Rules:
1. Use only selectors listed in available_selectors or present in page_html.
2. Do not invent tags, attributes, text, or hierarchy.
3. Prefer testid > aria-label > id > semantic selectors > class names.
4. Add a fallback selector for every element you are not certain about.
5. Do not repeat a fix listed in previous_attempts.
6. Quote values containing spaces with double quotes.
7. No explanation, no markdown, no code fence."""

CATEGORY_GUIDANCE = {
    "SELECTOR_NOT_FOUND": "The element could not be located. Switch to a selector from available_selectors or add a fallback strategy.",
    "TIMEOUT": "The page was too slow. Add waitForSelector or waitForLoadState before the failing command, or raise its timeout.",
    "ASSERTION_MISMATCH": "The element was found but its state differs. Check that the expected value matches what the page shows.",
    "OTHER": "Inspect the error and the page, then adjust only the commands involved.",
}


def build_user_prompt(payload: dict[str, Any]) -> str:
    """Formats a deterministic user payload for the model."""

    return json.dumps(payload, indent=2, sort_keys=True)
