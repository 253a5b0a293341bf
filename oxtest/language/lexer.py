from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from oxtest.core.commands import CommandType, SelectorStrategy
from oxtest.core.exceptions import ParseError

log = logging.getLogger(__name__)

# One-way canonicalization: alias names in, canonical command values out.
COMMAND_ALIASES: dict[str, str] = {
    "go_back": CommandType.GO_BACK.value,
    "go_forward": CommandType.GO_FORWARD.value,
    "drag_drop": CommandType.DRAG_DROP.value,
    "select_option": CommandType.SELECT_OPTION.value,
    "upload_file": CommandType.UPLOAD_FILE.value,
    "wait_for": CommandType.WAIT_FOR_SELECTOR.value,
    "wait_for_selector": CommandType.WAIT_FOR_SELECTOR.value,
    "wait_for_url": CommandType.WAIT_FOR_URL.value,
    "wait_for_load_state": CommandType.WAIT_FOR_LOAD_STATE.value,
    "wait_navigation": CommandType.WAIT.value,
    "assert_visible": CommandType.ASSERT_VISIBLE.value,
    "assert_exists": CommandType.ASSERT_VISIBLE.value,
    "assert_hidden": CommandType.ASSERT_HIDDEN.value,
    "assert_not_exists": CommandType.ASSERT_HIDDEN.value,
    "assert_text": CommandType.ASSERT_TEXT.value,
    "assert_value": CommandType.ASSERT_VALUE.value,
    "assert_url": CommandType.ASSERT_URL.value,
    "assert_title": CommandType.ASSERT_TITLE.value,
    "assert_count": CommandType.ASSERT_COUNT.value,
    "assert_enabled": CommandType.ASSERT_ENABLED.value,
    "assert_disabled": CommandType.ASSERT_DISABLED.value,
    "assert_checked": CommandType.ASSERT_CHECKED.value,
    "assert_unchecked": CommandType.ASSERT_UNCHECKED.value,
    "get_attribute": CommandType.GET_ATTRIBUTE.value,
    "get_text": CommandType.GET_TEXT.value,
    "set_variable": CommandType.SET_VARIABLE.value,
    "get_variable": CommandType.GET_VARIABLE.value,
    "set_viewport": CommandType.SET_VIEWPORT.value,
}

FALLBACK_KEYWORD = "fallback"
STRATEGY_PREFIXES = tuple(f"{strategy.value}=" for strategy in SelectorStrategy)


class TokenKind(str, Enum):
    COMMAND = "COMMAND"
    SELECTOR = "SELECTOR"
    PARAM = "PARAM"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    value: str
    key: str | None = None
    strategy: str | None = None
    fallback: Token | None = None


def normalize_command_name(name: str) -> str:
    return COMMAND_ALIASES.get(name, name)


class Lexer:
    """Splits one line of command-language text into typed tokens."""

    def tokenize(self, line: str) -> list[Token]:
        """Returns the tokens of one line.

        Only the first strategy-prefixed part is a selector; later ones such as
        the ``text=`` of ``assertText css=h1 text=Welcome`` are parameters.
        """

        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return []

        parts = _expand_inline_fallbacks(split_line(stripped))
        if not parts:
            return []
        tokens = [Token(TokenKind.COMMAND, normalize_command_name(parts[0]))]

        index = 1
        seen_selector = False
        while index < len(parts):
            part = parts[index]
            if _is_selector(part) and not seen_selector:
                seen_selector = True
                token, consumed = self._selector(parts, index)
                tokens.append(token)
                index += consumed
            elif part == FALLBACK_KEYWORD:
                raise ParseError("fallback must follow a selector")
            elif "=" in part:
                key, _, value = part.partition("=")
                tokens.append(Token(TokenKind.PARAM, value, key=key))
                index += 1
            else:
                log.debug("Ignoring stray token %r in line %r", part, stripped)
                index += 1
        return tokens

    def _selector(self, parts: list[str], index: int) -> tuple[Token, int]:
        strategy, _, value = parts[index].partition("=")
        consumed = 1
        fallback: Token | None = None

        if index + 1 < len(parts) and parts[index + 1] == FALLBACK_KEYWORD:
            if index + 2 >= len(parts) or not _is_selector(parts[index + 2]):
                raise ParseError("fallback must be followed by <strategy>=<value>")
            fallback, nested = self._selector(parts, index + 2)
            consumed += 1 + nested

        return Token(TokenKind.SELECTOR, value, strategy=strategy, fallback=fallback), consumed


def split_line(line: str) -> list[str]:
    """Splits on whitespace outside quotes; quotes group.

    A backslash only escapes another backslash or a quote character (inside
    quotes, only the active one). Any other backslash is kept, so CSS
    escapes and regex classes pass through untouched.
    """

    parts: list[str] = []
    current: list[str] = []
    has_content = False
    quote: str | None = None
    index = 0

    while index < len(line):
        char = line[index]
        index += 1
        if char == "\\" and index < len(line):
            following = line[index]
            escapable = ("\\", quote) if quote is not None else ("\\", "'", '"')
            if following in escapable:
                current.append(following)
                index += 1
                continue
            current.append(char)
            continue
        if quote is not None:
            if char == quote:
                quote = None
            else:
                current.append(char)
            continue
        if char in ("'", '"'):
            quote = char
            has_content = True
            continue
        if char.isspace():
            if current or has_content:
                parts.append("".join(current))
                current = []
                has_content = False
            continue
        current.append(char)

    if quote is not None:
        raise ParseError(f"unterminated quote ({quote})")
    if current or has_content:
        parts.append("".join(current))
    return parts


def _expand_inline_fallbacks(parts: list[str]) -> list[str]:
    """Rewrites ``fallback=css=x`` into the spaced ``fallback css=x`` form."""

    prefix = f"{FALLBACK_KEYWORD}="
    expanded: list[str] = []
    for part in parts:
        if part.startswith(prefix) and _is_selector(part[len(prefix) :]):
            expanded.extend((FALLBACK_KEYWORD, part[len(prefix) :]))
        else:
            expanded.append(part)
    return expanded


def _is_selector(part: str) -> bool:
    return part.startswith(STRATEGY_PREFIXES)
