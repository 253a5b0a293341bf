from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from oxtest.core.commands import (
    REQUIRED_PARAMS,
    SELECTOR_REQUIRED,
    Command,
    CommandType,
    SelectorSpec,
    SelectorStrategy,
)
from oxtest.core.exceptions import ParseError
from oxtest.language.lexer import Lexer, Token, TokenKind

log = logging.getLogger(__name__)


class CommandParser:
    """Turns one line's tokens into a validated Command."""

    def parse(self, tokens: Sequence[Token], line_number: int) -> Command:
        if not tokens:
            raise ParseError("no tokens to parse", line_number)

        head = tokens[0]
        if head.kind is not TokenKind.COMMAND:
            raise ParseError("expected a command name", line_number)
        command_type = CommandType.lookup(head.value)
        if command_type is None:
            raise ParseError(f"Unknown command: {head.value}", line_number)

        selector: SelectorSpec | None = None
        params: dict[str, str] = {}
        for token in tokens[1:]:
            if token.kind is TokenKind.SELECTOR:
                if selector is not None:
                    raise ParseError(f"{command_type.value} accepts a single selector", line_number)
                selector = self._build_selector(token, line_number)
            elif token.kind is TokenKind.PARAM and token.key:
                params[token.key] = token.value

        self._validate(command_type, selector, params, line_number)
        return Command(command_type, params, selector)

    @staticmethod
    def _build_selector(token: Token, line_number: int) -> SelectorSpec:
        chain: list[tuple[str, str]] = []
        current: Token | None = token
        while current is not None:
            chain.append((current.strategy or "", current.value))
            current = current.fallback

        specs: list[SelectorSpec] = []
        for strategy, value in chain:
            try:
                specs.append(SelectorSpec(SelectorStrategy(strategy), value))
            except ValueError as exc:
                raise ParseError(f"Invalid selector {strategy}={value}: {exc}", line_number) from exc
        primary, *fallbacks = specs
        return SelectorSpec(primary.strategy, primary.value, tuple(fallbacks))

    @staticmethod
    def _validate(
        command_type: CommandType,
        selector: SelectorSpec | None,
        params: dict[str, str],
        line_number: int,
    ) -> None:
        if command_type in SELECTOR_REQUIRED and selector is None:
            raise ParseError(f"{command_type.value} requires a selector", line_number)
        for alternatives in REQUIRED_PARAMS.get(command_type, ()):
            if not any(params.get(key) for key in alternatives):
                expected = " or ".join(alternatives)
                raise ParseError(
                    f"Missing required parameter for {command_type.value}: {expected}",
                    line_number,
                )


class ContentParser:
    """Parses whole documents, failing fast on the first bad line."""

    def __init__(self, lexer: Lexer | None = None, command_parser: CommandParser | None = None) -> None:
        self.lexer = lexer or Lexer()
        self.command_parser = command_parser or CommandParser()

    def parse_content(self, content: str) -> tuple[Command, ...]:
        commands: list[Command] = []
        for line_number, line in enumerate(content.splitlines(), start=1):
            try:
                tokens = self.lexer.tokenize(line)
                if not tokens:
                    continue
                commands.append(self.command_parser.parse(tokens, line_number))
            except ParseError as exc:
                error = exc.at_line(line_number)
                log.debug("Parse failed: %s", error)
                raise error from None
        return tuple(commands)

    def parse_file(self, path: str | Path) -> tuple[Command, ...]:
        source = Path(path)
        try:
            content = source.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Command file not found: {source}") from exc
        return self.parse_content(content)


def parse_content(content: str) -> tuple[Command, ...]:
    return ContentParser().parse_content(content)
