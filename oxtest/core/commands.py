from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping


class SelectorStrategy(str, Enum):
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    PLACEHOLDER = "placeholder"
    LABEL = "label"
    ROLE = "role"
    TESTID = "testid"


class CommandType(str, Enum):
    # navigation
    NAVIGATE = "navigate"
    GO_BACK = "goBack"
    GO_FORWARD = "goForward"
    RELOAD = "reload"
    # interaction
    CLICK = "click"
    TYPE = "type"
    FILL = "fill"
    PRESS = "press"
    HOVER = "hover"
    DRAG_DROP = "dragDrop"
    SELECT = "select"
    FOCUS = "focus"
    BLUR = "blur"
    CLEAR = "clear"
    # form
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT_OPTION = "selectOption"
    UPLOAD_FILE = "uploadFile"
    # waiting
    WAIT = "wait"
    WAIT_FOR_SELECTOR = "waitForSelector"
    WAIT_FOR_URL = "waitForUrl"
    WAIT_FOR_LOAD_STATE = "waitForLoadState"
    # assertions
    ASSERT_VISIBLE = "assertVisible"
    ASSERT_HIDDEN = "assertHidden"
    ASSERT_TEXT = "assertText"
    ASSERT_VALUE = "assertValue"
    ASSERT_URL = "assertUrl"
    ASSERT_TITLE = "assertTitle"
    ASSERT_COUNT = "assertCount"
    ASSERT_ENABLED = "assertEnabled"
    ASSERT_DISABLED = "assertDisabled"
    ASSERT_CHECKED = "assertChecked"
    ASSERT_UNCHECKED = "assertUnchecked"
    # context
    GET_ATTRIBUTE = "getAttribute"
    GET_TEXT = "getText"
    SCREENSHOT = "screenshot"
    SET_VARIABLE = "setVariable"
    GET_VARIABLE = "getVariable"
    SET_VIEWPORT = "setViewport"

    @classmethod
    def lookup(cls, name: str) -> CommandType | None:
        try:
            return cls(name)
        except ValueError:
            return None


NAVIGATION_COMMANDS = frozenset(
    {CommandType.NAVIGATE, CommandType.GO_BACK, CommandType.GO_FORWARD, CommandType.RELOAD}
)

INTERACTION_COMMANDS = frozenset(
    {
        CommandType.CLICK,
        CommandType.TYPE,
        CommandType.FILL,
        CommandType.PRESS,
        CommandType.HOVER,
        CommandType.DRAG_DROP,
        CommandType.SELECT,
        CommandType.FOCUS,
        CommandType.BLUR,
        CommandType.CLEAR,
        CommandType.CHECK,
        CommandType.UNCHECK,
        CommandType.SELECT_OPTION,
        CommandType.UPLOAD_FILE,
    }
)

ASSERTION_COMMANDS = frozenset(
    {
        CommandType.ASSERT_VISIBLE,
        CommandType.ASSERT_HIDDEN,
        CommandType.ASSERT_TEXT,
        CommandType.ASSERT_VALUE,
        CommandType.ASSERT_URL,
        CommandType.ASSERT_TITLE,
        CommandType.ASSERT_COUNT,
        CommandType.ASSERT_ENABLED,
        CommandType.ASSERT_DISABLED,
        CommandType.ASSERT_CHECKED,
        CommandType.ASSERT_UNCHECKED,
    }
)

SELECTOR_REQUIRED = INTERACTION_COMMANDS | frozenset(
    {
        CommandType.ASSERT_VISIBLE,
        CommandType.ASSERT_HIDDEN,
        CommandType.ASSERT_TEXT,
        CommandType.ASSERT_VALUE,
        CommandType.ASSERT_COUNT,
        CommandType.ASSERT_ENABLED,
        CommandType.ASSERT_DISABLED,
        CommandType.ASSERT_CHECKED,
        CommandType.ASSERT_UNCHECKED,
        CommandType.WAIT_FOR_SELECTOR,
        CommandType.GET_ATTRIBUTE,
        CommandType.GET_TEXT,
    }
)

# Each inner tuple lists interchangeable keys; one of them must be present.
REQUIRED_PARAMS: dict[CommandType, tuple[tuple[str, ...], ...]] = {
    CommandType.NAVIGATE: (("url",),),
    CommandType.TYPE: (("value",),),
    CommandType.FILL: (("value",),),
    CommandType.PRESS: (("key",),),
    CommandType.DRAG_DROP: (("target",),),
    CommandType.SELECT: (("value", "label", "index"),),
    CommandType.SELECT_OPTION: (("value", "label", "index"),),
    CommandType.UPLOAD_FILE: (("path",),),
    CommandType.WAIT_FOR_URL: (("pattern", "url"),),
    CommandType.ASSERT_TEXT: (("expected", "text", "value"),),
    CommandType.ASSERT_VALUE: (("expected", "value"),),
    CommandType.ASSERT_URL: (("pattern", "url", "expected"),),
    CommandType.ASSERT_TITLE: (("expected", "title"),),
    CommandType.ASSERT_COUNT: (("count", "expected"),),
    CommandType.GET_ATTRIBUTE: (("attribute", "name"),),
    CommandType.SET_VARIABLE: (("name",), ("value",)),
    CommandType.GET_VARIABLE: (("name",),),
    CommandType.SET_VIEWPORT: (("width",), ("height",)),
}


@dataclass(frozen=True, slots=True)
class SelectorSpec:
    strategy: SelectorStrategy
    value: str
    fallbacks: tuple[SelectorSpec, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.strategy, SelectorStrategy):
            object.__setattr__(self, "strategy", SelectorStrategy(self.strategy))
        if not self.value or not self.value.strip():
            raise ValueError("Selector value cannot be empty")
        flattened: list[SelectorSpec] = []
        for fallback in self.fallbacks:
            flattened.append(SelectorSpec(fallback.strategy, fallback.value))
            flattened.extend(fallback.fallbacks)
        object.__setattr__(self, "fallbacks", tuple(flattened))

    def chain(self) -> Iterator[SelectorSpec]:
        yield SelectorSpec(self.strategy, self.value)
        yield from self.fallbacks

    def to_text(self) -> str:
        parts = [_render_pair(self.strategy.value, self.value)]
        for fallback in self.fallbacks:
            parts.append(f"fallback {_render_pair(fallback.strategy.value, fallback.value)}")
        return " ".join(parts)

    def __str__(self) -> str:
        return f"{self.strategy.value}={self.value}"


@dataclass(frozen=True, slots=True)
class Command:
    type: CommandType
    params: Mapping[str, str] = field(default_factory=dict)
    selector: SelectorSpec | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, CommandType):
            object.__setattr__(self, "type", CommandType(self.type))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def is_interaction(self) -> bool:
        return self.type in INTERACTION_COMMANDS

    @property
    def is_assertion(self) -> bool:
        return self.type in ASSERTION_COMMANDS

    @property
    def is_navigation(self) -> bool:
        return self.type in NAVIGATION_COMMANDS

    def param(self, *keys: str, default: str | None = None) -> str | None:
        """Returns the first present value among interchangeable keys."""

        for key in keys:
            if key in self.params:
                return self.params[key]
        return default

    def to_line(self) -> str:
        """Renders the command back into command-language text."""

        parts = [self.type.value]
        if self.selector is not None:
            parts.append(self.selector.to_text())
        parts.extend(_render_pair(key, value) for key, value in self.params.items())
        return " ".join(parts)

    def __str__(self) -> str:
        return self.to_line()


def _render_pair(key: str, value: str) -> str:
    if value == "" or any(char.isspace() or char in "\"'\\" for char in value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'{key}="{escaped}"'
    return f"{key}={value}"
