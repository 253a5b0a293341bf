from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Iterable


@dataclass(frozen=True, slots=True)
class Cookie:
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float | None = None
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None

    @classmethod
    def from_webdriver(cls, payload: dict[str, Any]) -> Cookie:
        return cls(
            name=payload["name"],
            value=payload["value"],
            domain=payload.get("domain", ""),
            path=payload.get("path", "/"),
            expires=payload.get("expiry"),
            http_only=bool(payload.get("httpOnly", False)),
            secure=bool(payload.get("secure", False)),
            same_site=payload.get("sameSite"),
        )


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    session_id: str
    variables: dict[str, str] = field(default_factory=dict)
    cookies: tuple[Cookie, ...] = ()
    current_url: str | None = None
    page_title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def generate_session_id() -> str:
    return f"session-{uuid.uuid4().hex}"


class ExecutionContextManager:
    """Owns the execution context of one run.

    Every mutation replaces the internal context with a new value instead of
    editing it in place, so a context handed out earlier never changes under
    its reader. ``get_context`` additionally returns a deep copy.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._context = ExecutionContext(session_id=session_id or generate_session_id())

    @property
    def session_id(self) -> str:
        return self._context.session_id

    def get_context(self) -> ExecutionContext:
        return copy.deepcopy(self._context)

    def set_variable(self, key: str, value: str) -> None:
        self._context = replace(self._context, variables={**self._context.variables, key: value})

    def get_variable(self, key: str) -> str | None:
        return self._context.variables.get(key)

    def update_cookies(self, cookies: Iterable[Cookie]) -> None:
        self._context = replace(self._context, cookies=tuple(cookies))

    def set_current_url(self, url: str) -> None:
        self._context = replace(self._context, current_url=url)

    def set_page_title(self, title: str) -> None:
        self._context = replace(self._context, page_title=title)

    def set_metadata(self, key: str, value: Any) -> None:
        self._context = replace(self._context, metadata={**self._context.metadata, key: value})

    def clone(self) -> ExecutionContextManager:
        cloned = ExecutionContextManager(session_id=self._context.session_id)
        cloned._context = copy.deepcopy(self._context)
        return cloned

    def merge(self, other: ExecutionContext) -> None:
        """Folds ``other`` in: its variables win, cookies append, session id stays."""

        self._context = ExecutionContext(
            session_id=self._context.session_id,
            variables={**self._context.variables, **other.variables},
            cookies=self._context.cookies + tuple(other.cookies),
            current_url=other.current_url or self._context.current_url,
            page_title=other.page_title or self._context.page_title,
            metadata={**self._context.metadata, **other.metadata},
        )

    def reset(self) -> None:
        self._context = ExecutionContext(session_id=self._context.session_id)
