from __future__ import annotations


class OxtestError(Exception):
    """Base class for engine errors."""


class ParseError(OxtestError):
    """Raised when a line of command-language text cannot be parsed."""

    def __init__(self, reason: str, line_number: int | None = None) -> None:
        self.reason = reason
        self.line_number = line_number
        if line_number is None:
            super().__init__(reason)
        else:
            super().__init__(f"Line {line_number}: {reason}")

    def at_line(self, line_number: int) -> ParseError:
        if self.line_number is not None:
            return self
        return ParseError(self.reason, line_number)


class SelectorError(OxtestError):
    """Raised when an element lookup cannot be performed."""


class SelectorResolutionError(SelectorError):
    """Raised when every strategy of a selector chain failed."""

    def __init__(self, attempts: list[str]) -> None:
        self.attempts = list(attempts)
        super().__init__(f"Element not found with selector(s): {', '.join(self.attempts)}")


class GraphError(OxtestError):
    """Raised when a dependency graph operation is rejected."""


class DuplicateNodeError(GraphError):
    pass


class UnknownNodeError(GraphError):
    pass


class CycleError(GraphError):
    pass


class InvalidTransitionError(OxtestError):
    """Raised when a status change violates the lifecycle."""


class RefinementError(OxtestError):
    """Raised when the generation service could not produce a repair."""


class GenerationServiceError(OxtestError):
    """Raised by repair clients on provider or transport failures."""
