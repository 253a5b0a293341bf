from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from oxtest.core.commands import SelectorSpec, SelectorStrategy
from oxtest.core.exceptions import SelectorResolutionError

if TYPE_CHECKING:
    from oxtest.core.finder import SelectorResolver

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ValidationContext:
    driver: Any
    resolver: SelectorResolver


@dataclass(slots=True)
class ValidationResult:
    passed: bool
    message: str
    actual_value: Any = None
    expected_value: Any = None


class _SelectorPredicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    strategy: SelectorStrategy = SelectorStrategy.CSS

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("selector cannot be empty")
        return value

    @property
    def spec(self) -> SelectorSpec:
        return SelectorSpec(self.strategy, self.selector)

    def _find(self, context: ValidationContext):
        try:
            return context.resolver.resolve(self.spec)
        except SelectorResolutionError:
            return None


class ExistsPredicate(_SelectorPredicate):
    kind: Literal["exists"] = "exists"

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        found = self._find(context) is not None
        return ValidationResult(
            passed=found,
            message=f"Element {self.spec} {'exists' if found else 'does not exist'}",
            actual_value=found,
            expected_value=True,
        )


class NotExistsPredicate(_SelectorPredicate):
    kind: Literal["not_exists"] = "not_exists"

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        found = bool(context.resolver.resolve_all(self.spec, timeout=0))
        return ValidationResult(
            passed=not found,
            message=f"Element {self.spec} {'still exists' if found else 'is absent'}",
            actual_value=found,
            expected_value=False,
        )


class VisiblePredicate(_SelectorPredicate):
    kind: Literal["visible"] = "visible"

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        element = self._find(context)
        visible = element is not None and element.is_displayed()
        return ValidationResult(
            passed=visible,
            message=f"Element {self.spec} is {'visible' if visible else 'not visible'}",
            actual_value=visible,
            expected_value=True,
        )


class TextPredicate(_SelectorPredicate):
    kind: Literal["text"] = "text"
    expected: str
    exact: bool = False

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        element = self._find(context)
        if element is None:
            return ValidationResult(False, f"Element {self.spec} not found", None, self.expected)
        actual = (element.text or "").strip()
        passed = actual == self.expected if self.exact else self.expected in actual
        return ValidationResult(
            passed=passed,
            message=f'Expected text "{self.expected}", got "{actual}"',
            actual_value=actual,
            expected_value=self.expected,
        )


class ValuePredicate(_SelectorPredicate):
    kind: Literal["value"] = "value"
    expected: str

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        element = self._find(context)
        if element is None:
            return ValidationResult(False, f"Element {self.spec} not found", None, self.expected)
        actual = element.get_attribute("value") or ""
        return ValidationResult(
            passed=actual == self.expected,
            message=f'Expected value "{self.expected}", got "{actual}"',
            actual_value=actual,
            expected_value=self.expected,
        )


class UrlPredicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    pattern: str
    regex: bool = False

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        actual = context.driver.current_url
        passed = re.search(self.pattern, actual) is not None if self.regex else self.pattern in actual
        return ValidationResult(
            passed=passed,
            message=f'Expected URL matching "{self.pattern}", got "{actual}"',
            actual_value=actual,
            expected_value=self.pattern,
        )


class CountPredicate(_SelectorPredicate):
    kind: Literal["count"] = "count"
    expected: int = Field(ge=0)

    def evaluate(self, context: ValidationContext) -> ValidationResult:
        actual = len(context.resolver.resolve_all(self.spec))
        return ValidationResult(
            passed=actual == self.expected,
            message=f"Expected {self.expected} elements for {self.spec}, got {actual}",
            actual_value=actual,
            expected_value=self.expected,
        )


ValidationPredicate = Annotated[
    Union[
        ExistsPredicate,
        NotExistsPredicate,
        VisiblePredicate,
        TextPredicate,
        ValuePredicate,
        UrlPredicate,
        CountPredicate,
    ],
    Field(discriminator="kind"),
]

_PREDICATE_ADAPTER: TypeAdapter[ValidationPredicate] = TypeAdapter(ValidationPredicate)


def parse_predicate(payload: dict[str, Any]) -> ValidationPredicate:
    return _PREDICATE_ADAPTER.validate_python(payload)


class PredicateValidationEngine:
    """Evaluates predicates in order; an exception fails that predicate only."""

    def validate_all(
        self,
        predicates: Iterable[ValidationPredicate],
        context: ValidationContext,
    ) -> list[ValidationResult]:
        results = []
        for predicate in predicates:
            try:
                result = predicate.evaluate(context)
            except Exception as exc:  # noqa: BLE001 - a broken page must not abort the remaining checks.
                log.warning("Predicate %s raised %s", predicate.kind, exc)
                result = ValidationResult(False, f"{predicate.kind} check raised: {exc}")
            results.append(result)
        return results

    @staticmethod
    def all_passed(results: Iterable[ValidationResult]) -> bool:
        return all(result.passed for result in results)
