import copy
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..type.types_def import (
    ContainsRule,
    CustomRule,
    HasPropertyRule,
    MatchesRule,
    TestCase,
    ToolResponse,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# a string value wrapped in slashes is a regular expression
REGEX_LITERAL = re.compile(r'^/(?P<pattern>.+)/$', re.DOTALL)


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING: Any = _Missing()


def resolve_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings and sequences.

    Numeric segments index into lists. Returns ``MISSING`` as soon as a
    segment cannot be followed; a present ``None`` is returned as ``None``.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality for JSON values; booleans never equal numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, (Mapping, list, tuple)) or isinstance(right, (Mapping, list, tuple)):
        return False
    return left == right


class ResponseValidator:
    """
    Validator for tool responses.

    ``validate`` is pure: it reads the response and test case, never changes
    them, and gives the same verdict for the same inputs.
    """

    def __init__(self, custom_validators: Optional[Dict[str, Callable[[Any], bool]]] = None) -> None:
        """
        Args:
            custom_validators: predicates for ``custom`` rules, looked up by the rule's ``value``
        """
        self.custom_validators: Dict[str, Callable[[Any], bool]] = dict(custom_validators or {})

    def validate(self, response: ToolResponse, test_case: TestCase) -> ValidationResult:
        """
        Validate a tool response against a test case.

        The status must match first; an expected error is satisfied by the
        status alone. Otherwise every rule is checked and all failures are kept.
        """
        expected = test_case.expected_outcome
        if response.status != expected.status:
            error = f"Expected status: {expected.status}, got: {response.status}"
            if response.error is not None:
                error += f" ({response.error.message})"
            return ValidationResult(valid=False, errors=[error])

        if expected.status == "error":
            return ValidationResult(valid=True, errors=[])

        errors = self.validate_rules(response.data, expected.validation_rules)
        return ValidationResult(valid=not errors, errors=errors)

    def validate_rules(self, data: Any, rules: List[Any]) -> List[str]:
        """Check response data against each rule in order, accumulating failure messages."""
        errors: List[str] = []
        for rule in rules:
            if isinstance(rule, CustomRule):
                error = self._check_custom(data, rule)
            elif rule.target is None or (rule.value is None and not isinstance(rule, HasPropertyRule)):
                # incomplete rule: nothing to check
                logger.debug(f"Skipping incomplete {rule.type} rule: {rule.message!r}")
                continue
            elif isinstance(rule, ContainsRule):
                error = self._check_contains(resolve_path(data, rule.target), rule)
            elif isinstance(rule, MatchesRule):
                error = self._check_matches(resolve_path(data, rule.target), rule)
            elif isinstance(rule, HasPropertyRule):
                error = self._check_has_property(data, rule)
            else:
                raise TypeError(f"Unsupported validation rule type: {type(rule).__name__}")

            if error is not None:
                errors.append(error)
        return errors

    @staticmethod
    def _failure(rule: Any, default: str) -> str:
        return rule.message or default

    def _check_contains(self, target_value: Any, rule: ContainsRule) -> Optional[str]:
        default = f"Expected {rule.target} to contain {rule.value!r}"
        if isinstance(target_value, str):
            needle = rule.value if isinstance(rule.value, str) else None
            if isinstance(rule.value, (int, float)) and not isinstance(rule.value, bool):
                needle = str(rule.value)
            if needle is not None and needle in target_value:
                return None
            return self._failure(rule, default)
        if isinstance(target_value, (list, tuple)):
            if any(deep_equal(item, rule.value) for item in target_value):
                return None
            return self._failure(rule, default)
        return self._failure(rule, f"{default}, but it is not a string or array")

    def _check_matches(self, target_value: Any, rule: MatchesRule) -> Optional[str]:
        regex = REGEX_LITERAL.match(rule.value) if isinstance(rule.value, str) else None
        if regex is None:
            if target_value is not MISSING and deep_equal(target_value, rule.value):
                return None
            return self._failure(rule, f"Expected {rule.target} to equal {rule.value!r}")

        default = f"Expected {rule.target} to match {rule.value}"
        if not isinstance(target_value, str):
            return self._failure(rule, f"{default}, but it is not a string")
        try:
            matched = re.search(regex.group("pattern"), target_value)
        except re.error as e:
            return f"{self._failure(rule, default)} (invalid regular expression: {e})"
        return None if matched else self._failure(rule, default)

    def _check_has_property(self, data: Any, rule: HasPropertyRule) -> Optional[str]:
        path = rule.target
        if isinstance(rule.value, str) and rule.value:
            path = f"{rule.target}.{rule.value}"
        if resolve_path(data, path) is MISSING:
            return self._failure(rule, f"Expected property {path} to exist")
        return None

    def _check_custom(self, data: Any, rule: CustomRule) -> Optional[str]:
        predicate = rule.predicate
        if predicate is None and isinstance(rule.value, str):
            predicate = self.custom_validators.get(rule.value)
        if predicate is None:
            logger.debug(f"Skipping custom rule without a predicate: {rule.message!r}")
            return None

        default = "Custom validation failed"
        try:
            # predicates get a copy so they cannot alter the response
            passed = predicate(copy.deepcopy(data))
        except Exception as e:
            return f"{self._failure(rule, default)} (validator raised {type(e).__name__}: {e})"
        return None if passed else self._failure(rule, default)
