# (c) Copyright Datacraft, 2026
"""
Condition evaluation against records.

Condition values are authored as free text. They are parsed into a tagged
`Literal` (string, number, bool or list) at evaluation time so that every
operator has one well-defined meaning:

- Equality compares numerically when both sides parse as finite numbers,
  as booleans when the literal is `true`/`false` and the field is boolean,
  and on string forms otherwise. Booleans stringify as `true`/`false`.
- Ordering operators compare numerically when both sides are numbers and
  fall back to lexicographic comparison of the string forms otherwise.
- `in` / `not_in` split the value on commas.
- `contains` / `starts_with` are case-sensitive on the string form.

A missing field (or a `None` value) makes a condition false, except for
`!=` and `not_in`, which absence satisfies.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from .models import (
	Condition, ConditionGroup, ConditionOperator, CombineWith,
	CapabilityConfigurationError, name_of,
)

logger = logging.getLogger(__name__)

MISSING: Any = object()

_ABSENCE_SATISFIES = frozenset({ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_IN})


class LiteralKind(str, Enum):
	STRING = "string"
	NUMBER = "number"
	BOOL = "bool"
	LIST = "list"


@dataclass(frozen=True)
class Literal:
	"""Typed form of a condition value."""
	kind: LiteralKind
	value: Any
	text: str

	@classmethod
	def parse(cls, raw: Any) -> "Literal":
		if isinstance(raw, bool):
			return cls(LiteralKind.BOOL, raw, as_text(raw))
		if isinstance(raw, (list, tuple, set, frozenset)):
			items = tuple(cls.parse(item) for item in raw)
			return cls(LiteralKind.LIST, items, ",".join(i.text for i in items))
		number = to_number(raw)
		if number is not None:
			return cls(LiteralKind.NUMBER, number, as_text(raw).strip())
		text = as_text(raw)
		if text.strip().lower() in ("true", "false"):
			return cls(LiteralKind.BOOL, text.strip().lower() == "true", text.strip().lower())
		return cls(LiteralKind.STRING, text, text)

	@classmethod
	def parse_list(cls, raw: Any) -> "Literal":
		if isinstance(raw, (list, tuple, set, frozenset)):
			return cls.parse(raw)
		parts = [part.strip() for part in as_text(raw).split(",")]
		return cls.parse([part for part in parts if part])


def to_number(value: Any) -> Decimal | None:
	"""Finite decimal form of `value`, or None when it is not numeric."""
	if isinstance(value, bool) or value is None:
		return None
	if isinstance(value, (int, float, Decimal)):
		text = str(value)
	elif isinstance(value, str):
		text = value.strip()
	else:
		return None
	try:
		number = Decimal(text)
	except InvalidOperation:
		return None
	return number if number.is_finite() else None


def as_text(value: Any) -> str:
	if isinstance(value, bool):
		return "true" if value else "false"
	return str(value)


def _as_bool(value: Any) -> bool | None:
	if isinstance(value, bool):
		return value
	if isinstance(value, str) and value.strip().lower() in ("true", "false"):
		return value.strip().lower() == "true"
	return None


def resolve_path(record: Any, path: str) -> Any:
	"""
	Look up a dotted path in a record.

	A flat key containing dots wins over nested traversal. Returns MISSING
	when any segment is absent or the final value is None.
	"""
	if record is None or not path:
		return MISSING
	if isinstance(record, Mapping) and path in record:
		value = record[path]
		return MISSING if value is None else value

	current = record
	for part in path.split("."):
		if isinstance(current, Mapping):
			if part not in current:
				return MISSING
			current = current[part]
		elif isinstance(current, (list, tuple)) and part.isdigit():
			index = int(part)
			if index >= len(current):
				return MISSING
			current = current[index]
		elif not part.startswith("_") and hasattr(current, part):
			current = getattr(current, part)
			# Methods are not record data
			if callable(current):
				return MISSING
		else:
			return MISSING
		if current is None:
			return MISSING
	return current


def to_operator(value: Any) -> ConditionOperator:
	if isinstance(value, ConditionOperator):
		return value
	try:
		return ConditionOperator(value)
	except ValueError:
		raise CapabilityConfigurationError(f"Unknown condition operator: {value!r}") from None


def to_combinator(value: Any) -> CombineWith:
	if isinstance(value, CombineWith):
		return value
	try:
		return CombineWith(str(value).upper())
	except ValueError:
		raise CapabilityConfigurationError(f"Unknown condition combinator: {value!r}") from None


def _equals(actual: Any, expected: Literal) -> bool:
	if expected.kind == LiteralKind.BOOL:
		actual_bool = _as_bool(actual)
		if actual_bool is not None:
			return actual_bool == expected.value
	if expected.kind == LiteralKind.NUMBER:
		actual_number = to_number(actual)
		if actual_number is not None:
			return actual_number == expected.value
	return as_text(actual) == expected.text


def _order(actual: Any, expected: Literal) -> int:
	"""Three-way comparison: numeric if both sides are numbers, else lexicographic."""
	left: Any = to_number(actual)
	right: Any = expected.value if expected.kind == LiteralKind.NUMBER else None
	if left is None or right is None:
		left, right = as_text(actual), expected.text
	return (left > right) - (left < right)


def _expected(condition: Condition, record: Any, operator: ConditionOperator) -> Literal | Any:
	raw = condition.value
	if condition.is_reference:
		raw = resolve_path(record, str(condition.value))
		if raw is MISSING:
			return MISSING
	if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
		return Literal.parse_list(raw)
	return Literal.parse(raw)


def evaluate_condition(condition: Condition, record: Any) -> bool:
	"""Evaluate one condition; raises CapabilityConfigurationError on unknown operators."""
	operator = to_operator(condition.operator)
	actual = resolve_path(record, condition.field)
	if actual is MISSING:
		return operator in _ABSENCE_SATISFIES

	expected = _expected(condition, record, operator)
	if expected is MISSING:
		return operator in _ABSENCE_SATISFIES

	match operator:
		case ConditionOperator.EQUALS:
			return _equals(actual, expected)
		case ConditionOperator.NOT_EQUALS:
			return not _equals(actual, expected)
		case ConditionOperator.GREATER_THAN:
			return _order(actual, expected) > 0
		case ConditionOperator.LESS_THAN:
			return _order(actual, expected) < 0
		case ConditionOperator.GREATER_THAN_OR_EQUAL:
			return _order(actual, expected) >= 0
		case ConditionOperator.LESS_THAN_OR_EQUAL:
			return _order(actual, expected) <= 0
		case ConditionOperator.IN:
			return any(_equals(actual, item) for item in expected.value)
		case ConditionOperator.NOT_IN:
			return not any(_equals(actual, item) for item in expected.value)
		case ConditionOperator.CONTAINS:
			return expected.text in as_text(actual)
		case ConditionOperator.STARTS_WITH:
			return as_text(actual).startswith(expected.text)
	return False


def evaluate_group(group: ConditionGroup, record: Any) -> bool:
	"""AND of nothing is true; OR of nothing is false."""
	combinator = to_combinator(group.combine_with)
	results = (evaluate_condition(c, record) for c in group.conditions)
	if combinator == CombineWith.AND:
		return all(results)
	return any(results)


def describe(condition: Condition) -> str:
	return f"{condition.field} {name_of(condition.operator)} {condition.value}"


def failed_conditions(group: ConditionGroup, record: Any) -> list[str]:
	"""Human-readable list of the conditions in `group` that do not hold."""
	return [describe(c) for c in group.conditions if not evaluate_condition(c, record)]
