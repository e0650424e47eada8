# (c) Copyright Datacraft, 2026
"""Record-level scope evaluation."""
from dataclasses import dataclass
from typing import Any, Mapping

from .expressions import evaluate_group, resolve_path, MISSING
from .models import (
	RecordScope, ScopeType, User, Condition, ConditionGroup,
	CapabilityConfigurationError,
)
from .parser import parse_filter


@dataclass(frozen=True)
class ScopeFields:
	"""Record keys consulted by the built-in scopes."""
	owner: tuple[str, ...] = ("created_by", "user_id", "owner_id")
	assignee: tuple[str, ...] = ("assigned_to", "assigned_user_id", "assigned_users")
	yard: tuple[str, ...] = ("yard_id",)
	department: tuple[str, ...] = ("department",)


DEFAULT_SCOPE_FIELDS = ScopeFields()


def _same_id(left: Any, right: Any) -> bool:
	# Identifiers arrive as int or str depending on the collaborator
	if left is None or right is None:
		return False
	return str(left) == str(right)


def _matches_any(record: Mapping, keys: tuple[str, ...], expected: Any) -> bool:
	for key in keys:
		value = resolve_path(record, key)
		if value is MISSING:
			continue
		if isinstance(value, (list, tuple, set, frozenset)):
			if any(_same_id(item, expected) for item in value):
				return True
		elif _same_id(value, expected):
			return True
	return False


def to_scope_type(value: Any) -> ScopeType:
	if isinstance(value, ScopeType):
		return value
	try:
		return ScopeType(value)
	except ValueError:
		raise CapabilityConfigurationError(f"Unknown scope type: {value!r}") from None


def compile_custom_filter(custom: str | Condition | ConditionGroup | None) -> ConditionGroup:
	"""Normalize a stored custom filter into a ConditionGroup."""
	if isinstance(custom, ConditionGroup):
		return custom
	if isinstance(custom, Condition):
		return ConditionGroup(conditions=(custom,))
	if not custom or not str(custom).strip():
		raise CapabilityConfigurationError("Custom scope requires a non-empty custom_filter")
	return parse_filter(str(custom).strip())


def scope_view(user: User, record: Mapping) -> dict[str, Any]:
	"""Record fields at top level and under `record.*`, user under `user.*`."""
	view = dict(record)
	view["record"] = record
	view["user"] = user.as_view()
	return view


def is_in_scope(
	scope: RecordScope | None,
	user: User,
	record: Mapping | None,
	fields: ScopeFields = DEFAULT_SCOPE_FIELDS,
) -> bool:
	"""
	Check whether `record` falls within `scope` for `user`.

	Record-less calls (creation, list-level checks) always pass.
	"""
	if scope is None:
		return True

	scope_type = to_scope_type(scope.type)
	if scope_type == ScopeType.CUSTOM:
		# Malformed filters are rejected even for record-less calls
		group = compile_custom_filter(scope.custom_filter)
	if record is None:
		return True

	match scope_type:
		case ScopeType.ALL:
			return True
		case ScopeType.OWN_ONLY:
			return _matches_any(record, fields.owner, user.id)
		case ScopeType.YARD_ONLY:
			if user.yard_id is None:
				return False
			return _matches_any(record, fields.yard, user.yard_id)
		case ScopeType.DEPARTMENT_ONLY:
			if user.department is None:
				return False
			return _matches_any(record, fields.department, user.department)
		case ScopeType.ASSIGNED_ONLY:
			return _matches_any(record, fields.assignee, user.id)
		case ScopeType.CUSTOM:
			return evaluate_group(group, scope_view(user, record))
	return False
