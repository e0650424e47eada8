# (c) Copyright Datacraft, 2026
"""Capability domain models for fine-grained authorization."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class CapabilityModule(str, Enum):
	"""Business modules a capability can target."""
	GATE_PASS = "gate_pass"
	INSPECTION = "inspection"
	EXPENSE = "expense"
	USER_MANAGEMENT = "user_management"
	REPORTS = "reports"
	STOCKYARD = "stockyard"


class CapabilityAction(str, Enum):
	"""Actions that can be granted on a module."""
	CREATE = "create"
	READ = "read"
	UPDATE = "update"
	DELETE = "delete"
	APPROVE = "approve"
	VALIDATE = "validate"
	REVIEW = "review"
	REASSIGN = "reassign"
	EXPORT = "export"


class ScopeType(str, Enum):
	"""Which records a capability applies to."""
	ALL = "all"
	OWN_ONLY = "own_only"
	YARD_ONLY = "yard_only"
	DEPARTMENT_ONLY = "department_only"
	ASSIGNED_ONLY = "assigned_only"
	CUSTOM = "custom"


class ConditionOperator(str, Enum):
	"""Operators for capability conditions."""
	EQUALS = "=="
	NOT_EQUALS = "!="
	GREATER_THAN = ">"
	LESS_THAN = "<"
	GREATER_THAN_OR_EQUAL = ">="
	LESS_THAN_OR_EQUAL = "<="
	IN = "in"
	NOT_IN = "not_in"
	CONTAINS = "contains"
	STARTS_WITH = "starts_with"


class CombineWith(str, Enum):
	AND = "AND"
	OR = "OR"


class FieldMode(str, Enum):
	WHITELIST = "whitelist"
	BLACKLIST = "blacklist"


class DeviceType(str, Enum):
	MOBILE = "mobile"
	DESKTOP = "desktop"
	TABLET = "tablet"


class LocationRequirement(str, Enum):
	ON_SITE = "on_site"
	REMOTE = "remote"
	ANY = "any"


# Table-driven registries; new names are a data change, see register_module().
MODULE_REGISTRY: dict[str, CapabilityModule | str] = {m.value: m for m in CapabilityModule}
ACTION_REGISTRY: dict[str, CapabilityAction] = {a.value: a for a in CapabilityAction}
FIELD_ACTIONS = frozenset({CapabilityAction.READ.value, CapabilityAction.UPDATE.value})


def register_module(name: str) -> None:
	"""Register an additional module name (e.g. from configuration)."""
	MODULE_REGISTRY.setdefault(name, name)


def is_known_module(name: str) -> bool:
	return name in MODULE_REGISTRY


def is_known_action(name: str) -> bool:
	return name in ACTION_REGISTRY


def name_of(value: Any) -> str:
	"""Plain string form of an enum member or raw name."""
	if isinstance(value, Enum):
		return str(value.value)
	return str(value)


def parse_datetime(value: Any) -> datetime | None:
	if value is None or value == "":
		return None
	if isinstance(value, datetime):
		return value
	return datetime.fromisoformat(str(value))


def _enum_or_raw(enum_cls: type[Enum], value: Any) -> Any:
	# Unknown names are kept raw so the evaluator can reject the candidate
	# instead of failing the whole capability list on load.
	try:
		return enum_cls(value)
	except ValueError:
		return value


@dataclass(frozen=True)
class Condition:
	"""Single `field operator value` check against a record."""
	field: str
	operator: ConditionOperator | str
	value: Any = ""
	# When set, `value` is a dotted path resolved in the same record view.
	is_reference: bool = False

	def to_dict(self) -> dict:
		data = {
			"field": self.field,
			"operator": name_of(self.operator),
			"value": self.value,
		}
		if self.is_reference:
			data["is_reference"] = True
		return data

	@classmethod
	def from_dict(cls, data: Mapping) -> "Condition":
		value = data.get("value", "")
		return cls(
			field=data["field"],
			operator=_enum_or_raw(ConditionOperator, data["operator"]),
			value=tuple(value) if isinstance(value, list) else value,
			is_reference=bool(data.get("is_reference", False)),
		)


@dataclass(frozen=True)
class ConditionGroup:
	"""Conditions combined with AND/OR."""
	conditions: tuple[Condition, ...] = ()
	combine_with: CombineWith | str = CombineWith.AND
	error_message: str | None = None

	def to_dict(self) -> dict:
		return {
			"combine_with": name_of(self.combine_with),
			"conditions": [c.to_dict() for c in self.conditions],
			"error_message": self.error_message,
		}

	@classmethod
	def from_dict(cls, data: Mapping) -> "ConditionGroup":
		return cls(
			conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
			combine_with=_enum_or_raw(CombineWith, str(data.get("combine_with", "AND")).upper()),
			error_message=data.get("error_message"),
		)


@dataclass(frozen=True)
class RecordScope:
	"""Record-level scope rule."""
	type: ScopeType | str = ScopeType.ALL
	# Filter DSL text, or an already structured condition / group.
	custom_filter: str | Condition | ConditionGroup | None = None

	def to_dict(self) -> dict:
		custom = self.custom_filter
		if isinstance(custom, (Condition, ConditionGroup)):
			custom = custom.to_dict()
		return {"type": name_of(self.type), "custom_filter": custom}

	@classmethod
	def from_dict(cls, data: Mapping) -> "RecordScope":
		custom = data.get("custom_filter")
		if isinstance(custom, Mapping):
			custom = ConditionGroup.from_dict(custom) if "conditions" in custom else Condition.from_dict(custom)
		return cls(type=_enum_or_raw(ScopeType, data.get("type", "all")), custom_filter=custom)


@dataclass(frozen=True)
class TimeOfDay:
	"""Wall-clock window in HH:MM; end before start wraps midnight."""
	start: str
	end: str


@dataclass(frozen=True)
class TimeRestrictions:
	valid_from: datetime | None = None
	valid_until: datetime | None = None
	days_of_week: frozenset[int] = frozenset()
	time_of_day: TimeOfDay | None = None
	timezone: str | None = None

	def to_dict(self) -> dict:
		return {
			"valid_from": self.valid_from.isoformat() if self.valid_from else None,
			"valid_until": self.valid_until.isoformat() if self.valid_until else None,
			"days_of_week": sorted(self.days_of_week),
			"time_of_day": (
				{"start": self.time_of_day.start, "end": self.time_of_day.end}
				if self.time_of_day else None
			),
			"timezone": self.timezone,
		}

	@classmethod
	def from_dict(cls, data: Mapping) -> "TimeRestrictions":
		tod = data.get("time_of_day")
		return cls(
			valid_from=parse_datetime(data.get("valid_from")),
			valid_until=parse_datetime(data.get("valid_until")),
			days_of_week=frozenset(data.get("days_of_week") or ()),
			time_of_day=TimeOfDay(start=tod["start"], end=tod["end"]) if tod else None,
			timezone=data.get("timezone"),
		)


@dataclass(frozen=True)
class ContextRestrictions:
	"""Request-time trust requirements."""
	require_mfa: bool = False
	require_approval: bool = False
	approval_from_role: tuple[str, ...] = ()
	require_reason: bool = False
	ip_whitelist: tuple[str, ...] = ()
	device_types: frozenset[str] = frozenset()
	location_required: LocationRequirement | str | None = None
	dual_control: bool = False

	def to_dict(self) -> dict:
		return {
			"require_mfa": self.require_mfa,
			"require_approval": self.require_approval,
			"approval_from_role": list(self.approval_from_role),
			"require_reason": self.require_reason,
			"ip_whitelist": list(self.ip_whitelist),
			"device_types": sorted(name_of(d) for d in self.device_types),
			"location_required": name_of(self.location_required) if self.location_required else None,
			"dual_control": self.dual_control,
		}

	@classmethod
	def from_dict(cls, data: Mapping) -> "ContextRestrictions":
		location = data.get("location_required")
		return cls(
			require_mfa=bool(data.get("require_mfa", False)),
			require_approval=bool(data.get("require_approval", False)),
			approval_from_role=tuple(data.get("approval_from_role") or ()),
			require_reason=bool(data.get("require_reason", False)),
			ip_whitelist=tuple(data.get("ip_whitelist") or ()),
			device_types=frozenset(name_of(d) for d in data.get("device_types") or ()),
			location_required=_enum_or_raw(LocationRequirement, location) if location else None,
			dual_control=bool(data.get("dual_control", False)),
		)


@dataclass(frozen=True)
class FieldPermission:
	"""Whitelist/blacklist of fields for one (module, action) pair."""
	module: str
	action: str
	mode: FieldMode | str
	fields: tuple[str, ...] = ()

	def __post_init__(self):
		object.__setattr__(self, "module", name_of(self.module))
		object.__setattr__(self, "action", name_of(self.action))

	def to_dict(self) -> dict:
		return {
			"module": self.module,
			"action": self.action,
			"mode": name_of(self.mode),
			"fields": list(self.fields),
		}

	@classmethod
	def from_dict(cls, data: Mapping) -> "FieldPermission":
		return cls(
			module=data["module"],
			action=data["action"],
			mode=_enum_or_raw(FieldMode, data["mode"]),
			fields=tuple(data.get("fields") or ()),
		)


@dataclass(frozen=True)
class Capability:
	"""
	A single grant of `action` on `module`.

	Every restriction layer is optional; a capability carrying none of them
	grants the action on any record, at any time, in any context.
	"""
	module: str
	action: str
	scope: RecordScope | None = None
	time_restrictions: TimeRestrictions | None = None
	conditions: ConditionGroup | None = None
	context_restrictions: ContextRestrictions | None = None
	field_permissions: tuple[FieldPermission, ...] = ()
	# Audit metadata, never consulted during evaluation
	reason: str | None = None
	granted_by: str | None = None
	granted_at: datetime | None = None
	expires_at: datetime | None = None

	def __post_init__(self):
		object.__setattr__(self, "module", name_of(self.module))
		object.__setattr__(self, "action", name_of(self.action))

	@property
	def key(self) -> str:
		return f"{self.module}.{self.action}"

	@property
	def is_unrestricted(self) -> bool:
		return (
			(self.scope is None or self.scope.type == ScopeType.ALL)
			and self.time_restrictions is None
			and self.conditions is None
			and self.context_restrictions is None
			and self.expires_at is None
		)

	def to_dict(self) -> dict:
		return {
			"module": self.module,
			"action": self.action,
			"scope": self.scope.to_dict() if self.scope else None,
			"time_restrictions": self.time_restrictions.to_dict() if self.time_restrictions else None,
			"conditions": self.conditions.to_dict() if self.conditions else None,
			"context_restrictions": self.context_restrictions.to_dict() if self.context_restrictions else None,
			"field_permissions": [fp.to_dict() for fp in self.field_permissions],
			"reason": self.reason,
			"granted_by": self.granted_by,
			"granted_at": self.granted_at.isoformat() if self.granted_at else None,
			"expires_at": self.expires_at.isoformat() if self.expires_at else None,
		}

	@classmethod
	def from_dict(cls, data: Mapping) -> "Capability":
		return cls(
			module=data["module"],
			action=data["action"],
			scope=RecordScope.from_dict(data["scope"]) if data.get("scope") else None,
			time_restrictions=(
				TimeRestrictions.from_dict(data["time_restrictions"])
				if data.get("time_restrictions") else None
			),
			conditions=ConditionGroup.from_dict(data["conditions"]) if data.get("conditions") else None,
			context_restrictions=(
				ContextRestrictions.from_dict(data["context_restrictions"])
				if data.get("context_restrictions") else None
			),
			field_permissions=tuple(
				FieldPermission.from_dict(fp) for fp in data.get("field_permissions") or ()
			),
			reason=data.get("reason"),
			granted_by=str(data["granted_by"]) if data.get("granted_by") is not None else None,
			granted_at=parse_datetime(data.get("granted_at")),
			expires_at=parse_datetime(data.get("expires_at")),
		)


@dataclass(frozen=True)
class User:
	"""The authenticated principal, as supplied by the identity provider."""
	id: str
	role: str | None = None
	department: str | None = None
	yard_id: str | None = None
	capabilities: tuple[Capability, ...] = ()
	attributes: Mapping[str, Any] = field(default_factory=dict)

	def as_view(self) -> dict[str, Any]:
		"""Flat mapping exposed as `user.*` to custom scope expressions."""
		view = dict(self.attributes)
		view.update({
			"id": self.id,
			"role": self.role,
			"department": self.department,
			"yard_id": self.yard_id,
		})
		return view


@dataclass(frozen=True)
class AccessContext:
	"""Per-request trust signals. `now` is captured once by the caller."""
	now: datetime | None = None
	record: Mapping[str, Any] | None = None
	mfa_satisfied: bool = False
	approval_obtained: bool = False
	approver_role: str | None = None
	reason_provided: str | None = None
	client_ip: str | None = None
	device_type: str | None = None
	location: str | None = None
	co_signer_id: str | None = None
	# Apply capability checks even to bypass roles
	enforce_granular: bool = False


class CapabilityConfigurationError(Exception):
	"""Raised when a capability is malformed and cannot be evaluated."""


class CapabilityResolutionError(Exception):
	"""Raised when evaluation inputs indicate a broken integration."""
