# (c) Copyright Datacraft, 2026
"""Pydantic schemas for capability authoring and the permission API."""
import ipaddress
from datetime import datetime
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .engine import AccessDecision
from .models import (
	AccessContext, Capability, User, CapabilityAction, CombineWith, ConditionOperator,
	DeviceType, FieldMode, LocationRequirement, ScopeType, is_known_module,
)
from .parser import FilterSyntaxError, parse_filter

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

ConditionValue = str | int | float | bool | list[str | int | float | bool]


class ConditionSchema(BaseModel):
	"""Schema for a single condition."""
	model_config = ConfigDict(extra="forbid")

	field: str = Field(..., min_length=1)
	operator: ConditionOperator
	value: ConditionValue = ""
	is_reference: bool = False


class ConditionGroupSchema(BaseModel):
	"""Schema for a condition group."""
	model_config = ConfigDict(extra="forbid")

	combine_with: CombineWith = CombineWith.AND
	conditions: list[ConditionSchema] = Field(default_factory=list)
	error_message: str | None = None


class RecordScopeSchema(BaseModel):
	"""Schema for a record scope rule."""
	model_config = ConfigDict(extra="forbid")

	type: ScopeType = ScopeType.ALL
	custom_filter: str | None = None

	@model_validator(mode="after")
	def check_custom_filter(self):
		if self.type != ScopeType.CUSTOM:
			return self
		if not self.custom_filter or not self.custom_filter.strip():
			raise ValueError("custom scope requires a non-empty custom_filter")
		try:
			parse_filter(self.custom_filter.strip())
		except FilterSyntaxError as e:
			raise ValueError(f"invalid custom_filter: {e}") from None
		return self


class TimeOfDaySchema(BaseModel):
	model_config = ConfigDict(extra="forbid")

	start: str = Field(..., pattern=HHMM_PATTERN)
	end: str = Field(..., pattern=HHMM_PATTERN)


class TimeRestrictionsSchema(BaseModel):
	"""Schema for time-based restrictions."""
	model_config = ConfigDict(extra="forbid")

	valid_from: datetime | None = None
	valid_until: datetime | None = None
	days_of_week: list[Annotated[int, Field(ge=0, le=6)]] = Field(default_factory=list)
	time_of_day: TimeOfDaySchema | None = None
	timezone: str | None = None

	@field_validator("timezone")
	@classmethod
	def check_timezone(cls, value: str | None) -> str | None:
		if value is None:
			return value
		try:
			ZoneInfo(value)
		except (ZoneInfoNotFoundError, ValueError):
			raise ValueError(f"unknown timezone {value!r}") from None
		return value

	@model_validator(mode="after")
	def check_window(self):
		if self.valid_from and self.valid_until:
			start, end = self.valid_from, self.valid_until
			# Only compare like with like; naive and aware bounds are both accepted
			if (start.tzinfo is None) == (end.tzinfo is None) and start > end:
				raise ValueError("valid_from must not be after valid_until")
		return self


class ContextRestrictionsSchema(BaseModel):
	"""Schema for contextual restrictions."""
	model_config = ConfigDict(extra="forbid")

	require_mfa: bool = False
	require_approval: bool = False
	approval_from_role: list[str] = Field(default_factory=list)
	require_reason: bool = False
	ip_whitelist: list[str] = Field(default_factory=list)
	device_types: list[DeviceType] = Field(default_factory=list)
	location_required: LocationRequirement | None = None
	dual_control: bool = False

	@field_validator("ip_whitelist")
	@classmethod
	def check_ip_whitelist(cls, value: list[str]) -> list[str]:
		for entry in value:
			try:
				ipaddress.ip_network(entry.strip(), strict=False)
			except ValueError:
				raise ValueError(f"invalid IP or CIDR entry {entry!r}") from None
		return value


class FieldPermissionSchema(BaseModel):
	model_config = ConfigDict(extra="forbid")

	module: str
	action: Literal["read", "update"]
	mode: FieldMode
	fields: list[str] = Field(default_factory=list)

	@field_validator("module")
	@classmethod
	def check_module(cls, value: str) -> str:
		if not is_known_module(value):
			raise ValueError(f"unknown module {value!r}")
		return value


class CapabilitySchema(BaseModel):
	"""Schema for authoring a capability."""
	model_config = ConfigDict(extra="forbid")

	module: str
	action: CapabilityAction
	scope: RecordScopeSchema | None = None
	time_restrictions: TimeRestrictionsSchema | None = None
	conditions: ConditionGroupSchema | None = None
	context_restrictions: ContextRestrictionsSchema | None = None
	field_permissions: list[FieldPermissionSchema] = Field(default_factory=list)
	reason: str | None = None
	granted_by: str | None = None
	granted_at: datetime | None = None
	expires_at: datetime | None = None

	@field_validator("module")
	@classmethod
	def check_module(cls, value: str) -> str:
		if not is_known_module(value):
			raise ValueError(f"unknown module {value!r}")
		return value

	def to_capability(self) -> Capability:
		return Capability.from_dict(self.model_dump(mode="json"))


class UserSchema(BaseModel):
	model_config = ConfigDict(extra="forbid")

	id: str | int
	role: str | None = None
	department: str | None = None
	yard_id: str | int | None = None
	capabilities: list[CapabilitySchema] = Field(default_factory=list)
	attributes: dict[str, Any] = Field(default_factory=dict)

	def to_user(self) -> User:
		return User(
			id=str(self.id),
			role=self.role,
			department=self.department,
			yard_id=str(self.yard_id) if self.yard_id is not None else None,
			capabilities=tuple(c.to_capability() for c in self.capabilities),
			attributes=self.attributes,
		)


class AccessContextSchema(BaseModel):
	model_config = ConfigDict(extra="forbid")

	now: datetime | None = None
	mfa_satisfied: bool = False
	approval_obtained: bool = False
	approver_role: str | None = None
	reason_provided: str | None = None
	client_ip: str | None = None
	device_type: DeviceType | None = None
	location: Literal["on_site", "remote"] | None = None
	co_signer_id: str | None = None
	enforce_granular: bool = False

	def to_context(self, record: dict | None = None) -> AccessContext:
		return AccessContext(
			now=self.now,
			record=record,
			mfa_satisfied=self.mfa_satisfied,
			approval_obtained=self.approval_obtained,
			approver_role=self.approver_role,
			reason_provided=self.reason_provided,
			client_ip=self.client_ip,
			device_type=self.device_type.value if self.device_type else None,
			location=self.location,
			co_signer_id=self.co_signer_id,
			enforce_granular=self.enforce_granular,
		)


class CheckRequest(BaseModel):
	"""Schema for a permission check request."""
	model_config = ConfigDict(extra="forbid")

	user: UserSchema
	module: str
	action: CapabilityAction
	context: AccessContextSchema = Field(default_factory=AccessContextSchema)
	record: dict[str, Any] | None = None


class PermissionKey(BaseModel):
	model_config = ConfigDict(extra="forbid")

	module: str
	action: CapabilityAction


class BulkCheckRequest(BaseModel):
	"""Schema for a bulk permission check request."""
	model_config = ConfigDict(extra="forbid")

	user: UserSchema
	checks: list[PermissionKey] = Field(..., min_length=1)
	context: AccessContextSchema = Field(default_factory=AccessContextSchema)
	record: dict[str, Any] | None = None


class FieldMaskSchema(BaseModel):
	kind: str
	fields: list[str]


class CheckResponse(BaseModel):
	"""Schema for a permission check response."""
	allowed: bool
	field_mask: FieldMaskSchema
	rejection_reason: str | None = None
	rejection_code: str | None = None
	failed_conditions: list[str] = Field(default_factory=list)
	requires_approval: bool = False
	approval_from: list[str] = Field(default_factory=list)

	@classmethod
	def from_decision(cls, decision: AccessDecision) -> "CheckResponse":
		return cls.model_validate(decision.to_dict())


class BulkCheckResponse(BaseModel):
	results: dict[str, CheckResponse]


class ValidationIssue(BaseModel):
	loc: list[str | int]
	msg: str


class CapabilityValidationResponse(BaseModel):
	valid: bool
	capability: dict[str, Any] | None = None
	errors: list[ValidationIssue] = Field(default_factory=list)


class FilterValidationRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	custom_filter: str = Field(..., min_length=1)


class FilterValidationResponse(BaseModel):
	valid: bool
	combine_with: str | None = None
	condition_count: int = 0
	dsl: str | None = None
	error: str | None = None
