# (c) Copyright Datacraft, 2026
"""
Capability resolution engine.

Evaluation strategy:
1. Keep the capabilities granting the requested (module, action)
2. Run each candidate through expiry, temporal, scope, condition and
   context gates, in that order
3. ALLOW when at least one candidate passes every gate; the field mask
   is merged from those effective capabilities only
4. Otherwise DENY with the rejection of the candidate that got furthest
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from .context import ContextFailure, satisfies_context
from .expressions import evaluate_group, failed_conditions, to_combinator, to_operator
from .field_mask import FieldMask, resolve_field_mask
from .models import (
	AccessContext, Capability, User, FieldMode, ScopeType, FIELD_ACTIONS,
	CapabilityConfigurationError, CapabilityResolutionError, name_of,
)
from .scope import ScopeFields, DEFAULT_SCOPE_FIELDS, compile_custom_filter, is_in_scope, to_scope_type
from .temporal import check_time_restrictions, is_expired, parse_hhmm

logger = logging.getLogger(__name__)


class CandidateState(str, Enum):
	"""Progress of one capability through the gates."""
	CANDIDATE = "candidate"
	TEMPORAL_CHECKED = "temporal_checked"
	SCOPE_CHECKED = "scope_checked"
	CONDITION_CHECKED = "condition_checked"
	CONTEXT_CHECKED = "context_checked"
	EFFECTIVE = "effective"
	REJECTED = "rejected"


_PROGRESS = [
	CandidateState.CANDIDATE,
	CandidateState.TEMPORAL_CHECKED,
	CandidateState.SCOPE_CHECKED,
	CandidateState.CONDITION_CHECKED,
	CandidateState.CONTEXT_CHECKED,
]


class RejectionCode(str, Enum):
	NO_GRANT = "no_grant"
	EXPIRED = "expired"
	OUTSIDE_TIME_WINDOW = "outside_time_window"
	OUT_OF_SCOPE = "out_of_scope"
	CONDITION_FAILED = "condition_failed"
	CONTEXT_RESTRICTED = "context_restricted"
	MALFORMED = "malformed_capability"


@dataclass(frozen=True)
class Rejection:
	code: RejectionCode
	message: str
	# Last state the candidate reached before being rejected
	reached: CandidateState = CandidateState.CANDIDATE
	failed_conditions: tuple[str, ...] = ()
	context_failure: ContextFailure | None = None

	@property
	def progress(self) -> int:
		return _PROGRESS.index(self.reached)


@dataclass(frozen=True)
class CandidateTrace:
	capability: Capability
	state: CandidateState
	rejection: Rejection | None = None


@dataclass(frozen=True)
class AccessDecision:
	"""Result of evaluating one (module, action) request."""
	allowed: bool
	field_mask: FieldMask = field(default_factory=FieldMask.all_fields)
	rejection_reason: str | None = None
	rejection_code: RejectionCode | None = None
	failed_conditions: tuple[str, ...] = ()
	requires_approval: bool = False
	approval_from: tuple[str, ...] = ()
	effective_capabilities: tuple[Capability, ...] = ()
	trace: tuple[CandidateTrace, ...] = ()

	def __bool__(self) -> bool:
		return self.allowed

	def to_dict(self) -> dict:
		return {
			"allowed": self.allowed,
			"field_mask": self.field_mask.to_dict(),
			"rejection_reason": self.rejection_reason,
			"rejection_code": self.rejection_code.value if self.rejection_code else None,
			"failed_conditions": list(self.failed_conditions),
			"requires_approval": self.requires_approval,
			"approval_from": list(self.approval_from),
		}


def _require_text(value: Any, what: str) -> None:
	if not isinstance(value, str) or not value:
		raise CapabilityConfigurationError(f"Invalid {what}: {value!r}")


def check_well_formed(capability: Capability) -> None:
	"""Raise CapabilityConfigurationError for structurally invalid capabilities."""
	if capability.scope is not None:
		if to_scope_type(capability.scope.type) == ScopeType.CUSTOM:
			compile_custom_filter(capability.scope.custom_filter)
	if capability.conditions is not None:
		to_combinator(capability.conditions.combine_with)
		for condition in capability.conditions.conditions:
			to_operator(condition.operator)
			_require_text(condition.field, "condition field")
			if condition.is_reference:
				_require_text(condition.value, "condition reference")

	restrictions = capability.time_restrictions
	if restrictions is not None:
		for bound in (restrictions.valid_from, restrictions.valid_until):
			if bound is not None and not isinstance(bound, datetime):
				raise CapabilityConfigurationError(f"Invalid validity bound: {bound!r}")
		if restrictions.timezone is not None:
			_require_text(restrictions.timezone, "timezone")
		if restrictions.time_of_day is not None:
			_require_text(restrictions.time_of_day.start, "time_of_day start")
			_require_text(restrictions.time_of_day.end, "time_of_day end")
			parse_hhmm(restrictions.time_of_day.start)
			parse_hhmm(restrictions.time_of_day.end)

	if capability.expires_at is not None and not isinstance(capability.expires_at, datetime):
		raise CapabilityConfigurationError(f"Invalid expires_at: {capability.expires_at!r}")

	context = capability.context_restrictions
	if context is not None:
		for entry in context.ip_whitelist:
			_require_text(entry, "ip_whitelist entry")
		for role in context.approval_from_role:
			_require_text(role, "approval_from_role entry")

	for rule in capability.field_permissions:
		if name_of(rule.mode) not in (FieldMode.WHITELIST.value, FieldMode.BLACKLIST.value):
			raise CapabilityConfigurationError(f"Unknown field permission mode: {name_of(rule.mode)!r}")
		if rule.action not in FIELD_ACTIONS:
			raise CapabilityConfigurationError(f"Field permissions apply to read/update, not {rule.action!r}")


def _record_view(record: Any) -> Mapping | None:
	if record is None or isinstance(record, Mapping):
		return record
	if dataclasses.is_dataclass(record) and not isinstance(record, type):
		return dataclasses.asdict(record)
	if hasattr(record, "__dict__"):
		return vars(record)
	raise CapabilityResolutionError(f"Unsupported record type: {type(record).__name__}")


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class CapabilityResolver:
	"""
	Pure decision function over a capability list.

	Holds only immutable configuration, so one instance can be shared by
	concurrent request handlers.
	"""

	def __init__(
		self,
		default_timezone: str | None = None,
		bypass_roles: Iterable[str] = (),
		scope_fields: ScopeFields = DEFAULT_SCOPE_FIELDS,
		clock: Callable[[], datetime] = _utcnow,
	):
		self.default_timezone = default_timezone
		self.bypass_roles = frozenset(bypass_roles)
		self.scope_fields = scope_fields
		self._clock = clock

	@classmethod
	def from_settings(cls, settings) -> "CapabilityResolver":
		return cls(
			default_timezone=settings.default_timezone,
			bypass_roles=settings.bypass_roles,
			scope_fields=ScopeFields(
				owner=tuple(settings.owner_fields),
				assignee=tuple(settings.assignee_fields),
			),
		)

	def evaluate(
		self,
		capabilities: Sequence[Capability] | None,
		module: str,
		action: str,
		context: AccessContext | None = None,
		*,
		user: User,
		record: Mapping | None = None,
	) -> AccessDecision:
		"""
		Decide whether `user` may perform `action` on `module`.

		`record` defaults to `context.record`; without one, scope and
		condition gates are skipped (record-less checks such as create).
		"""
		if capabilities is None:
			raise CapabilityResolutionError("Capability list is missing")
		context = context or AccessContext()
		now = context.now or self._clock()
		record = _record_view(record if record is not None else context.record)
		module, action = name_of(module), name_of(action)

		if user.role in self.bypass_roles and not context.enforce_granular:
			logger.debug(f"Role bypass for {user.role} on {module}.{action}")
			return AccessDecision(allowed=True)

		candidates = [c for c in capabilities if c.module == module and c.action == action]
		if not candidates:
			return AccessDecision(
				allowed=False,
				rejection_reason=f"No grant for {module}.{action}",
				rejection_code=RejectionCode.NO_GRANT,
			)

		trace = tuple(self._evaluate_candidate(c, user, context, record, now) for c in candidates)
		effective = tuple(t.capability for t in trace if t.state == CandidateState.EFFECTIVE)

		if effective:
			logger.debug(f"Allowed {module}.{action} for user {user.id} by {len(effective)} capabilities")
			return AccessDecision(
				allowed=True,
				field_mask=resolve_field_mask(effective, module, action),
				effective_capabilities=effective,
				trace=trace,
			)

		best: Rejection | None = None
		for item in trace:
			if best is None or item.rejection.progress > best.progress:
				best = item.rejection
		logger.debug(f"Denied {module}.{action} for user {user.id}: {best.message}")
		failure = best.context_failure
		return AccessDecision(
			allowed=False,
			rejection_reason=best.message,
			rejection_code=best.code,
			failed_conditions=best.failed_conditions,
			requires_approval=bool(failure and failure.requires_approval),
			approval_from=failure.approval_from if failure else (),
			trace=trace,
		)

	def _evaluate_candidate(
		self,
		capability: Capability,
		user: User,
		context: AccessContext,
		record: Mapping | None,
		now: datetime,
	) -> CandidateTrace:
		state = CandidateState.CANDIDATE

		def reject(code: RejectionCode, message: str, **kwargs) -> CandidateTrace:
			return CandidateTrace(
				capability=capability,
				state=CandidateState.REJECTED,
				rejection=Rejection(code=code, message=message, reached=state, **kwargs),
			)

		try:
			check_well_formed(capability)

			if is_expired(capability.expires_at, now):
				return reject(
					RejectionCode.EXPIRED,
					"Permission has expired",
					failed_conditions=(f"Expired on {capability.expires_at.isoformat()}",),
				)

			reasons = check_time_restrictions(capability.time_restrictions, now, self.default_timezone)
			if reasons:
				return reject(
					RejectionCode.OUTSIDE_TIME_WINDOW,
					"Access not allowed at this time",
					failed_conditions=tuple(reasons),
				)
			state = CandidateState.TEMPORAL_CHECKED

			if not is_in_scope(capability.scope, user, record, self.scope_fields):
				scope_type = name_of(capability.scope.type)
				return reject(
					RejectionCode.OUT_OF_SCOPE,
					f"Access denied by record scope rules ({scope_type})",
					failed_conditions=(f"Scope: {scope_type}",),
				)
			state = CandidateState.SCOPE_CHECKED

			group = capability.conditions
			if group is not None and record is not None and not evaluate_group(group, record):
				return reject(
					RejectionCode.CONDITION_FAILED,
					group.error_message or "Conditions not met",
					failed_conditions=tuple(failed_conditions(group, record)),
				)
			state = CandidateState.CONDITION_CHECKED

			check = satisfies_context(capability.context_restrictions, context)
			if not check.satisfied:
				return reject(
					RejectionCode.CONTEXT_RESTRICTED,
					check.failure.message,
					context_failure=check.failure,
				)
			state = CandidateState.CONTEXT_CHECKED
		except (CapabilityConfigurationError, TypeError, ValueError, AttributeError) as e:
			# Stored data of the wrong shape rejects this candidate only
			logger.warning(f"Rejecting malformed capability {capability.key}: {e}")
			return reject(RejectionCode.MALFORMED, f"Malformed capability {capability.key}: {e}")

		return CandidateTrace(capability=capability, state=CandidateState.EFFECTIVE)

	def evaluate_many(
		self,
		user: User,
		checks: Iterable[tuple[str, str]],
		context: AccessContext | None = None,
		record: Mapping | None = None,
	) -> dict[str, AccessDecision]:
		"""Batch evaluation keyed by "module.action"."""
		context = context or AccessContext()
		if context.now is None:
			# One moment in time for the whole batch
			context = dataclasses.replace(context, now=self._clock())
		return {
			f"{name_of(module)}.{name_of(action)}": self.evaluate(
				user.capabilities, module, action, context, user=user, record=record,
			)
			for module, action in checks
		}


_default_resolver = CapabilityResolver()


def check_permission(
	user: User,
	module: str,
	action: str,
	context: AccessContext | None = None,
	record: Mapping | None = None,
	resolver: CapabilityResolver | None = None,
) -> AccessDecision:
	"""Evaluate `user`'s own capabilities for one (module, action)."""
	resolver = resolver or _default_resolver
	return resolver.evaluate(user.capabilities, module, action, context, user=user, record=record)


def has_capability(
	user: User | None,
	module: str,
	action: str,
	context: AccessContext | None = None,
	record: Mapping | None = None,
	resolver: CapabilityResolver | None = None,
) -> bool:
	if user is None:
		return False
	return check_permission(user, module, action, context, record, resolver).allowed


def check_permissions(
	user: User,
	checks: Iterable[tuple[str, str]],
	context: AccessContext | None = None,
	resolver: CapabilityResolver | None = None,
) -> dict[str, AccessDecision]:
	return (resolver or _default_resolver).evaluate_many(user, checks, context)
