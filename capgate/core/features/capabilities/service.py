# (c) Copyright Datacraft, 2026
"""Capability service for access control decisions."""
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from capgate.core.config import Settings, get_settings

from .engine import AccessDecision, CapabilityResolver
from .models import AccessContext, CapabilityAction, User, register_module
from .templates import capabilities_for_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
	"""What the audit collaborator receives for each logged decision."""
	timestamp: datetime
	user_id: str
	module: str
	action: str
	allowed: bool
	reason: str | None
	record_id: str | None = None
	context_snapshot: Mapping[str, Any] = dataclasses.field(default_factory=dict)


AuditSink = Callable[[AuditRecord], None]


class CapabilityService:
	"""
	High-level service for capability-based access control.

	Usage:
		service = get_capability_service()
		decision = service.check_access(user, "expense", "approve", context, record)
		if not decision.allowed:
			raise PermissionDenied(decision.rejection_reason)
	"""

	def __init__(
		self,
		resolver: CapabilityResolver,
		audit_sink: AuditSink | None = None,
		role_templates_path: Path | None = None,
	):
		self.resolver = resolver
		self.audit_sink = audit_sink
		self.role_templates_path = role_templates_path

	def check_access(
		self,
		user: User,
		module: str,
		action: str,
		context: AccessContext | None = None,
		record: Mapping | None = None,
		log_decision: bool = True,
	) -> AccessDecision:
		"""
		Check if a user can perform an action, optionally on a record.

		This is the main entry point for capability evaluation.
		"""
		context = context or AccessContext()
		if context.now is None:
			context = dataclasses.replace(context, now=datetime.now(timezone.utc))

		decision = self.resolver.evaluate(
			user.capabilities, module, action, context, user=user, record=record,
		)

		if log_decision and self.audit_sink is not None:
			target = record if record is not None else context.record
			record_id = target.get("id") if isinstance(target, Mapping) else None
			self.audit_sink(AuditRecord(
				timestamp=context.now,
				user_id=user.id,
				module=str(module),
				action=str(action),
				allowed=decision.allowed,
				reason=decision.rejection_reason,
				record_id=str(record_id) if record_id is not None else None,
				context_snapshot={
					"role": user.role,
					"client_ip": context.client_ip,
					"device_type": context.device_type,
					"mfa_satisfied": context.mfa_satisfied,
				},
			))

		return decision

	def get_effective_permissions(
		self,
		user: User,
		module: str,
		context: AccessContext | None = None,
	) -> dict[str, bool]:
		"""
		Get effective permissions for a user on a module.

		Returns a dict of action -> allowed for every known action.
		"""
		context = context or AccessContext()
		if context.now is None:
			context = dataclasses.replace(context, now=datetime.now(timezone.utc))
		permissions = {}
		for action in CapabilityAction:
			decision = self.check_access(
				user, module, action.value, context,
				log_decision=False,  # Bulk lookups stay out of the audit log
			)
			permissions[action.value] = decision.allowed
		return permissions

	def filter_records(
		self,
		user: User,
		module: str,
		action: str,
		records: Iterable[Mapping],
		context: AccessContext | None = None,
	) -> list[Mapping]:
		"""Keep only the records the user may act on."""
		context = context or AccessContext()
		if context.now is None:
			context = dataclasses.replace(context, now=datetime.now(timezone.utc))
		return [
			r for r in records
			if self.check_access(user, module, action, context, r, log_decision=False).allowed
		]

	def apply_role_template(self, user: User) -> User:
		"""Return `user` with its role's template capabilities added."""
		template = capabilities_for_role(user.role or "", self.role_templates_path)
		if not template:
			logger.debug(f"No role template for {user.role!r}")
			return user
		existing = {c.key for c in user.capabilities if c.is_unrestricted}
		extra = tuple(c for c in template if c.key not in existing)
		return dataclasses.replace(user, capabilities=user.capabilities + extra)


_resolver: CapabilityResolver | None = None


def get_resolver() -> CapabilityResolver:
	global _resolver
	if _resolver is None:
		settings = get_settings()
		for module in settings.extra_modules:
			register_module(module)
		_resolver = CapabilityResolver.from_settings(settings)
	return _resolver


def _log_audit_record(record: AuditRecord) -> None:
	logger.info(
		f"capability decision user={record.user_id} {record.module}.{record.action} "
		f"allowed={record.allowed} reason={record.reason!r}"
	)


def create_capability_service(settings: Settings | None = None) -> CapabilityService:
	settings = settings or get_settings()
	return CapabilityService(
		resolver=get_resolver(),
		audit_sink=_log_audit_record if settings.audit_decisions else None,
		role_templates_path=settings.role_templates_path,
	)


# Convenience function for dependency injection
def get_capability_service() -> CapabilityService:
	return create_capability_service()
