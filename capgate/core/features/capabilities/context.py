# (c) Copyright Datacraft, 2026
"""Contextual (request-time) capability restrictions."""
import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum

from .models import (
	AccessContext, ContextRestrictions, LocationRequirement,
	CapabilityConfigurationError, name_of,
)

logger = logging.getLogger(__name__)


class ContextFailureCode(str, Enum):
	MFA_REQUIRED = "mfa_required"
	APPROVAL_REQUIRED = "approval_required"
	APPROVER_ROLE_NOT_ALLOWED = "approver_role_not_allowed"
	REASON_REQUIRED = "reason_required"
	IP_NOT_ALLOWED = "ip_not_allowed"
	DEVICE_NOT_ALLOWED = "device_not_allowed"
	LOCATION_NOT_ALLOWED = "location_not_allowed"
	DUAL_CONTROL_REQUIRED = "dual_control_required"


@dataclass(frozen=True)
class ContextFailure:
	"""First unmet contextual restriction, with a message fit for the UI."""
	code: ContextFailureCode
	message: str
	requires_approval: bool = False
	approval_from: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextCheck:
	satisfied: bool
	failure: ContextFailure | None = None

	def __bool__(self) -> bool:
		return self.satisfied


_SATISFIED = ContextCheck(satisfied=True)


def ip_matches(client_ip: str, entry: str) -> bool:
	"""Match an address against a literal IP or a CIDR network."""
	try:
		address = ipaddress.ip_address(client_ip.strip())
	except ValueError:
		return False
	entry = entry.strip()
	try:
		if "/" in entry:
			return address in ipaddress.ip_network(entry, strict=False)
		return address == ipaddress.ip_address(entry)
	except ValueError:
		logger.warning(f"Ignoring malformed IP whitelist entry: {entry!r}")
		return False


def _fail(code: ContextFailureCode, message: str, **kwargs) -> ContextCheck:
	return ContextCheck(satisfied=False, failure=ContextFailure(code=code, message=message, **kwargs))


def satisfies_context(
	restrictions: ContextRestrictions | None,
	context: AccessContext,
) -> ContextCheck:
	"""
	Every present restriction is mandatory. Checks run in a fixed order and
	the first unmet one is reported.
	"""
	if restrictions is None:
		return _SATISFIED

	if restrictions.require_mfa and not context.mfa_satisfied:
		return _fail(
			ContextFailureCode.MFA_REQUIRED,
			"Multi-factor authentication (MFA) required for this action",
		)

	if restrictions.require_approval:
		roles = tuple(restrictions.approval_from_role)
		if not context.approval_obtained:
			return _fail(
				ContextFailureCode.APPROVAL_REQUIRED,
				"This action requires approval",
				requires_approval=True,
				approval_from=roles,
			)
		if roles and context.approver_role not in roles:
			return _fail(
				ContextFailureCode.APPROVER_ROLE_NOT_ALLOWED,
				f"Approval must come from one of: {', '.join(roles)}",
				requires_approval=True,
				approval_from=roles,
			)

	if restrictions.require_reason and not (context.reason_provided or "").strip():
		return _fail(ContextFailureCode.REASON_REQUIRED, "Justification required for this action")

	if restrictions.ip_whitelist:
		if not context.client_ip or not any(
			ip_matches(context.client_ip, entry) for entry in restrictions.ip_whitelist
		):
			return _fail(ContextFailureCode.IP_NOT_ALLOWED, "Access not allowed from this IP address")

	if restrictions.device_types:
		allowed = {name_of(d) for d in restrictions.device_types}
		if context.device_type is None or name_of(context.device_type) not in allowed:
			device = name_of(context.device_type) if context.device_type else "unknown"
			return _fail(
				ContextFailureCode.DEVICE_NOT_ALLOWED,
				f"Access not allowed from {device} devices",
			)

	if restrictions.location_required:
		try:
			required = LocationRequirement(restrictions.location_required)
		except ValueError:
			raise CapabilityConfigurationError(
				f"Unknown location requirement: {restrictions.location_required!r}"
			) from None
		if required != LocationRequirement.ANY and context.location != required.value:
			return _fail(
				ContextFailureCode.LOCATION_NOT_ALLOWED,
				f"Access requires {required.value} location",
			)

	if restrictions.dual_control and not context.co_signer_id:
		return _fail(
			ContextFailureCode.DUAL_CONTROL_REQUIRED,
			"This action requires dual control (two users)",
		)

	return _SATISFIED
