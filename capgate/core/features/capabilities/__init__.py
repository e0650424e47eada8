# (c) Copyright Datacraft, 2026
"""
Fine-grained capability authorization.

This module provides a pure decision engine supporting:
- Record scoping (own, yard, department, assigned, custom filters)
- Time windows, day-of-week sets and time-of-day ranges
- Structured AND/OR conditions against record fields
- Contextual requirements (MFA, approval, reason, IP, device)
- Field-level read/update masks merged across grants
"""
from .engine import (
	CapabilityResolver, AccessDecision, CandidateState, CandidateTrace,
	Rejection, RejectionCode, check_permission, check_permissions, has_capability,
)
from .field_mask import FieldMask, MaskKind, resolve_field_mask
from .models import (
	Capability, RecordScope, TimeRestrictions, TimeOfDay, ConditionGroup, Condition,
	ContextRestrictions, FieldPermission, User, AccessContext,
	CapabilityModule, CapabilityAction, ScopeType, ConditionOperator, CombineWith,
	FieldMode, DeviceType, LocationRequirement,
	CapabilityConfigurationError, CapabilityResolutionError,
)
from .parser import FilterParser, FilterSyntaxError, parse_filter
from .service import CapabilityService, get_capability_service

__all__ = [
	# Engine
	"CapabilityResolver",
	"AccessDecision",
	"CandidateState",
	"CandidateTrace",
	"Rejection",
	"RejectionCode",
	"check_permission",
	"check_permissions",
	"has_capability",
	# Field masks
	"FieldMask",
	"MaskKind",
	"resolve_field_mask",
	# Models
	"Capability",
	"RecordScope",
	"TimeRestrictions",
	"TimeOfDay",
	"ConditionGroup",
	"Condition",
	"ContextRestrictions",
	"FieldPermission",
	"User",
	"AccessContext",
	"CapabilityModule",
	"CapabilityAction",
	"ScopeType",
	"ConditionOperator",
	"CombineWith",
	"FieldMode",
	"DeviceType",
	"LocationRequirement",
	"CapabilityConfigurationError",
	"CapabilityResolutionError",
	# Parser
	"FilterParser",
	"FilterSyntaxError",
	"parse_filter",
	# Service
	"CapabilityService",
	"get_capability_service",
]
