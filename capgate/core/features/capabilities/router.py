# (c) Copyright Datacraft, 2026
"""FastAPI router for permission checks and capability authoring."""
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError

from capgate.core.config import get_settings

from .engine import CapabilityResolver
from .models import is_known_module
from .parser import FilterSyntaxError, parse_filter, to_dsl
from .service import get_resolver
from .templates import capabilities_for_role
from .views import (
	CheckRequest, CheckResponse, BulkCheckRequest, BulkCheckResponse,
	CapabilitySchema, CapabilityValidationResponse, ValidationIssue,
	FilterValidationRequest, FilterValidationResponse,
)

router = APIRouter(tags=["capabilities"])


def _require_known_module(module: str):
	if not is_known_module(module):
		raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown module: {module}")


# --- Permission checks ---

@router.post("/permissions/check", response_model=CheckResponse)
async def check_permission(
	data: CheckRequest,
	resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
):
	"""Evaluate a single (module, action) request."""
	_require_known_module(data.module)
	user = data.user.to_user()
	decision = resolver.evaluate(
		user.capabilities,
		data.module,
		data.action.value,
		data.context.to_context(data.record),
		user=user,
	)
	return CheckResponse.from_decision(decision)


@router.post("/permissions/check-bulk", response_model=BulkCheckResponse)
async def check_permissions_bulk(
	data: BulkCheckRequest,
	resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
):
	"""Evaluate several (module, action) pairs against one context."""
	for check in data.checks:
		_require_known_module(check.module)
	user = data.user.to_user()
	decisions = resolver.evaluate_many(
		user,
		[(c.module, c.action.value) for c in data.checks],
		data.context.to_context(data.record),
	)
	return BulkCheckResponse(
		results={key: CheckResponse.from_decision(d) for key, d in decisions.items()},
	)


# --- Authoring ---

@router.post("/capabilities/validate", response_model=CapabilityValidationResponse)
async def validate_capability(data: Annotated[dict[str, Any], Body()]):
	"""Validate a capability definition before it is saved."""
	try:
		schema = CapabilitySchema.model_validate(data)
	except ValidationError as e:
		return CapabilityValidationResponse(
			valid=False,
			errors=[
				ValidationIssue(loc=list(err["loc"]), msg=err["msg"])
				for err in e.errors()
			],
		)
	return CapabilityValidationResponse(valid=True, capability=schema.to_capability().to_dict())


@router.post("/capabilities/validate-filter", response_model=FilterValidationResponse)
async def validate_filter(data: FilterValidationRequest):
	"""Validate custom scope filter syntax."""
	try:
		group = parse_filter(data.custom_filter.strip())
	except FilterSyntaxError as e:
		return FilterValidationResponse(valid=False, error=str(e))
	return FilterValidationResponse(
		valid=True,
		combine_with=group.combine_with.value,
		condition_count=len(group.conditions),
		dsl=to_dsl(group),
	)


@router.get("/roles/{role}/capabilities", response_model=list[dict])
async def get_role_capabilities(role: str):
	"""Template capabilities for a built-in role."""
	capabilities = capabilities_for_role(role, get_settings().role_templates_path)
	if not capabilities:
		raise HTTPException(status_code=404, detail="Role template not found")
	return [c.to_dict() for c in capabilities]
