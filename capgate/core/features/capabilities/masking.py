# (c) Copyright Datacraft, 2026
"""Redaction of sensitive record fields."""
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .engine import CapabilityResolver, has_capability
from .field_mask import FieldMask
from .models import AccessContext, User, name_of


class MaskType(str, Enum):
	FULL = "full"
	PARTIAL = "partial"
	HASH = "hash"
	REDACT = "redact"
	NONE = "none"


def mask_value(value: Any, mask_type: MaskType | str) -> Any:
	"""Mask a single value. None and empty strings pass through untouched."""
	if value is None or value == "":
		return value

	text = str(value)
	match MaskType(mask_type):
		case MaskType.NONE:
			return value
		case MaskType.FULL:
			return "****"
		case MaskType.PARTIAL:
			if len(text) <= 3:
				return "***"
			middle = "*" * min(len(text) - 2, 8)
			return f"{text[0]}{middle}{text[-1]}"
		case MaskType.HASH:
			return "#" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:8]
		case MaskType.REDACT:
			return "[REDACTED]"


def apply_field_mask(
	record: Mapping[str, Any],
	mask: FieldMask,
	mask_type: MaskType | str | None = None,
) -> dict[str, Any]:
	"""
	Apply a resolved field mask to a record.

	Hidden fields are dropped, or replaced with a masked value when
	`mask_type` is given (useful when the UI must keep the column).
	"""
	if mask_type is None:
		return mask.apply(record)
	return {
		key: value if mask.allows(key) else mask_value(value, mask_type)
		for key, value in record.items()
	}


@dataclass(frozen=True)
class DataMaskingRule:
	"""Mask `field` of `module` unless the viewer is exempt."""
	module: str
	field: str
	mask_type: MaskType = MaskType.FULL
	# (module, action) whose grant makes the field visible
	visible_with_capability: tuple[str, str] | None = None
	visible_to_roles: tuple[str, ...] = ()

	@classmethod
	def from_dict(cls, data: Mapping) -> "DataMaskingRule":
		visible = data.get("visible_with_capability")
		return cls(
			module=data["module"],
			field=data["field"],
			mask_type=MaskType(data.get("mask_type", "full")),
			visible_with_capability=(visible["module"], visible["action"]) if visible else None,
			visible_to_roles=tuple(data.get("visible_to_roles") or ()),
		)


def _is_exempt(
	rule: DataMaskingRule,
	user: User,
	context: AccessContext | None,
	resolver: CapabilityResolver | None,
) -> bool:
	if user.role is not None and user.role in rule.visible_to_roles:
		return True
	if rule.visible_with_capability:
		module, action = rule.visible_with_capability
		return has_capability(user, module, action, context, resolver=resolver)
	return False


def get_masked_fields(
	rules: Iterable[DataMaskingRule],
	user: User,
	context: AccessContext | None = None,
	resolver: CapabilityResolver | None = None,
) -> list[str]:
	return [rule.field for rule in rules if not _is_exempt(rule, user, context, resolver)]


def apply_masking_rules(
	record: Mapping[str, Any],
	rules: Iterable[DataMaskingRule],
	user: User,
	context: AccessContext | None = None,
	resolver: CapabilityResolver | None = None,
	module: str | None = None,
) -> dict[str, Any]:
	"""Return a copy of `record` with every non-exempt rule applied."""
	masked = dict(record)
	for rule in rules:
		if module is not None and name_of(rule.module) != name_of(module):
			continue
		if rule.field not in masked:
			continue
		if not _is_exempt(rule, user, context, resolver):
			masked[rule.field] = mask_value(masked[rule.field], rule.mask_type)
	return masked
