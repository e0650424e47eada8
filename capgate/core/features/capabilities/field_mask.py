# (c) Copyright Datacraft, 2026
"""Field-level visibility masks."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .models import Capability, FieldMode, FIELD_ACTIONS, CapabilityConfigurationError, name_of


class MaskKind(str, Enum):
	ALL_FIELDS = "all_fields"
	ONLY = "only"
	ALL_EXCEPT = "all_except"


@dataclass(frozen=True)
class FieldMask:
	"""AllFields, Only(fields) or AllExcept(fields)."""
	kind: MaskKind = MaskKind.ALL_FIELDS
	fields: frozenset[str] = frozenset()

	@classmethod
	def all_fields(cls) -> "FieldMask":
		return cls()

	@classmethod
	def only(cls, fields: Iterable[str]) -> "FieldMask":
		return cls(MaskKind.ONLY, frozenset(fields))

	@classmethod
	def all_except(cls, fields: Iterable[str]) -> "FieldMask":
		return cls(MaskKind.ALL_EXCEPT, frozenset(fields))

	@property
	def is_unrestricted(self) -> bool:
		return self.kind == MaskKind.ALL_FIELDS or (self.kind == MaskKind.ALL_EXCEPT and not self.fields)

	def allows(self, field: str) -> bool:
		if self.kind == MaskKind.ONLY:
			return field in self.fields
		if self.kind == MaskKind.ALL_EXCEPT:
			return field not in self.fields
		return True

	def hidden_fields(self, record: Mapping[str, Any]) -> list[str]:
		return [key for key in record if not self.allows(key)]

	def apply(self, record: Mapping[str, Any]) -> dict[str, Any]:
		"""Copy of `record` without the fields this mask hides."""
		return {key: value for key, value in record.items() if self.allows(key)}

	def to_dict(self) -> dict:
		return {"kind": self.kind.value, "fields": sorted(self.fields)}


def resolve_field_mask(
	capabilities: Iterable[Capability],
	module: str,
	action: str,
) -> FieldMask:
	"""
	Merge field rules of effective capabilities for one (module, action).

	Whitelists are unioned and win over any blacklist. With only
	blacklists, a field is hidden when every blacklist hides it.
	"""
	module, action = name_of(module), name_of(action)
	if action not in FIELD_ACTIONS:
		return FieldMask.all_fields()

	whitelists: list[frozenset[str]] = []
	blacklists: list[frozenset[str]] = []
	for capability in capabilities:
		for rule in capability.field_permissions:
			if rule.module != module or rule.action != action:
				continue
			mode = name_of(rule.mode)
			if mode == FieldMode.WHITELIST.value:
				whitelists.append(frozenset(rule.fields))
			elif mode == FieldMode.BLACKLIST.value:
				blacklists.append(frozenset(rule.fields))
			else:
				raise CapabilityConfigurationError(f"Unknown field permission mode: {mode!r}")

	if whitelists:
		return FieldMask.only(frozenset().union(*whitelists))
	if blacklists:
		return FieldMask.all_except(frozenset.intersection(*blacklists))
	return FieldMask.all_fields()
