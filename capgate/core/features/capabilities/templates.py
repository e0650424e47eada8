# (c) Copyright Datacraft, 2026
"""Role capability templates and legacy capability conversion."""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping

import yaml

from .models import Capability, is_known_action

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_PATH = Path(__file__).with_name("role_templates.yaml")


def capabilities_from_legacy(mapping: Mapping[str, Iterable[str]]) -> tuple[Capability, ...]:
	"""
	Convert `{module: [action, ...]}` grants into unrestricted capabilities.

	Unknown actions are skipped with a warning.
	"""
	capabilities = []
	for module, actions in mapping.items():
		for action in actions or ():
			if not is_known_action(action):
				logger.warning(f"Skipping unknown action {action!r} for module {module!r}")
				continue
			capabilities.append(Capability(module=module, action=action))
	return tuple(capabilities)


@lru_cache(maxsize=8)
def load_role_templates(path: Path | None = None) -> dict[str, tuple[Capability, ...]]:
	"""Load role templates from YAML (the bundled file by default)."""
	path = path or DEFAULT_TEMPLATES_PATH
	with open(path, "r") as stream:
		data = yaml.safe_load(stream) or {}
	logger.debug(f"Loaded {len(data)} role templates from {path}")
	return {role: capabilities_from_legacy(modules or {}) for role, modules in data.items()}


def capabilities_for_role(role: str, path: Path | None = None) -> tuple[Capability, ...]:
	"""Template capabilities for `role`; unknown roles get none."""
	return load_role_templates(path).get(role, ())
