# (c) Copyright Datacraft, 2026
"""Application settings configuration."""
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
	log_config: Path | None = Path("/app/log_config.yaml")
	api_prefix: str = ''

	# Zone for day-of-week and time-of-day checks when a capability sets none
	default_timezone: str | None = None

	# Module names beyond the built-in set
	extra_modules: list[str] = Field(default_factory=list)

	# Roles that skip capability checks unless a request enforces them
	bypass_roles: list[str] = Field(default_factory=list)

	# Record keys consulted by own_only / assigned_only scopes
	owner_fields: list[str] = Field(default_factory=lambda: ["created_by", "user_id", "owner_id"])
	assignee_fields: list[str] = Field(
		default_factory=lambda: ["assigned_to", "assigned_user_id", "assigned_users"]
	)

	# Role templates (bundled YAML when unset)
	role_templates_path: Path | None = None

	audit_decisions: bool = True

	model_config = SettingsConfigDict(
		env_prefix='capgate_',
		env_file='.env',
		env_file_encoding='utf-8',
		extra='ignore',
	)


_settings: Settings | None = None


def get_settings() -> Settings:
	global _settings
	if _settings is None:
		_settings = Settings()
	return _settings
