"""
Configuration settings for tabular-sync.

Uses Pydantic for validation and environment variable loading.
Supports YAML configuration files with environment variable overrides.
"""

from __future__ import annotations


from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tabular_sync.utils.exceptions import ConfigurationError


class ProcessingOption(str, Enum):
    """How tables are refreshed after the model is applied."""

    DEFAULT = "default"
    FULL = "full"
    DO_NOT_PROCESS = "do-not-process"


class RoleMemberPolicy(str, Enum):
    """How external AzureAD role members are normalised when a model is loaded."""

    AUTO = "auto"
    AZURE_AS = "azure-as"
    SSAS = "ssas"
    NONE = "none"

    @classmethod
    def from_string(cls, value: str) -> "RoleMemberPolicy":
        """Parse policy from string."""
        normalized = value.lower().strip()
        for policy in cls:
            if policy.value == normalized:
                return policy
        valid = ", ".join(p.value for p in cls)
        raise ValueError(f"Invalid role member policy '{value}'. Valid options: {valid}")

    def resolve(self, server: str | None) -> "RoleMemberPolicy":
        """Turn AUTO into a concrete policy for the given target server address."""
        if self != RoleMemberPolicy.AUTO:
            return self
        if server and server.lower().startswith("asazure"):
            return RoleMemberPolicy.AZURE_AS
        return RoleMemberPolicy.SSAS


class SyncOptions(BaseModel):
    """Synchronization and deployment behaviour."""

    merge_perspectives: bool = Field(
        default=False,
        description="Keep target-only perspective entries when updating perspectives",
    )
    merge_cultures: bool = Field(
        default=False,
        description="Keep target-only translations when updating cultures",
    )
    processing_option: ProcessingOption = Field(
        default=ProcessingOption.DEFAULT,
        description="Refresh type used when processing tables",
    )
    transaction: bool = Field(
        default=False,
        description="Run processing inside a store transaction",
    )
    role_member_policy: RoleMemberPolicy = Field(
        default=RoleMemberPolicy.AUTO,
        description="Normalisation of external AzureAD role members",
    )


class TargetConfig(BaseModel):
    """Target metadata store coordinates."""

    server: str = Field(default="", description="Server address of the target store")
    database: str = Field(default="", description="Database name on the target server")
    direct_query: bool = Field(default=False, description="Target is a direct-query model")

    @field_validator("server", "database")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TABULAR_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Target settings
    target_server: str = Field(default="")
    target_database: str = Field(default="")
    target_direct_query: bool = Field(default=False)

    # Sync settings
    sync_merge_perspectives: bool = Field(default=False)
    sync_merge_cultures: bool = Field(default=False)
    sync_processing_option: ProcessingOption = Field(default=ProcessingOption.DEFAULT)
    sync_transaction: bool = Field(default=False)
    sync_role_member_policy: RoleMemberPolicy = Field(default=RoleMemberPolicy.AUTO)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    def get_sync_options(self) -> SyncOptions:
        """Build SyncOptions from settings."""
        return SyncOptions(
            merge_perspectives=self.sync_merge_perspectives,
            merge_cultures=self.sync_merge_cultures,
            processing_option=self.sync_processing_option,
            transaction=self.sync_transaction,
            role_member_policy=self.sync_role_member_policy,
        )

    def get_target_config(self) -> TargetConfig:
        """Build TargetConfig from settings."""
        return TargetConfig(
            server=self.target_server,
            database=self.target_database,
            direct_query=self.target_direct_query,
        )


# Global settings instance
_settings: Settings | None = None


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML file and environment variables.

    Args:
        config_path: Optional path to YAML configuration file.
                    Environment variables always take precedence.

    Returns:
        Settings instance with merged configuration.
    """
    global _settings

    config_data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                details={"path": str(path)},
            )
        try:
            with open(path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if yaml_config:
            if not isinstance(yaml_config, dict):
                raise ConfigurationError("Configuration YAML must be a mapping at root")
            config_data = _flatten_config(yaml_config)

    try:
        # pydantic-settings gives init kwargs priority; drop keys set in the environment
        settings = Settings()
        overrides = {
            key: value
            for key, value in config_data.items()
            if key in Settings.model_fields and key not in settings.model_fields_set
        }
        _settings = Settings(**overrides) if overrides else settings
        return _settings
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load settings: {e}") from e


def get_settings() -> Settings:
    """Get the current settings instance, loading if necessary."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def _flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested YAML config to match Settings field names."""
    result: dict[str, Any] = {}

    for key, value in config.items():
        key = str(key).replace("-", "_")
        if isinstance(value, dict):
            # Nested sections like 'target', 'sync', 'log'
            nested_prefix = f"{prefix}{key}_"
            result.update(_flatten_config(value, nested_prefix))
        else:
            result[f"{prefix}{key}"] = value

    return result
