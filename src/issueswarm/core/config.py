"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (ISSUESWARM_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
    - parse_model_selector(): `<provider>/<model>` parsing
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from issueswarm.core.result import ConfigurationError

CONFIG_ENV_VAR = "ISSUESWARM_CONFIG"
DEFAULT_SERVER_COMMAND = ["opencode", "serve", "--port", "{port}"]


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


class ModelSelector(BaseModel):
    """Provider and model tokens forwarded with a task submission."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    model_id: str

    def to_payload(self) -> dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class AgentConfig(BaseModel):
    """Agent service process and protocol configuration."""

    profile: str | None = Field(default=None, description="Agent profile name sent with the task.")
    model: str | None = Field(
        default=None, description="Model selector in `<provider>/<model>` form."
    )
    server_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SERVER_COMMAND),
        description="Command used to start the agent service; `{port}` is substituted.",
    )
    host: str = Field(default="127.0.0.1", description="Interface the agent service binds.")
    base_port: int = Field(default=4100, description="First port of the per-item port range.")
    port_span: int = Field(default=1000, description="Size of the per-item port range.")
    readiness_attempts: int = Field(default=30, ge=1, description="Liveness check attempts.")
    readiness_interval: float = Field(
        default=1.0, gt=0, description="Seconds between liveness checks."
    )
    request_timeout: float = Field(
        default=1800.0, gt=0, description="Seconds to wait for the task submission reply."
    )
    stop_grace: float = Field(
        default=5.0, ge=0, description="Seconds to wait for the service to exit after SIGTERM."
    )

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        try:
            parse_model_selector(v)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return v.strip()

    @property
    def model_selector(self) -> ModelSelector | None:
        return parse_model_selector(self.model) if self.model else None


class PublishConfig(BaseModel):
    """What happens to a branch after the agent finishes."""

    push: bool = Field(default=True, description="Push the issue branch after completion.")
    create_pr: bool = Field(
        default=True, description="Open a pull request after completion (implies push)."
    )
    cleanup: bool = Field(default=True, description="Remove the worktree after success.")
    remote: str = Field(default="origin", description="Remote used for pushing.")
    integration_ref: str = Field(
        default="origin/main", description="Ref the branch must differ from to count as changed."
    )

    @model_validator(mode="after")
    def pr_requires_push(self) -> PublishConfig:
        if self.create_pr and not self.push:
            self.push = True
        return self


class SwarmConfig(BaseModel):
    """Scheduling and on-disk layout configuration."""

    worktree_dir: Path = Field(
        default=Path(".worktrees"),
        description="Root for worktrees and per-issue logs, relative to the repository.",
    )
    stagger_delay: float = Field(
        default=2.0, ge=0, description="Seconds between consecutive pipeline launches."
    )
    reap_stale_servers: bool = Field(
        default=True, description="Terminate leftover agent servers before starting."
    )
    stale_server_pattern: str = Field(
        default="opencode serve", description="Command-line substring identifying agent servers."
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="ISSUESWARM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    swarm: SwarmConfig = Field(default_factory=SwarmConfig)
    log_level: str = Field(default="INFO", description="Log level for issue-swarm output.")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)

    def with_overrides(
        self,
        *,
        agent: dict[str, Any] | None = None,
        publish: dict[str, Any] | None = None,
    ) -> AppConfig:
        """Return a copy with CLI overrides applied and re-validated."""
        agent_cfg = AgentConfig.model_validate({**self.agent.model_dump(), **(agent or {})})
        publish_cfg = PublishConfig.model_validate({**self.publish.model_dump(), **(publish or {})})
        return self.model_copy(update={"agent": agent_cfg, "publish": publish_cfg})


def parse_model_selector(value: str) -> ModelSelector:
    """Split `<provider>/<model>` on the first slash."""
    provider, sep, model = value.strip().partition("/")
    if not sep or not provider or not model:
        raise ConfigurationError(
            "Model must be in <provider>/<model> format", context={"model": value}
        )
    return ModelSelector(provider_id=provider, model_id=model)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".issueswarm.toml")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    For nested models, detects vars like ISSUESWARM_AGENT__MODEL.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    nested_models: dict[str, type[BaseModel]] = {
        "agent": AgentConfig,
        "publish": PublishConfig,
        "swarm": SwarmConfig,
    }

    for group_name, model_cls in nested_models.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    if f"{prefix}LOG_LEVEL".upper() in env_vars:
        overrides.add("log_level")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result


__all__ = [
    "AgentConfig",
    "AppConfig",
    "ConfigError",
    "ConfigLoadResult",
    "ModelSelector",
    "PublishConfig",
    "SwarmConfig",
    "load_config",
    "parse_model_selector",
]
