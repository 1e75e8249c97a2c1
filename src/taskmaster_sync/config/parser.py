"""Pipeline configuration parser with Pydantic validation."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field

ENV_PREFIX = "TASKMASTER_SYNC_"


class SyncSettings(BaseModel):
    """Decision, resolution and dispatch settings."""

    reserved_prefix: str = ".taskmaster/"
    auto_create_projects: bool = True
    coalesce_in_flight: bool = False
    request_timeout: float = Field(default=10.0, gt=0)


class QueueSettings(BaseModel):
    """Job queue settings."""

    queue_name: str = "taskmaster-sync:queue"
    max_jobs: int = 3
    job_timeout: int = 300
    max_tries: int = 3
    retry_delay: float = Field(default=5.0, ge=0)


class ServerSettings(BaseModel):
    """API server settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


class ConfigSource:
    """Configuration source tracking."""

    def __init__(self, name: str, data: Dict[str, Any]):
        self.name = name
        self.data = data


class PipelineConfig(BaseModel):
    """Main pipeline configuration."""

    version: str = "1.0"
    sync: SyncSettings = Field(default_factory=SyncSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


def _parse_env_vars() -> Dict[str, Any]:
    """Parse TASKMASTER_SYNC_<SECTION>__<FIELD> environment variables."""
    env_config: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        config_key = key[len(ENV_PREFIX):].lower()
        if "__" in config_key:
            parts = config_key.split("__")
            if len(parts) == 2:
                section, field = parts
                env_config.setdefault(section, {})[field] = _parse_env_value(value)
        else:
            env_config[config_key] = _parse_env_value(value)

    return env_config


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if "," in value:
        return [item.strip() for item in value.split(",")]

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value


def _merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dictionaries with later ones taking precedence."""
    result: Dict[str, Any] = {}

    for config in configs:
        _deep_merge(result, config)

    return result


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """Deep merge source into target."""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Tuple[PipelineConfig, List[ConfigSource]]:
    """Load configuration with inheritance: defaults < config file < env vars < overrides."""
    sources = []

    defaults = PipelineConfig().model_dump()
    sources.append(ConfigSource("defaults", defaults))

    file_config: Dict[str, Any] = {}
    if config_path is not None and Path(config_path).exists():
        with open(config_path, encoding="utf-8") as f:
            file_config = yaml.safe_load(f) or {}
        sources.append(ConfigSource(str(config_path), file_config))

    env_config = _parse_env_vars()
    if env_config:
        sources.append(ConfigSource("environment", env_config))

    override_config = overrides or {}
    if override_config:
        sources.append(ConfigSource("overrides", override_config))

    merged_config = _merge_configs(defaults, file_config, env_config, override_config)

    return PipelineConfig(**merged_config), sources


def load_config_simple(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineConfig:
    """Load configuration without source tracking."""
    config, _ = load_config(config_path, overrides)
    return config
