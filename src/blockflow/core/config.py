"""Engine configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("blockflow.yaml")


class EngineSettings(BaseModel):
    """Scheduling defaults for workflow runs."""
    max_concurrency: int = 0  # Nodes per layer running at once; 0 = unbounded
    default_timeout: float = 60.0  # Per-node timeout in seconds
    error_handling: Literal["continue", "stop"] = "continue"
    default_mode: str = "production"  # production | demo | test (live/mock aliases)

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {v}")
        return v

    @field_validator("default_timeout")
    @classmethod
    def validate_default_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"default_timeout must be positive, got {v}")
        return v

    @field_validator("default_mode")
    @classmethod
    def validate_default_mode(cls, v: str) -> str:
        from ..workflow.context import ExecutionMode

        return ExecutionMode.parse(v).value


class CacheSettings(BaseModel):
    """Response cache used by enrichment blocks."""
    enabled: bool = True
    max_size: int = 1000
    default_ttl: float = 3600.0  # seconds

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_size must be >= 1, got {v}")
        return v

    @field_validator("default_ttl")
    @classmethod
    def validate_default_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"default_ttl must be positive, got {v}")
        return v


class LoggingSettings(BaseModel):
    level: str = "INFO"
    use_colors: bool = True
    log_file: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level '{v}'")
        return level


class EngineConfig(BaseSettings):
    """Top-level engine configuration.

    Values come from (highest priority first) constructor arguments / YAML,
    ``BLOCKFLOW_*`` environment variables (``BLOCKFLOW_ENGINE__DEFAULT_TIMEOUT``
    for nested fields), a ``.env`` file, then defaults.
    """
    engine: EngineSettings = Field(default_factory=EngineSettings)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="BLOCKFLOW_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached config if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def _load_config_from_file(config_path: Path) -> EngineConfig:
    """Internal loader for engine config (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)
    return EngineConfig(**data)


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> EngineConfig:
    """Load engine configuration from a YAML file.

    Uses mtime-based caching: returns the cached config if the file hasn't
    changed. A missing file yields the defaults.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}. Using default configuration.")
        return EngineConfig()

    resolved = config_path.resolve()
    result = _get_cached_or_load(resolved, _load_config_from_file)
    return result if result is not None else EngineConfig()


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` strings in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "engine.default_mode")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used."
            )
            return data
        return value
    return data
