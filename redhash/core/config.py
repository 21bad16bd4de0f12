"""
Configuration system for redhash.

Loads YAML configuration files and provides typed access to settings.
Uses Pydantic v2 for validation and immutable config objects.

Configuration Hierarchy (highest priority first):
1. Explicit overrides (passed to load_config or RecordStore.configure)
2. Environment variables (REDHASH_*)
3. YAML configuration file
4. Pydantic field defaults
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PREFIX = "paywell"
DEFAULT_SEPARATOR = ":"
DEFAULT_COLLECTION = "hash"


def _as_text(value: Any) -> Any:
    """Env and YAML loaders hand back numbers for numeric-looking strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class RedisConfig(BaseModel):
    """Connection parameters for the Redis server."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="127.0.0.1", description="Server host, ignored when socket is set")
    port: int = Field(default=6379, gt=0, description="Server port, ignored when socket is set")
    socket: Optional[str] = Field(default=None, description="Unix socket path")
    auth: Optional[str] = Field(default=None, description="Password sent with AUTH")
    db: int = Field(default=0, ge=0, description="Database index selected on connect")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra keyword arguments passed to redis.Redis",
    )

    @field_validator("host", "socket", "auth", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _as_text(v)


class StoreConfig(BaseModel):
    """Central configuration object for a RecordStore."""

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(default=DEFAULT_PREFIX, min_length=1, description="Prefix of every key")
    separator: str = Field(default=DEFAULT_SEPARATOR, min_length=1, description="Key segment separator")
    redis: RedisConfig = Field(default_factory=RedisConfig)

    @field_validator("prefix", "separator", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _as_text(v)

    @classmethod
    def from_yaml(cls, path: Path) -> "StoreConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.model_validate(data)

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "StoreConfig":
        """Return a validated copy with ``overrides`` deep-merged in."""
        data = self.model_dump()
        if overrides:
            _deep_merge(data, overrides)
        return StoreConfig.model_validate(data)


class SaveOptions(BaseModel):
    """Options accepted by RecordStore.save."""

    model_config = ConfigDict(frozen=True)

    index: bool = Field(default=True, description="Add field values to the collection search index")
    collection: str = Field(default=DEFAULT_COLLECTION, min_length=1, description="Collection name")
    ignore: list[str] = Field(default_factory=list, description="Field names never indexed")

    @field_validator("ignore", mode="before")
    @classmethod
    def normalize_ignore(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @property
    def ignored(self) -> set[str]:
        """Field names skipped during indexing; ``_id`` is always among them."""
        return {"_id", *self.ignore}

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "SaveOptions":
        data = self.model_dump()
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return SaveOptions.model_validate(data)


class SearchOptions(BaseModel):
    """Options accepted by RecordStore.search."""

    model_config = ConfigDict(frozen=True)

    q: str = Field(default="", description="Search term")
    collection: str = Field(default=DEFAULT_COLLECTION, min_length=1, description="Collection name")
    type: Literal["and", "or"] = Field(default="or", description="Token combination operator")

    @field_validator("q", mode="before")
    @classmethod
    def coerce_query(cls, v: Any) -> Any:
        if v is None:
            return ""
        return _as_text(v)

    @field_validator("type", mode="before")
    @classmethod
    def lower_type(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "SearchOptions":
        data = self.model_dump()
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return SearchOptions.model_validate(data)


def load_config(
    path: Optional[Path] = None,
    env_prefix: str = "REDHASH_",
    overrides: Optional[Dict[str, Any]] = None,
    use_env: bool = True,
) -> StoreConfig:
    """Load configuration with hierarchy: defaults → YAML → env vars → overrides.

    Args:
        path: Optional explicit path to YAML config file
        env_prefix: Prefix for environment variables (default: "REDHASH_")
        overrides: Optional dictionary of explicit overrides
        use_env: Whether to load environment variables (default: True)

    Returns:
        Merged StoreConfig

    Examples:
        # Basic usage
        config = load_config()

        # With overrides
        config = load_config(overrides={"redis": {"db": 2}})

        # Environment variable: REDHASH_REDIS_PORT=6380
        config = load_config()  # redis.port will be 6380
    """
    yaml_path = _find_config_file(path)

    if yaml_path:
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        config_dict = {}

    if use_env:
        _deep_merge(config_dict, _extract_env_config(env_prefix))

    if overrides:
        _deep_merge(config_dict, overrides)

    return StoreConfig.model_validate(config_dict)


def _find_config_file(path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file.

    Searches in this order:
    1. Provided path
    2. ./redhash.yaml
    3. ./redhash.yml

    Returns:
        Path to config file or None if not found
    """
    if path and Path(path).exists():
        return Path(path)

    for filename in ["redhash.yaml", "redhash.yml"]:
        config_path = Path(filename)
        if config_path.exists():
            return config_path

    return None


def _extract_env_config(prefix: str = "REDHASH_") -> Dict[str, Any]:
    """Settings from ``REDHASH_*`` variables.

    ``REDHASH_REDIS_HOST=cache`` lands in the redis section as ``host``;
    anything else (``REDHASH_PREFIX``) is a top-level setting.
    """
    config: Dict[str, Any] = {}
    redis_prefix = f"{prefix}REDIS_"

    for name, raw in os.environ.items():
        if name.startswith(redis_prefix) and len(name) > len(redis_prefix):
            field = name[len(redis_prefix):].lower()
            config.setdefault("redis", {})[field] = _convert_env_value(raw)
        elif name.startswith(prefix) and len(name) > len(prefix):
            config[name[len(prefix):].lower()] = _convert_env_value(raw)

    return config


_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})


def _convert_env_value(value: str) -> Union[str, int, float, bool, List[str]]:
    # "0" and "1" stay numbers: db indexes and ports are the numeric settings
    lowered = value.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]

    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Merge ``override`` into ``base`` in place; nested dicts merge, the rest replaces."""
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            base[key] = value
