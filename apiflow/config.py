from __future__ import annotations

import os
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_FLOWS_KEY,
    DEFAULT_HISTORY_KEY,
    DEFAULT_HISTORY_MAX_ENTRIES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_JSON_PATH_INDICATOR,
    DEFAULT_STATE_KEY,
    DEFAULT_VARIABLE_PREFIX,
    DEFAULT_VARIABLE_SUFFIX,
    DEFAULT_VARIABLES_KEY,
)


class HttpConfig(BaseModel):
    """Settings for the HTTP request executor."""

    base_url: str = ""
    timeout: float = DEFAULT_HTTP_TIMEOUT
    headers: Dict[str, str] = Field(default_factory=dict)


class VariablesConfig(BaseModel):
    """Variable store persistence and template syntax."""

    persist: bool = True
    storage_key: str = DEFAULT_VARIABLES_KEY
    prefix: str = DEFAULT_VARIABLE_PREFIX
    suffix: str = DEFAULT_VARIABLE_SUFFIX
    json_path_indicator: str = DEFAULT_JSON_PATH_INDICATOR
    strict_json_path: bool = False


class HistoryConfig(BaseModel):
    """Request history settings."""

    persist: bool = True
    storage_key: str = DEFAULT_HISTORY_KEY
    max_entries: int = DEFAULT_HISTORY_MAX_ENTRIES


class FlowsConfig(BaseModel):
    """Flow collection settings."""

    storage_key: str = DEFAULT_FLOWS_KEY
    seed_default: bool = True


class StateConfig(BaseModel):
    """State snapshot settings."""

    persist: bool = True
    storage_key: str = DEFAULT_STATE_KEY
    diff_enabled: bool = True
    source_url: Optional[str] = None


STORAGE_SCHEMES = ("memory", "sqlite", "redis", "rediss")

# Environment variable -> config key path
_ENV_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "APIFLOW_STORAGE_URL": ("storage_url",),
    "APIFLOW_BASE_URL": ("http", "base_url"),
    "APIFLOW_HTTP_TIMEOUT": ("http", "timeout"),
}


def parse_storage_url(storage_url: str) -> Tuple[str, str]:
    """Split ``storage_url`` into its scheme and location.

    Raises ``ValueError`` for schemes no storage backend understands.
    """
    scheme, sep, location = storage_url.partition("://")
    if not sep or scheme not in STORAGE_SCHEMES:
        raise ValueError(f"Unsupported storage backend: {storage_url}")
    if scheme == "sqlite" and not location:
        raise ValueError("sqlite storage URL needs a database path")
    return scheme, location


class ApiflowConfig(BaseModel):
    """Top-level configuration model."""

    storage_url: Optional[str] = None
    http: HttpConfig = Field(default_factory=HttpConfig)
    variables: VariablesConfig = Field(default_factory=VariablesConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    flows: FlowsConfig = Field(default_factory=FlowsConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    @field_validator("storage_url")
    @classmethod
    def _check_storage_url(cls, v: Optional[str]) -> Optional[str]:
        if v:
            parse_storage_url(v)
        return v


def _read_config_file(config_path: str) -> Dict[str, Any]:
    if not os.path.exists(config_path):
        return {}
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return data


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    for env_name, keys in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        target = data
        for key in keys[:-1]:
            section = target.get(key)
            if not isinstance(section, dict):
                section = target[key] = {}
            target = section
        target[keys[-1]] = value


def load_config(path: Optional[str] = None) -> ApiflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APIFLOW_CONFIG env
            variable or 'apiflow.yaml' in the current directory.

    ``APIFLOW_STORAGE_URL``, ``APIFLOW_BASE_URL`` and ``APIFLOW_HTTP_TIMEOUT``
    override the file before validation, so an unsupported storage URL is
    rejected here rather than when storage is first opened.
    """

    config_path = path or os.getenv("APIFLOW_CONFIG", "apiflow.yaml")
    data = _read_config_file(config_path)
    _apply_env_overrides(data)
    return ApiflowConfig.model_validate(data)
