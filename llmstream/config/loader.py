"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llmstream.models.capabilities import ReasoningMode
from llmstream.models.decoder import FIELD_MAPPINGS

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class EndpointSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore", populate_by_name=True)
    base_url: str = "http://localhost:11434/v1"
    api_key: str = Field(default="", alias="OPENAI_API_KEY")
    model_name: str = "llama3.2"
    timeout_seconds: float = 120.0
    include_usage: bool = True


class StreamingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STREAM_", extra="ignore")
    reasoning_start_tag: str = "<think>"
    reasoning_end_tag: str = "</think>"
    default_reasoning_mode: ReasoningMode = ReasoningMode.NONE
    # Ordered regex -> mode table; empty means the built-in model-name table.
    model_reasoning_modes: dict[str, ReasoningMode] = Field(default_factory=dict)
    # None: stop at the finish reason unless usage was requested (then read on to [DONE]).
    complete_on_finish_reason: Optional[bool] = None
    field_mapping: str = "openai"
    max_workers: int = 4

    @field_validator("field_mapping")
    @classmethod
    def _known_mapping(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in FIELD_MAPPINGS:
            raise ValueError(f"unknown field mapping {v!r}")
        return v


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore", populate_by_name=True)
    level: str = "INFO"
    json_output: bool = Field(default=True, alias="LOG_JSON")


class Config(BaseSettings):
    """Library config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    endpoint: EndpointSettings = Field(default_factory=EndpointSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_name = os.getenv("LLMSTREAM_ENV", "")
        if env_name:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_name}.yaml")))
        base_url = os.getenv("OPENAI_BASE_URL")
        if base_url:
            yaml_data.setdefault("endpoint", {})["base_url"] = base_url
        api_key = os.getenv("OPENAI_API_KEY")
        if api_key:
            yaml_data.setdefault("endpoint", {})["OPENAI_API_KEY"] = api_key
        mode = os.getenv("STREAM_REASONING_MODE")
        if mode:
            yaml_data.setdefault("streaming", {})["default_reasoning_mode"] = mode
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)


def model_patterns(settings: StreamingSettings) -> Optional[list[tuple[str, ReasoningMode]]]:
    """Pattern table for PatternCapabilityResolver, or None to use the built-in one."""
    if not settings.model_reasoning_modes:
        return None
    return list(settings.model_reasoning_modes.items())
