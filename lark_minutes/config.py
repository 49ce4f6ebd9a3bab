"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lark_minutes.core.retry import RetryConfig

# Transcript polling backs off longer than the generic retry defaults
TRANSCRIPT_RETRY_DEFAULTS: dict[str, Any] = {
    "max_retries": 5,
    "initial_delay_ms": 5000,
    "max_delay_ms": 60_000,
}


class LarkConfig(BaseModel):
    app_id: str = ""
    app_secret: str = ""
    base_url: str = "https://open.larksuite.com"
    # Event subscription credentials from the Lark developer console
    encrypt_key: str = ""
    verification_token: str = ""
    timeout_seconds: float = 30.0


class LLMConfig(BaseModel):
    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 8000
    temperature: float = 0.3
    parse_retries: int = 2
    max_transcript_tokens: int = 150_000
    language: Literal["ja", "en"] = "ja"


class WebhookConfig(BaseModel):
    bind: str = "0.0.0.0"
    port: int = 8420
    path: str = "/webhook/lark/meeting-ended"
    skip_signature_verification: bool = False


class PipelineConfig(BaseModel):
    transcript_ready_delay_ms: int = 30_000
    transcript_retry: RetryConfig = Field(
        default_factory=lambda: RetryConfig(**TRANSCRIPT_RETRY_DEFAULTS)
    )
    default_access_token: str = ""
    notify_host: bool = True

    @field_validator("transcript_retry", mode="before")
    @classmethod
    def _layer_transcript_defaults(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {**TRANSCRIPT_RETRY_DEFAULTS, **value}
        return value


class StorageConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "sqlite"
    db_path: str = "data/minutes.db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LARK_MINUTES_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    lark: LarkConfig = Field(default_factory=LarkConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = "INFO"
    log_json: bool = False

    def get_db_path(self) -> Path:
        return Path(self.storage.db_path).expanduser()


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config.

    ``overrides`` (e.g. from CLI flags) win over the YAML file.
    """
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("LARK_MINUTES_CONFIG")
    if config_path is None:
        default = Path.cwd() / "config.yaml"
        if default.exists():
            config_path = default

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    if overrides:
        yaml_data = _deep_merge(yaml_data, overrides)

    # Build settings: YAML values as init kwargs
    return Settings(**yaml_data)
