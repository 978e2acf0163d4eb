"""Configuration management for deka."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

_config_logger = logging.getLogger(__name__)

LogFormat = Literal["plain", "pretty", "json", "logfmt"]


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")
    format: LogFormat = Field(default="plain")


class ApplySettings(BaseModel):
    parallelism: int = Field(default=10, ge=0, description="0 disables the limit")
    timeout_seconds: float = Field(default=300.0, ge=0, description="0 waits indefinitely")
    field_manager: str = Field(default="deka", min_length=1)


class BackoffSettings(BaseModel):
    initial_seconds: float = Field(default=0.4, ge=0)
    multiplier: float = Field(default=5.0, ge=1)
    max_seconds: float = Field(default=30.0, ge=0)
    randomization_factor: float = Field(default=0.5, ge=0, le=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> "BackoffSettings":
        if self.max_seconds < self.initial_seconds:
            raise ValueError("max_seconds must be >= initial_seconds")
        return self


class KubeSettings(BaseModel):
    kubeconfig: str | None = Field(default=None)
    context: str | None = Field(default=None)
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=600)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    apply: ApplySettings = Field(default_factory=ApplySettings)
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    kube: KubeSettings = Field(default_factory=KubeSettings)


ENV_KEYS = {
    "log_level": "DEKA_LOG_LEVEL",
    "log_file": "DEKA_LOG_FILE",
    "log_format": "DEKA_LOG_FORMAT",
    "parallelism": "DEKA_PARALLELISM",
    "timeout": "DEKA_TIMEOUT",
    "field_manager": "DEKA_FIELD_MANAGER",
    "backoff_initial": "DEKA_BACKOFF_INITIAL_SECONDS",
    "backoff_multiplier": "DEKA_BACKOFF_MULTIPLIER",
    "backoff_max": "DEKA_BACKOFF_MAX_SECONDS",
    "backoff_randomization": "DEKA_BACKOFF_RANDOMIZATION",
    "request_timeout": "DEKA_REQUEST_TIMEOUT",
    "kubeconfig": "KUBECONFIG",
    "context": "DEKA_CONTEXT",
}


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_str(key: str) -> str | None:
    value = os.getenv(key)
    if value is None:
        return None
    return value.strip() or None


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    log_file_env = _env_str(ENV_KEYS["log_file"])
    kubeconfig_env = _env_str(ENV_KEYS["kubeconfig"])
    # KUBECONFIG may hold a path list; the kubeconfig loader picks the first entry itself.
    if kubeconfig_env and os.pathsep in kubeconfig_env:
        kubeconfig_env = None

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": str(Path(log_file_env).expanduser()) if log_file_env else None,
            "format": os.getenv(ENV_KEYS["log_format"], LoggingSettings().format)
            .strip()
            .lower(),
        },
        "apply": {
            "parallelism": _env_int(ENV_KEYS["parallelism"], ApplySettings().parallelism),
            "timeout_seconds": _env_float(ENV_KEYS["timeout"], ApplySettings().timeout_seconds),
            "field_manager": os.getenv(
                ENV_KEYS["field_manager"], ApplySettings().field_manager
            ),
        },
        "backoff": {
            "initial_seconds": _env_float(
                ENV_KEYS["backoff_initial"], BackoffSettings().initial_seconds
            ),
            "multiplier": _env_float(ENV_KEYS["backoff_multiplier"], BackoffSettings().multiplier),
            "max_seconds": _env_float(ENV_KEYS["backoff_max"], BackoffSettings().max_seconds),
            "randomization_factor": _env_float(
                ENV_KEYS["backoff_randomization"],
                BackoffSettings().randomization_factor,
            ),
        },
        "kube": {
            "kubeconfig": kubeconfig_env,
            "context": _env_str(ENV_KEYS["context"]),
            "request_timeout_seconds": _env_float(
                ENV_KEYS["request_timeout"],
                KubeSettings().request_timeout_seconds,
            ),
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
