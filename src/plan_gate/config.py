"""Configuration management for the plan policy gate."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class PolicySettings(BaseModel):
    path: str = Field(default="./policies/terraform")
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Rules evaluated concurrently; results are merged in rule order.",
    )


class SigningSettings(BaseModel):
    """Identity pinning for plan verification.

    Leaving both identity and issuer unset selects permissive verification:
    any signer is accepted and the result is marked "no identity pinned".
    """

    certificate_identity: str | None = Field(default=None)
    certificate_oidc_issuer: str | None = Field(default=None)
    trusted_roots_path: str | None = Field(default=None)

    @field_validator("certificate_identity", "certificate_oidc_issuer", "trusted_roots_path")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def identity_pinned(self) -> bool:
        return bool(self.certificate_identity or self.certificate_oidc_issuer)


class StorageSettings(BaseModel):
    artifact_path: str = Field(default="./data/artifacts")
    plan_file: str = Field(default="tfplan")
    plan_json_file: str = Field(default="tfplan.json")
    bundle_file: str = Field(default="tfplan.bundle")


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    signing: SigningSettings = Field(default_factory=SigningSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "policy_path": "POLICY_DIR",
    "policy_max_workers": "POLICY_MAX_WORKERS",
    "certificate_identity": "CERTIFICATE_IDENTITY",
    "certificate_oidc_issuer": "CERTIFICATE_OIDC_ISSUER",
    "trusted_roots_path": "TRUSTED_ROOTS_PATH",
    "artifact_path": "ARTIFACT_PATH",
    "plan_file": "PLAN_FILE",
    "plan_json_file": "PLAN_JSON_FILE",
    "bundle_file": "BUNDLE_FILE",
}


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


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


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    trusted_roots_env = os.getenv(ENV_KEYS["trusted_roots_path"], "").strip()

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "policy": {
            "path": _resolve_path(os.getenv(ENV_KEYS["policy_path"], PolicySettings().path)),
            "max_workers": _env_int(
                ENV_KEYS["policy_max_workers"],
                PolicySettings().max_workers,
            ),
        },
        "signing": {
            "certificate_identity": os.getenv(ENV_KEYS["certificate_identity"]),
            "certificate_oidc_issuer": os.getenv(ENV_KEYS["certificate_oidc_issuer"]),
            "trusted_roots_path": _resolve_path(trusted_roots_env) if trusted_roots_env else None,
        },
        "storage": {
            "artifact_path": _resolve_path(
                os.getenv(ENV_KEYS["artifact_path"], StorageSettings().artifact_path)
            ),
            "plan_file": os.getenv(ENV_KEYS["plan_file"], StorageSettings().plan_file),
            "plan_json_file": os.getenv(
                ENV_KEYS["plan_json_file"], StorageSettings().plan_json_file
            ),
            "bundle_file": os.getenv(ENV_KEYS["bundle_file"], StorageSettings().bundle_file),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    return settings
