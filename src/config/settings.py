# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings: where state and
artifacts live, which notification backend to use, supersede policy, and
logging. Pipeline definitions are NOT settings; they are registered with the
controller explicitly (see config/pipelines.py).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stagegate.core.errors import ConfigurationError

__all__ = ["ConfigurationError", "Settings", "load_settings"]


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STAGEGATE_",
        extra="ignore",
    )

    # === STATE STORE ===
    state_backend: Literal["json", "sqlite"] = "json"
    state_root: Path = Path("~/.stagegate/state")

    # === ARTIFACTS ===
    artifact_backend: Literal["local", "s3"] = "local"
    artifact_root: Path = Path("~/.stagegate/artifacts")
    artifact_s3_bucket: str = ""
    artifact_s3_prefix: str = "stagegate/artifacts/"
    artifact_s3_region: str = ""
    artifact_retention_days: int = 30

    # === SOURCE ===
    source_provider: Literal["git", "directory"] = "git"
    source_root: Path = Path("~/.stagegate/repos")

    # === BUILD ===
    buildspec_filename: str = "buildspec.yml"
    build_timeout_s: int = 3600
    build_shell: str = "/bin/sh"

    # === DEPLOY ===
    deploy_root: Path = Path("~/.stagegate/environments")

    # === POLICY ===
    supersede_policy: Literal["supersede", "queue"] = "supersede"

    # === APPROVAL ===
    approval_timeout_s: int = 7 * 24 * 3600
    approval_topic: str = "pipeline-approvals"
    # Endpoints (email addresses) subscribed to approval_topic at startup.
    approval_subscribers: list[str] = []

    # === NOTIFICATIONS ===
    notification_backend: Literal["log", "memory", "sns"] = "log"
    notification_sns_topic_arn: str = ""
    notification_sns_region: str = ""
    notification_max_retries: int = 3
    notification_retry_delay_s: float = 1.0

    # === TRIGGER ===
    webhook_secret: str = ""

    # === OUTPUT SURFACE ===
    console_url_template: str = (
        "http://localhost:8080/pipelines/{pipeline}/executions/{execution_id}"
    )

    # === LOGGING ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("approval_timeout_s", "build_timeout_s")
    @classmethod
    def validate_positive_timeout(cls, v: int, info) -> int:  # noqa: N805
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("notification_max_retries", "artifact_retention_days")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:  # noqa: N805
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.artifact_backend == "s3" and not self.artifact_s3_bucket:
            errors.append("ARTIFACT_BACKEND=s3 requires ARTIFACT_S3_BUCKET")

        if self.notification_backend == "sns" and not self.notification_sns_topic_arn:
            errors.append("NOTIFICATION_BACKEND=sns requires NOTIFICATION_SNS_TOPIC_ARN")

        if "{execution_id}" not in self.console_url_template:
            errors.append("CONSOLE_URL_TEMPLATE must contain {execution_id}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
