from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from userauth.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class EnvSettings(BaseModel):
    """Frozen settings loaded from the environment with a .env fallback."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "EnvSettings":
        env_file_values = dotenv_values(env_file)
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_file_values.get(env_name) is not None:
                merged[name] = env_file_values[env_name]
        return cls(**merged)


class PasswordSettings(EnvSettings):
    """Password policy bounds, shared by the service and the admin scripts."""

    password_min_length: int = env_field(5, "PASSWORD_MIN_LENGTH", ge=1)
    password_max_length: int = env_field(12, "PASSWORD_MAX_LENGTH", ge=1)
    password_min_uppercase: int = env_field(1, "PASSWORD_MIN_UPPERCASE", ge=0)
    password_min_symbols: int = env_field(1, "PASSWORD_MIN_SYMBOLS", ge=0)

    @model_validator(mode="after")
    def _check_password_bounds(self) -> "PasswordSettings":
        if self.password_min_length > self.password_max_length:
            raise ValueError("PASSWORD_MIN_LENGTH cannot exceed PASSWORD_MAX_LENGTH")
        return self


class Settings(PasswordSettings):
    """Immutable service settings, read once from the environment at startup."""

    service_name: str = env_field("user-auth", "SERVICE_NAME")
    jwt_secret: str = env_field(
        None,
        "JWT_SECRET",
        validate_default=True,
        description="Symmetric HS256 signing secret shared by all instances",
    )
    access_token_ttl_minutes: int = env_field(
        60, "ACCESS_TOKEN_TTL_MINUTES", gt=0, description="Bearer token lifetime"
    )
    otp_expiration_minutes: int = env_field(
        15,
        "OTP_EXPIRATION_MINUTES",
        gt=0,
        description="Minutes a password reset link stays valid",
    )
    # Audit sink
    audit_enabled: bool = env_field(False, "AUDIT_ENABLED")
    audit_url: Optional[str] = env_field(None, "AUDIT_URL")
    audit_api_key: Optional[str] = env_field(None, "AUDIT_API_KEY")
    # Role service
    rbac_roles_url: Optional[str] = env_field(None, "RBAC_ROLES_URL")
    rbac_api_key: Optional[str] = env_field(None, "RBAC_API_KEY")
    http_timeout_seconds: float = env_field(
        10.0, "HTTP_TIMEOUT_SECONDS", gt=0, description="Timeout for audit and role calls"
    )
    # Email service settings
    smtp_host: Optional[str] = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: Optional[str] = env_field(None, "SMTP_USER")
    smtp_password: Optional[str] = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: Optional[str] = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("User Auth", "EMAIL_FROM_NAME")
    # Storage
    state_path: Optional[str] = env_field(
        None,
        "STATE_PATH",
        description="JSON file the in-memory store persists to; unset keeps state in memory only",
    )
    # Optional super user seeded at startup
    superuser_email: Optional[str] = env_field(None, "SUPERUSER_EMAIL")
    superuser_password: Optional[str] = env_field(None, "SUPERUSER_PASSWORD")

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _require_jwt_secret(cls, value: Optional[str]) -> str:
        if not value or not str(value).strip():
            raise ValueError("JWT_SECRET must be set")
        return value

    @field_validator(
        "audit_url",
        "audit_api_key",
        "rbac_roles_url",
        "rbac_api_key",
        "smtp_host",
        "smtp_user",
        "smtp_password",
        "email_from_address",
        "state_path",
        "superuser_email",
        "superuser_password",
    )
    @classmethod
    def _blank_as_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.audit_enabled and not self.audit_url:
            raise ValueError("AUDIT_URL must be set when AUDIT_ENABLED is true")
        if bool(self.superuser_email) != bool(self.superuser_password):
            logger.warning(
                "superuser_seed_incomplete",
                message="SUPERUSER_EMAIL and SUPERUSER_PASSWORD must both be set",
            )
        return self
