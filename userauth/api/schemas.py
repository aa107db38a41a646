from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from userauth.logging import get_correlation_id
from userauth.service.identity import ALL_OPERATIONS
from userauth.storage.models import UserRecord

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = {chr(c) for c in range(0x202A, 0x202F)}
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(
        c for c in value if c not in zero_width and c not in bidi_overrides
    )
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "invalid_token",
    "token_expired",
    "invalid_credentials",
    "conflict",
    "audit_unavailable",
    "server_error",
    "service_unavailable",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format shared by every route."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 255:
        raise ValueError("email address too long")
    if len(normalized) < 5:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _clean_name(value: Any) -> Any:
    # runs before the length constraints so padding cannot satisfy them
    if isinstance(value, str):
        return _normalize_unicode(value).strip()
    return value


def _validate_operation_ids(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    unknown = [op for op in value if op not in ALL_OPERATIONS]
    if unknown:
        raise ValueError(f"unknown operation ids: {', '.join(unknown)}")
    # duplicates carry no meaning; keep first occurrence order
    return list(dict.fromkeys(value))


def _validate_reset_url(value: str) -> str:
    value = value.strip()
    if not value.lower().startswith(("http://", "https://")):
        raise ValueError("reset_url must be an http(s) URL")
    return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    is_active: bool
    audit: bool
    operation_ids: List[str]
    role_ids: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            audit=user.audit,
            operation_ids=list(user.operation_ids),
            role_ids=list(user.role_ids),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class LoginResponse(BaseModel):
    user_id: str
    first_name: str
    last_name: str
    operations: List[str]
    auth_token: str
    expires_at: int


class UserCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    first_name: str = Field(..., min_length=2, max_length=20)
    last_name: str = Field(..., min_length=2, max_length=40)
    password: str = Field(..., min_length=1, max_length=1024)
    is_active: bool = True
    audit: bool = False
    operation_ids: List[str] = Field(default_factory=list)
    role_ids: List[str] = Field(default_factory=list, max_length=100)

    @field_validator("email")
    @classmethod
    def _validate_create_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return _clean_name(value)

    @field_validator("operation_ids")
    @classmethod
    def _validate_operations(cls, value: List[str]) -> List[str]:
        return _validate_operation_ids(value)


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=20)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=40)
    password: Optional[str] = Field(default=None, min_length=1, max_length=1024)
    is_active: Optional[bool] = None
    audit: Optional[bool] = None
    operation_ids: Optional[List[str]] = None
    role_ids: Optional[List[str]] = Field(default=None, max_length=100)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return _clean_name(value)

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _validate_email(value)

    @field_validator("operation_ids")
    @classmethod
    def _validate_operations(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_operation_ids(value)


class PageLinks(BaseModel):
    base: str
    prev: Optional[str] = None
    next: Optional[str] = None


class UserListResponse(BaseModel):
    page_size: int
    page_number: int
    links: PageLinks = Field(..., serialization_alias="_links")
    results: List[UserResponse]


class PasswordResetRequest(BaseModel):
    email: str
    reset_url: str = Field(..., max_length=2048)

    @field_validator("email")
    @classmethod
    def _validate_password_reset_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("reset_url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _validate_reset_url(value)


class PasswordResetConfirm(BaseModel):
    otp_id: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1, max_length=1024)
