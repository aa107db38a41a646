from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserRecord:
    id: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    is_active: bool = True
    audit: bool = False
    operation_ids: List[str] = field(default_factory=list)
    role_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class OtpRecord:
    """Single-use password reset grant. At most one exists per user."""

    id: str
    user_id: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, user_id: str, created_at: Optional[datetime] = None) -> "OtpRecord":
        return cls(id=uuid.uuid4().hex, user_id=user_id, created_at=created_at or utcnow())
