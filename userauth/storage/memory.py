from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from userauth.logging import get_logger
from userauth.storage.errors import ConstraintViolation, StorageError
from userauth.storage.models import OtpRecord, UserRecord, utcnow

FILTERABLE_FIELDS = ("first_name", "last_name", "email", "is_active", "audit")
SORTABLE_FIELDS = FILTERABLE_FIELDS + ("created_at", "updated_at")
_UPDATABLE_FIELDS = frozenset(
    {
        "email",
        "first_name",
        "last_name",
        "password_hash",
        "is_active",
        "audit",
        "operation_ids",
        "role_ids",
    }
)


def _field_matches(user: UserRecord, field_name: str, raw_value: str) -> bool:
    """Match a query-string value against a user field.

    Strings match case-insensitively as substrings, booleans accept
    ``true``/``false`` and anything else is compared as an integer.
    """
    current = getattr(user, field_name)
    if isinstance(current, bool):
        lowered = raw_value.strip().lower()
        if lowered not in {"true", "false"}:
            return False
        return current is (lowered == "true")
    if isinstance(current, str):
        return raw_value.lower() in current.lower()
    try:
        return current == int(raw_value)
    except (TypeError, ValueError):
        return False


class MemoryStore:
    """Thread-safe in-memory store for users and one-time password records."""

    def __init__(self, state_path: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, UserRecord] = {}
        self.otps: Dict[str, OtpRecord] = {}
        # RLock so persistence can run inside a mutating operation
        self._data_lock = threading.RLock()
        self.state_path = Path(state_path) if state_path else None
        if self.state_path is not None:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            if self._load_state():
                self.logger.info(
                    "memory_store_state_loaded",
                    users=len(self.users),
                    otps=len(self.otps),
                )

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # users
    def create_user(
        self,
        *,
        email: str,
        first_name: str,
        last_name: str,
        password_hash: str,
        is_active: bool = True,
        audit: bool = False,
        operation_ids: Optional[Sequence[str]] = None,
        role_ids: Optional[Sequence[str]] = None,
    ) -> UserRecord:
        with self._data_lock:
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = UserRecord(
                id=str(uuid.uuid4()),
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                is_active=is_active,
                audit=audit,
                operation_ids=list(operation_ids or []),
                role_ids=list(role_ids or []),
            )
            self.users[user.id] = user
            try:
                self._persist_state()
            except StorageError:
                del self.users[user.id]
                raise
            return user

    def _email_taken(self, email: str, *, exclude_id: Optional[str] = None) -> bool:
        lowered = email.lower()
        return any(
            existing.email.lower() == lowered and existing.id != exclude_id
            for existing in self.users.values()
        )

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def update_user(self, user_id: str, **changes: Any) -> Optional[UserRecord]:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {', '.join(sorted(unknown))}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            email = changes.get("email")
            if email is not None and self._email_taken(email, exclude_id=user_id):
                raise ConstraintViolation("email already exists", {"field": "email"})
            previous = {name: getattr(user, name) for name in changes}
            previous["updated_at"] = user.updated_at
            for name, value in changes.items():
                if name in {"operation_ids", "role_ids"}:
                    value = list(value)
                setattr(user, name, value)
            user.updated_at = utcnow()
            try:
                self._persist_state()
            except StorageError:
                # memory must not run ahead of the state file
                for name, value in previous.items():
                    setattr(user, name, value)
                raise
            return user

    def soft_delete_user(self, user_id: str) -> Optional[UserRecord]:
        return self.update_user(user_id, is_active=False)

    def hard_delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            user = self.users.pop(user_id, None)
            if user is None:
                return False
            removed = [o for o in self.otps.values() if o.user_id == user_id]
            for otp in removed:
                self.otps.pop(otp.id, None)
            try:
                self._persist_state()
            except StorageError:
                self.users[user_id] = user
                self.otps.update((otp.id, otp) for otp in removed)
                raise
            return True

    def list_users(
        self,
        *,
        is_active: Optional[bool] = True,
        filter_by_field: Optional[str] = None,
        filter_value: Optional[str] = None,
        sort_by: str = "created_at",
        offset: int = 0,
        limit: int = 10,
    ) -> List[UserRecord]:
        if filter_by_field is not None and filter_by_field not in FILTERABLE_FIELDS:
            raise ValueError(f"cannot filter by {filter_by_field}")
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"cannot sort by {sort_by}")
        with self._data_lock:
            results = [
                u
                for u in self.users.values()
                if is_active is None or u.is_active is is_active
            ]
            if filter_by_field and filter_value is not None:
                results = [
                    u for u in results if _field_matches(u, filter_by_field, filter_value)
                ]
            results.sort(key=lambda u: (getattr(u, sort_by), u.id))
            return results[offset : offset + limit]

    # one-time passwords
    def create_otp(
        self, user_id: str, *, created_at: Optional[datetime] = None
    ) -> OtpRecord:
        with self._data_lock:
            otp = OtpRecord.new(user_id, created_at)
            self.otps[otp.id] = otp
            try:
                self._persist_state()
            except StorageError:
                del self.otps[otp.id]
                raise
            return otp

    def get_otp(self, otp_id: str) -> Optional[OtpRecord]:
        with self._data_lock:
            return self.otps.get(otp_id)

    def get_otp_for_user(self, user_id: str) -> Optional[OtpRecord]:
        with self._data_lock:
            return next((o for o in self.otps.values() if o.user_id == user_id), None)

    def list_otps_for_user(self, user_id: str) -> List[OtpRecord]:
        with self._data_lock:
            return [o for o in self.otps.values() if o.user_id == user_id]

    def delete_otp(self, otp_id: str) -> bool:
        with self._data_lock:
            otp = self.otps.pop(otp_id, None)
            if otp is None:
                return False
            try:
                self._persist_state()
            except StorageError:
                self.otps[otp_id] = otp
                raise
            return True

    # persistence
    def _persist_state(self) -> None:
        if self.state_path is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "otps": [self._serialize_otp(o) for o in self.otps.values()],
        }
        tmp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(state, indent=2))
            tmp_path.replace(self.state_path)
        except OSError as exc:
            raise StorageError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        try:
            data = json.loads(self.state_path.read_text())
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as exc:
            raise StorageError(f"failed to load state from {self.state_path}: {exc}") from exc
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.otps = {o["id"]: self._deserialize_otp(o) for o in data.get("otps", [])}
        return True

    def _serialize_user(self, user: UserRecord) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "password_hash": user.password_hash,
            "is_active": user.is_active,
            "audit": user.audit,
            "operation_ids": list(user.operation_ids),
            "role_ids": list(user.role_ids),
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> UserRecord:
        return UserRecord(
            id=str(data["id"]),
            email=data["email"],
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            password_hash=data["password_hash"],
            is_active=data.get("is_active", True),
            audit=data.get("audit", False),
            operation_ids=list(data.get("operation_ids", [])),
            role_ids=list(data.get("role_ids", [])),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(
                data.get("updated_at", data["created_at"])
            ),
        )

    def _serialize_otp(self, otp: OtpRecord) -> dict:
        return {
            "id": otp.id,
            "user_id": otp.user_id,
            "created_at": self._serialize_datetime(otp.created_at),
        }

    def _deserialize_otp(self, data: dict) -> OtpRecord:
        return OtpRecord(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            created_at=self._deserialize_datetime(data["created_at"]),
        )
