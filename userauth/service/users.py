from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from userauth.logging import email_fingerprint, get_logger
from userauth.service.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from userauth.service.identity import ALL_OPERATIONS
from userauth.service.password_policy import PasswordPolicy
from userauth.service.passwords import hash_password
from userauth.storage.errors import ConstraintViolation
from userauth.storage.memory import FILTERABLE_FIELDS, SORTABLE_FIELDS, MemoryStore
from userauth.storage.models import UserRecord

logger = get_logger(__name__)


class UserService:
    """User record management on top of the credential store."""

    def __init__(self, store: MemoryStore, policy: PasswordPolicy) -> None:
        self.store = store
        self.policy = policy

    def _hash_checked(self, password: str) -> str:
        violations = self.policy.violations(password)
        if violations:
            raise ValidationError(
                "Password does not meet the password policy.",
                detail={"failed_rules": [v["rule"] for v in violations], "errors": violations},
            )
        return hash_password(password)

    def create_user(
        self,
        *,
        email: str,
        first_name: str,
        last_name: str,
        password: str,
        is_active: bool = True,
        audit: bool = False,
        operation_ids: Optional[Sequence[str]] = None,
        role_ids: Optional[Sequence[str]] = None,
    ) -> UserRecord:
        password_hash = self._hash_checked(password)
        try:
            user = self.store.create_user(
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                is_active=is_active,
                audit=audit,
                operation_ids=operation_ids,
                role_ids=role_ids,
            )
        except ConstraintViolation as exc:
            raise ConflictError("User with this email already exists.", detail=exc.detail) from exc
        logger.info("user_created", user_id=user.id, email_fingerprint=email_fingerprint(email))
        return user

    def update_user(self, user_id: str, changes: Dict[str, Any]) -> UserRecord:
        if not self.store.get_user(user_id):
            raise NotFoundError("User not found.")
        changes = dict(changes)
        password = changes.pop("password", None)
        if password is not None:
            changes["password_hash"] = self._hash_checked(password)
        try:
            updated = self.store.update_user(user_id, **changes)
        except ConstraintViolation as exc:
            raise ConflictError("User with this email already exists.", detail=exc.detail) from exc
        if not updated:
            raise NotFoundError("User not found.")
        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return updated

    def get_user(self, user_id: str) -> UserRecord:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found.")
        return user

    def find_user(
        self, *, entity_id: Optional[str] = None, email: Optional[str] = None
    ) -> UserRecord:
        if entity_id:
            return self.get_user(entity_id)
        if email:
            user = self.store.get_user_by_email(email.strip().lower())
            if not user:
                raise NotFoundError("User not found.")
            return user
        raise BadRequestError("Either entity_id or email must be provided.")

    def list_users(
        self,
        *,
        page_number: int,
        page_size: int,
        is_active: Optional[bool],
        filter_by_field: Optional[str] = None,
        filter_value: Optional[str] = None,
        sort_by: str = "created_at",
    ) -> List[UserRecord]:
        if filter_by_field is not None and filter_by_field not in FILTERABLE_FIELDS:
            raise ValidationError(
                f"Cannot filter by '{filter_by_field}'.",
                detail={"field": "filter_by_field", "allowed": list(FILTERABLE_FIELDS)},
            )
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Cannot sort by '{sort_by}'.",
                detail={"field": "sort_by", "allowed": list(SORTABLE_FIELDS)},
            )
        return self.store.list_users(
            is_active=is_active,
            filter_by_field=filter_by_field,
            filter_value=filter_value,
            sort_by=sort_by,
            offset=(page_number - 1) * page_size,
            limit=page_size,
        )

    def delete_user(self, user_id: str, *, hard_delete: bool = False) -> None:
        if hard_delete:
            if not self.store.hard_delete_user(user_id):
                raise NotFoundError("User not found.")
            logger.info("user_hard_deleted", user_id=user_id)
            return
        if not self.store.soft_delete_user(user_id):
            raise NotFoundError("User not found.")
        logger.info("user_soft_deleted", user_id=user_id)

    def ensure_superuser(self, email: str, password: str) -> UserRecord:
        """Create an active, audited user holding every operation, if absent."""
        email = email.strip().lower()
        existing = self.store.get_user_by_email(email)
        if existing:
            logger.info("superuser_exists", user_id=existing.id)
            return existing
        user = self.create_user(
            email=email,
            first_name="Super",
            last_name="User",
            password=password,
            is_active=True,
            audit=True,
            operation_ids=list(ALL_OPERATIONS),
        )
        logger.info("superuser_created", user_id=user.id)
        return user
