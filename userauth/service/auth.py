from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from userauth.config import Settings
from userauth.logging import email_fingerprint, get_logger
from userauth.service import tokens
from userauth.service.audit import AuditClient, HttpMethod
from userauth.service.errors import (
    AuditUnavailableError,
    InvalidCredentialsError,
    NotRegisteredError,
)
from userauth.service.passwords import verify_password
from userauth.service.roles import RoleResolver
from userauth.service.tokens import TokenPayload
from userauth.storage.models import UserRecord

logger = get_logger(__name__)

UNKNOWN_USER_ID = "unknown"


class CredentialStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...

    def get_user(self, user_id: str) -> Optional[UserRecord]: ...


@dataclass
class LoginResult:
    user: UserRecord
    token: str
    payload: TokenPayload


class Authenticator:
    """Checks email/password pairs and issues bearer tokens."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        audit: AuditClient,
        roles: RoleResolver,
    ) -> None:
        self.store = store
        self.settings = settings
        self.audit = audit
        self.roles = roles
        self.logger = logger

    async def authenticate(
        self, email: str, password: str, *, now: Optional[float] = None
    ) -> LoginResult:
        """Verify credentials and issue a token.

        Unknown, inactive and wrong-password attempts all raise an
        ``InvalidCredentialsError`` with the same message; only the logs and
        the audit trail tell them apart. Audit of a failed attempt is best
        effort, audit of a successful one is mandatory (424 otherwise).
        """
        user = self.store.get_user_by_email(email)
        if not user or not user.is_active:
            self.logger.warning(
                "login_unregistered",
                email_fingerprint=email_fingerprint(email),
                inactive=bool(user),
            )
            await self._audit_failure(
                UNKNOWN_USER_ID, f"Login attempt for unregistered user: {email}"
            )
            raise NotRegisteredError()

        if not verify_password(user.password_hash, password):
            self.logger.warning("login_invalid_password", user_id=user.id)
            await self._audit_failure(user.id, f"Invalid password for user: {email}")
            raise InvalidCredentialsError()

        operations = await self.resolve_operations(user)

        recorded = await self.audit.record(
            user.id, HttpMethod.POST, f"User authenticated: {email}"
        )
        if not recorded:
            self.logger.error("login_audit_unavailable", user_id=user.id)
            raise AuditUnavailableError("Audit server not available")

        token, payload = tokens.issue(
            user.id,
            operations,
            user.audit,
            secret=self.settings.jwt_secret,
            ttl_seconds=self.settings.access_token_ttl_minutes * 60,
            now=now,
        )
        self.logger.info(
            "login_succeeded",
            user_id=user.id,
            operation_count=len(payload.operations),
            expires_at=payload.exp,
        )
        return LoginResult(user=user, token=token, payload=payload)

    async def resolve_operations(self, user: UserRecord) -> List[str]:
        """Direct operation ids followed by those conferred by the user's roles."""
        operations = list(user.operation_ids)
        if user.role_ids:
            operations.extend(await self.roles.resolve(user.role_ids))
        return operations

    async def _audit_failure(self, user_id: str, data: str) -> None:
        if not await self.audit.record(user_id, HttpMethod.POST, data):
            self.logger.error("login_failure_audit_unavailable", user_id=user_id)
