from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from userauth.config import Settings
from userauth.logging import get_logger
from userauth.service.audit import AuditClient
from userauth.service.auth import Authenticator
from userauth.service.email import EmailService
from userauth.service.otp import OtpService
from userauth.service.password_policy import PasswordPolicy
from userauth.service.roles import RoleResolver
from userauth.service.users import UserService
from userauth.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds the service instances for one FastAPI app.

    Built once by ``create_app`` and kept on ``app.state.runtime``; every
    collaborator can be swapped out for tests.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[MemoryStore] = None,
        audit: Optional[AuditClient] = None,
        roles: Optional[RoleResolver] = None,
        email: Optional[EmailService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        logger.info(
            "runtime_init_started",
            service_name=settings.service_name,
            audit_enabled=settings.audit_enabled,
            persistent=bool(settings.state_path),
        )
        self.store = store or MemoryStore(state_path=settings.state_path)
        self.audit = audit or AuditClient(
            enabled=settings.audit_enabled,
            url=settings.audit_url,
            api_key=settings.audit_api_key,
            source=settings.service_name,
            timeout=settings.http_timeout_seconds,
        )
        self.roles = roles or RoleResolver(
            url=settings.rbac_roles_url,
            api_key=settings.rbac_api_key,
            source=settings.service_name,
            timeout=settings.http_timeout_seconds,
        )
        self.email = email or EmailService(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )
        if not self.email.is_configured:
            logger.warning("email_not_configured", message="reset emails will only be logged")
        self.policy = PasswordPolicy.from_settings(settings)
        self.users = UserService(self.store, self.policy)
        self.auth = Authenticator(
            self.store, settings, audit=self.audit, roles=self.roles
        )
        self.otp = OtpService(
            self.store,
            self.email,
            self.policy,
            expiration_minutes=settings.otp_expiration_minutes,
            now=clock,
        )
        if settings.superuser_email and settings.superuser_password:
            self.users.ensure_superuser(
                settings.superuser_email, settings.superuser_password
            )
        logger.info("runtime_init_complete")
