from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from userauth.logging import email_fingerprint, get_logger
from userauth.service.email import EmailService
from userauth.service.errors import (
    EmailDeliveryError,
    OtpExpiredError,
    OtpNotFoundError,
    ServerError,
    ValidationError,
)
from userauth.service.password_policy import PasswordPolicy
from userauth.service.passwords import hash_password
from userauth.storage.errors import StorageError
from userauth.storage.memory import MemoryStore
from userauth.storage.models import OtpRecord, UserRecord, utcnow

logger = get_logger(__name__)


def build_reset_link(reset_url: str, otp_id: str) -> str:
    separator = "&" if "?" in reset_url else "?"
    return f"{reset_url}{separator}id={otp_id}"


class OtpService:
    """Password reset through single-use, time-limited OTP records.

    A user has at most one live record: a new request deletes the previous
    one first. Two concurrent requests for the same user may briefly leave
    two records; the later request wins on the next cycle.
    """

    def __init__(
        self,
        store: MemoryStore,
        email: EmailService,
        policy: PasswordPolicy,
        *,
        expiration_minutes: int,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.email = email
        self.policy = policy
        self.expiration = timedelta(minutes=expiration_minutes)
        self.expiration_minutes = expiration_minutes
        self._now = now or utcnow

    async def request_reset(self, email: str, reset_url: str) -> OtpRecord:
        user = self.store.get_user_by_email(email)
        if not user or not user.is_active:
            logger.warning(
                "password_reset_unknown_user",
                email_fingerprint=email_fingerprint(email),
                inactive=bool(user),
            )
            raise ValidationError(
                "User is not registered.", detail={"field": "email"}
            )

        for existing in self.store.list_otps_for_user(user.id):
            self.store.delete_otp(existing.id)
            logger.info("otp_superseded", user_id=user.id, otp_prefix=existing.id[:8])

        otp = self.store.create_otp(user.id, created_at=self._now())
        logger.info("otp_created", user_id=user.id, otp_prefix=otp.id[:8])
        link = build_reset_link(reset_url, otp.id)
        try:
            sent = await asyncio.to_thread(
                self.email.send_password_reset, user.email, link, self.expiration_minutes
            )
        except Exception:
            self.store.delete_otp(otp.id)
            raise
        if not sent:
            self.store.delete_otp(otp.id)
            logger.error("otp_email_failed", user_id=user.id)
            raise EmailDeliveryError()
        return otp

    def complete_reset(self, otp_id: str, password: str) -> UserRecord:
        """Consume an OTP and set a new password.

        The record is deleted only after the new hash is stored, so a failed
        update leaves the user able to retry with the same link.
        """
        otp = self.store.get_otp(otp_id)
        if not otp:
            logger.warning("otp_not_found", otp_prefix=otp_id[:8])
            raise OtpNotFoundError()

        if self._now() - otp.created_at >= self.expiration:
            logger.warning("otp_expired", user_id=otp.user_id, otp_prefix=otp_id[:8])
            raise OtpExpiredError()

        violations = self.policy.violations(password)
        if violations:
            raise ValidationError(
                "Password does not meet the password policy.",
                detail={"failed_rules": [v["rule"] for v in violations], "errors": violations},
            )

        user = self.store.get_user(otp.user_id)
        if not user or not user.is_active:
            self.store.delete_otp(otp.id)
            logger.warning("otp_user_missing", user_id=otp.user_id)
            raise OtpNotFoundError()

        try:
            updated = self.store.update_user(
                user.id, password_hash=hash_password(password)
            )
        except StorageError as exc:
            logger.error("password_reset_persist_failed", user_id=user.id, error=str(exc))
            raise ServerError("Password could not be updated.") from exc
        if not updated:
            logger.error("password_reset_update_failed", user_id=user.id)
            raise ServerError("Password could not be updated.")
        self.store.delete_otp(otp.id)
        logger.info("password_reset_completed", user_id=user.id)
        return updated
