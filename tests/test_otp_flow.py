"""Tests for the password reset flow.

Covers:
- Supersession: one live OTP per user
- Link building and email hand-off
- Expiry, single use and policy checks on consumption
"""

import pytest

from userauth.service.errors import (
    EmailDeliveryError,
    OtpExpiredError,
    OtpNotFoundError,
    ServerError,
    ValidationError,
)
from userauth.service.otp import build_reset_link
from userauth.service.password_policy import LETTER_CASING, SYMBOL_COUNT
from userauth.service.passwords import verify_password
from userauth.storage.errors import StorageError

RESET_URL = "https://app.example.com/reset"


class TestBuildResetLink:
    def test_appends_query(self):
        assert build_reset_link(RESET_URL, "abc") == f"{RESET_URL}?id=abc"

    def test_extends_existing_query(self):
        assert build_reset_link(f"{RESET_URL}?lang=en", "abc") == f"{RESET_URL}?lang=en&id=abc"


class TestRequestReset:
    async def test_unknown_email_creates_nothing(self, runtime, store, email_outbox):
        with pytest.raises(ValidationError) as exc_info:
            await runtime.otp.request_reset("nobody@disney.com", RESET_URL)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "User is not registered."
        assert store.otps == {}
        assert email_outbox.sent == []

    async def test_inactive_user_treated_as_unknown(self, runtime, store, mickey, email_outbox):
        """A soft-deleted account cannot start a reset."""
        runtime.users.delete_user(mickey.id)

        with pytest.raises(ValidationError) as exc_info:
            await runtime.otp.request_reset(mickey.email, RESET_URL)

        assert exc_info.value.message == "User is not registered."
        assert store.list_otps_for_user(mickey.id) == []
        assert email_outbox.sent == []

    async def test_sends_link_with_otp_id(self, runtime, mickey, email_outbox):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)

        assert otp.user_id == mickey.id
        assert email_outbox.sent == [(mickey.email, f"{RESET_URL}?id={otp.id}", 15)]

    async def test_repeated_requests_leave_one_otp(self, runtime, store, mickey):
        """Only the newest record survives."""
        first = await runtime.otp.request_reset(mickey.email, RESET_URL)
        second = await runtime.otp.request_reset(mickey.email, RESET_URL)
        third = await runtime.otp.request_reset(mickey.email, RESET_URL)

        remaining = store.list_otps_for_user(mickey.id)
        assert [o.id for o in remaining] == [third.id]
        assert store.get_otp(first.id) is None
        assert store.get_otp(second.id) is None

    async def test_superseded_link_no_longer_works(self, runtime, mickey):
        first = await runtime.otp.request_reset(mickey.email, RESET_URL)
        await runtime.otp.request_reset(mickey.email, RESET_URL)

        with pytest.raises(OtpNotFoundError):
            runtime.otp.complete_reset(first.id, "Daisy#22")

    async def test_email_failure_removes_otp(self, runtime, store, mickey, email_outbox):
        email_outbox.succeed = False

        with pytest.raises(EmailDeliveryError) as exc_info:
            await runtime.otp.request_reset(mickey.email, RESET_URL)

        assert exc_info.value.status_code == 503
        assert store.list_otps_for_user(mickey.id) == []


class TestCompleteReset:
    async def test_success_updates_hash_and_consumes(self, runtime, store, mickey):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)

        user = runtime.otp.complete_reset(otp.id, "Daisy#22")

        assert verify_password(user.password_hash, "Daisy#22")
        assert not verify_password(user.password_hash, "Minnie#1")
        assert store.get_otp(otp.id) is None

    async def test_second_use_fails(self, runtime, mickey):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        runtime.otp.complete_reset(otp.id, "Daisy#22")

        with pytest.raises(OtpNotFoundError) as exc_info:
            runtime.otp.complete_reset(otp.id, "Daisy#33")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "One time password token was already used."

    def test_unknown_otp(self, runtime):
        with pytest.raises(OtpNotFoundError):
            runtime.otp.complete_reset("does-not-exist", "Daisy#22")

    async def test_expired_keeps_password_and_record(self, runtime, store, mickey, clock):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        clock.advance(minutes=15)

        with pytest.raises(OtpExpiredError) as exc_info:
            runtime.otp.complete_reset(otp.id, "Daisy#22")

        assert exc_info.value.status_code == 400
        assert "expired" in exc_info.value.message
        assert verify_password(store.get_user(mickey.id).password_hash, "Minnie#1")
        assert store.get_otp(otp.id) is not None

    async def test_just_inside_window_is_accepted(self, runtime, mickey, clock):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        clock.advance(minutes=14, seconds=59)

        runtime.otp.complete_reset(otp.id, "Daisy#22")

    async def test_policy_failure_lists_rules_and_keeps_otp(self, runtime, store, mickey):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)

        with pytest.raises(ValidationError) as exc_info:
            runtime.otp.complete_reset(otp.id, "daisy22")

        assert exc_info.value.detail["failed_rules"] == [LETTER_CASING, SYMBOL_COUNT]
        assert store.get_otp(otp.id) is not None
        assert verify_password(store.get_user(mickey.id).password_hash, "Minnie#1")

    async def test_user_gone_consumes_otp(self, runtime, store, mickey):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        store.users.pop(mickey.id)

        with pytest.raises(OtpNotFoundError):
            runtime.otp.complete_reset(otp.id, "Daisy#22")

        assert store.get_otp(otp.id) is None

    async def test_user_deactivated_after_request(self, runtime, store, mickey):
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        runtime.users.delete_user(mickey.id)

        with pytest.raises(OtpNotFoundError):
            runtime.otp.complete_reset(otp.id, "Daisy#22")

        assert verify_password(store.get_user(mickey.id).password_hash, "Minnie#1")
        assert store.get_otp(otp.id) is None

    async def test_failed_save_changes_nothing(self, runtime, store, mickey, monkeypatch):
        """Neither the hash nor the OTP change when the state file cannot be written."""
        otp = await runtime.otp.request_reset(mickey.email, RESET_URL)
        old_hash = store.get_user(mickey.id).password_hash

        def disk_full():
            raise StorageError("disk full")

        monkeypatch.setattr(store, "_persist_state", disk_full)

        with pytest.raises(ServerError) as exc_info:
            runtime.otp.complete_reset(otp.id, "Daisy#22")

        assert exc_info.value.status_code == 500
        assert store.get_user(mickey.id).password_hash == old_hash
        assert store.get_otp(otp.id) is not None

        monkeypatch.undo()
        runtime.otp.complete_reset(otp.id, "Daisy#22")
        assert verify_password(store.get_user(mickey.id).password_hash, "Daisy#22")
