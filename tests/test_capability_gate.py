"""Tests for identity resolution and the capability gate."""

import random

import pytest

from userauth.service import tokens
from userauth.service.errors import (
    ExpiredTokenError,
    ForbiddenError,
    InvalidTokenError,
    NoTokenError,
    ServerError,
)
from userauth.service.identity import (
    ALL_OPERATIONS,
    Identity,
    Operation,
    authorize,
    check,
    identity_from_token,
)

SECRET = "gate-secret"


class TestIdentityFromToken:
    def test_missing_token(self):
        with pytest.raises(NoTokenError) as exc_info:
            identity_from_token(None, SECRET)
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Access denied. No token provided."

    def test_blank_token_counts_as_missing(self):
        with pytest.raises(NoTokenError):
            identity_from_token("   ", SECRET)

    def test_invalid_token(self):
        with pytest.raises(InvalidTokenError) as exc_info:
            identity_from_token("not-a-token", SECRET)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid token."

    def test_expired_token(self):
        token, payload = tokens.issue("u", [], False, secret=SECRET, ttl_seconds=60, now=1000)

        with pytest.raises(ExpiredTokenError) as exc_info:
            identity_from_token(token, SECRET, now=payload.exp)
        assert exc_info.value.message == "Authentication token expired"

    def test_identity_mirrors_payload(self):
        token, _ = tokens.issue(
            "user-9", ["UserList", "UserList"], True, secret=SECRET, ttl_seconds=60
        )

        identity = identity_from_token(token, SECRET)

        assert identity == Identity(
            user_id="user-9", operations=frozenset({"UserList"}), audit=True
        )


class TestCheck:
    def test_enum_and_string_forms_agree(self):
        identity = Identity(user_id="u", operations=frozenset({"UserUpsert"}), audit=False)

        assert check(identity, Operation.USER_UPSERT) is True
        assert check(identity, "UserUpsert") is True
        assert check(identity, Operation.USER_DELETE) is False

    def test_exact_match_only(self):
        """No wildcard, prefix or case folding."""
        identity = Identity(user_id="u", operations=frozenset({"User*", "userlist"}), audit=False)

        assert check(identity, "UserList") is False
        assert check(identity, "User") is False

    def test_allow_iff_member_randomized(self):
        """Gate decision equals set membership for random grants and queries."""
        rng = random.Random(20240517)
        universe = list(ALL_OPERATIONS) + [f"Op{i}" for i in range(20)]
        for _ in range(500):
            granted = frozenset(rng.sample(universe, rng.randint(0, len(universe))))
            identity = Identity(user_id="u", operations=granted, audit=rng.random() < 0.5)
            query = rng.choice(universe + ["", "Missing"])
            assert check(identity, query) is (query in granted)


class TestAuthorize:
    def test_allowed_returns_none(self):
        identity = Identity(user_id="u", operations=frozenset({"UserList"}), audit=False)

        assert authorize(identity, Operation.USER_LIST, "Forbidden listing users") is None

    def test_denied_uses_route_message(self):
        identity = Identity(user_id="u", operations=frozenset({"UserList"}), audit=False)

        with pytest.raises(ForbiddenError) as exc_info:
            authorize(identity, Operation.USER_DELETE, "Forbidden deleting users")

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Forbidden deleting users"
        assert "UserList" not in str(exc_info.value.detail)

    def test_malformed_identity_is_server_error(self):
        """Evaluation failures never fall through to allow."""
        broken = Identity(user_id="u", operations=None, audit=False)

        with pytest.raises(ServerError) as exc_info:
            authorize(broken, Operation.USER_LIST, "Forbidden listing users")
        assert exc_info.value.status_code == 500

    def test_missing_identity_is_server_error(self):
        with pytest.raises(ServerError):
            authorize(None, Operation.USER_LIST, "Forbidden listing users")
