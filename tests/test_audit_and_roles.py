"""Tests for the outbound audit and role service clients."""

import json

import httpx
import pytest

from userauth.service.audit import AuditClient, HttpMethod
from userauth.service.errors import RoleResolutionUnavailableError
from userauth.service.roles import RoleResolver

AUDIT_URL = "http://audit.test/api/v1/audit"
ROLES_URL = "http://rbac.test/api/v1/roles/operations"


def _audit_client(handler, **kwargs):
    options = {
        "enabled": True,
        "url": AUDIT_URL,
        "api_key": "audit-key",
        "source": "user-auth",
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return AuditClient(**options)


def _resolver(handler, **kwargs):
    options = {
        "url": ROLES_URL,
        "api_key": "rbac-key",
        "source": "user-auth",
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return RoleResolver(**options)


def _refuse(request):
    raise httpx.ConnectError("connection refused", request=request)


class TestAuditClient:
    async def test_posts_event(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "evt-1"})

        ok = await _audit_client(handler).record("user-1", HttpMethod.PUT, "Updated user")

        assert ok is True
        request = seen[0]
        assert str(request.url) == AUDIT_URL
        assert request.headers["x-api-key"] == "audit-key"
        body = json.loads(request.content)
        assert body["userId"] == "user-1"
        assert body["method"] == "PUT"
        assert body["source"] == "user-auth"
        assert body["data"] == "Updated user"
        assert "timeStamp" in body

    async def test_disabled_never_calls_out(self):
        def handler(request):
            raise AssertionError("audit service must not be called")

        client = _audit_client(handler, enabled=False)

        assert await client.record("user-1", HttpMethod.GET, "noop") is True

    async def test_error_status_is_failure(self):
        client = _audit_client(lambda request: httpx.Response(500))

        assert await client.record("user-1", HttpMethod.POST, "x") is False

    async def test_connection_refused_is_failure(self):
        assert await _audit_client(_refuse).record("user-1", HttpMethod.POST, "x") is False

    async def test_missing_url_is_failure(self):
        client = _audit_client(lambda request: httpx.Response(200), url=None)

        assert await client.record("user-1", HttpMethod.POST, "x") is False


class TestRoleResolver:
    async def test_resolves_operations(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=["UserList", "UserDelete"])

        operations = await _resolver(handler).resolve(["role-a", "role-b"])

        assert operations == ["UserList", "UserDelete"]
        assert seen == [{"roleIds": ["role-a", "role-b"]}]

    async def test_no_roles_no_call(self):
        def handler(request):
            raise AssertionError("role service must not be called")

        assert await _resolver(handler).resolve([]) == []

    async def test_unreachable(self):
        with pytest.raises(RoleResolutionUnavailableError) as exc_info:
            await _resolver(_refuse).resolve(["role-a"])

        assert exc_info.value.status_code == 503

    async def test_error_status(self):
        with pytest.raises(RoleResolutionUnavailableError):
            await _resolver(lambda request: httpx.Response(502)).resolve(["role-a"])

    @pytest.mark.parametrize(
        "payload",
        [{"operations": ["UserList"]}, ["UserList", 3], "UserList"],
    )
    async def test_unexpected_shape(self, payload):
        with pytest.raises(RoleResolutionUnavailableError):
            await _resolver(lambda request: httpx.Response(200, json=payload)).resolve(
                ["role-a"]
            )

    async def test_unreadable_body(self):
        handler = lambda request: httpx.Response(200, content=b"<html>")  # noqa: E731

        with pytest.raises(RoleResolutionUnavailableError):
            await _resolver(handler).resolve(["role-a"])

    async def test_not_configured(self):
        with pytest.raises(RoleResolutionUnavailableError):
            await _resolver(lambda request: httpx.Response(200), url=None).resolve(["role-a"])
