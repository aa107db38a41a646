import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Environment must be in place before anything reads Settings.from_env()
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userauth.app import create_app  # noqa: E402
from userauth.config import Settings  # noqa: E402
from userauth.service.audit import HttpMethod  # noqa: E402
from userauth.service.errors import RoleResolutionUnavailableError  # noqa: E402
from userauth.service.runtime import Runtime  # noqa: E402
from userauth.storage.memory import MemoryStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"
MICKEY_EMAIL = "mickey.mouse@disney.com"
MICKEY_PASSWORD = "Minnie#1"


class RecordingAudit:
    """Audit sink double that remembers events and can be told to fail."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.events = []

    async def record(self, user_id, method, data):
        self.events.append((user_id, HttpMethod(method).value, data))
        return self.succeed


class StaticRoles:
    """Role service double backed by a dict of role id -> operation ids."""

    def __init__(self, mapping=None, fail: bool = False):
        self.mapping = mapping or {}
        self.fail = fail
        self.calls = []

    async def resolve(self, role_ids):
        self.calls.append(list(role_ids))
        if self.fail:
            raise RoleResolutionUnavailableError()
        return [op for role_id in role_ids for op in self.mapping.get(role_id, [])]


class RecordingEmail:
    is_configured = True

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def send_password_reset(self, to_email, reset_link, expiration_minutes):
        self.sent.append((to_email, reset_link, expiration_minutes))
        return self.succeed


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def __call__(self):
        return self.now


@pytest.fixture
def settings():
    return Settings(
        jwt_secret=TEST_SECRET,
        access_token_ttl_minutes=15,
        otp_expiration_minutes=15,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def roles():
    return StaticRoles({"role-admin": ["UserDelete"], "role-reader": ["UserList"]})


@pytest.fixture
def email_outbox():
    return RecordingEmail()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runtime(settings, store, audit, roles, email_outbox, clock):
    return Runtime(
        settings,
        store=store,
        audit=audit,
        roles=roles,
        email=email_outbox,
        clock=clock,
    )


@pytest.fixture
def app(runtime):
    return create_app(runtime=runtime)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def mickey(runtime):
    """Active user holding UserUpsert and UserList directly."""
    return runtime.users.create_user(
        email=MICKEY_EMAIL,
        first_name="Mickey",
        last_name="Mouse",
        password=MICKEY_PASSWORD,
        operation_ids=["UserUpsert", "UserList"],
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
