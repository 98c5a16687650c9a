"""Shared fixtures: a controllable clock, seeded users, and a wired portal app."""

import base64
import hashlib
from functools import cache

import bcrypt
import pytest

from gatehouse.auth.principal import CredentialRecord, MemoryPrincipalRepository
from gatehouse.config import AppConfig
from gatehouse.factory import create_app
from gatehouse.http.request import Request
from gatehouse.security.audit import set_security_event_sink
from gatehouse.security.passwords import hash_password
from gatehouse.security.throttle_stores import MemoryThrottleStore
from gatehouse.sessions.store import MemorySessionStore

ALICE_PASSWORD = "correct horse battery"
ADMIN_PASSWORD = "admin-password-1"


@cache
def alice_hash() -> str:
    return hash_password(ALICE_PASSWORD)


@cache
def admin_hash() -> str:
    return hash_password(ADMIN_PASSWORD)


def scrypt_hash(password: str, salt: bytes = b"0123456789abcdef") -> str:
    """A ``$scrypt$`` hash as produced by older provisioning scripts."""
    derived = hashlib.scrypt(password.encode("utf-8"), salt=salt, n=2**14, r=8, p=1, dklen=32)
    return "$scrypt$n=16384,r=8,p=1${}${}".format(
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(derived).decode("ascii"),
    )


def php_bcrypt_hash(password: str) -> str:
    """A ``$2y$`` hash as PHP's ``password_hash()`` stores it."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("ascii")
    return "$2y$" + hashed[4:]


class FakeClock:
    """A wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def principals() -> MemoryPrincipalRepository:
    return MemoryPrincipalRepository(
        [
            CredentialRecord(
                id=1,
                role="staff",
                is_active=True,
                password_hash=alice_hash(),
                name="Alice",
                email="alice@example.com",
            ),
            CredentialRecord(
                id=2,
                role="admin",
                is_active=True,
                password_hash=admin_hash(),
                name="Root",
                email="root@example.com",
            ),
            CredentialRecord(
                id=3,
                role="client",
                is_active=False,
                password_hash=alice_hash(),
                client_id=7,
                name="Dormant",
                email="dormant@example.com",
            ),
        ]
    )


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        env="test",
        secret_key="test-secret",
        cors_allowed_origins=("https://portal.example.com",),
    )


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def throttle_store() -> MemoryThrottleStore:
    return MemoryThrottleStore()


@pytest.fixture
def portal(config, principals, session_store, throttle_store, clock):
    return create_app(
        config,
        principals=principals,
        session_store=session_store,
        throttle_store=throttle_store,
        clock=clock,
    )


@pytest.fixture
def events():
    """Security events emitted during the test."""
    captured = []
    set_security_event_sink(captured.append)
    yield captured
    set_security_event_sink(None)


def make_request(
    method: str = "GET",
    path: str = "/",
    *,
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    client: tuple[str, int] | None = ("127.0.0.1", 50000),
    trusted_proxy_header: str | None = None,
) -> Request:
    """Build a Request directly from an ASGI scope."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "client": client,
    }
    sent = False

    async def receive() -> dict:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request.from_asgi(scope, receive, trusted_proxy_header=trusted_proxy_header)
