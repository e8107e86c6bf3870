"""Shared pytest fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from argon2 import PasswordHasher

from masterguard.core.auth import (
    AuthGateway,
    CredentialVerifier,
    InvalidCredentialsError,
    LocalCredentialVerifier,
    LoginAttemptTracker,
    SessionManager,
)
from masterguard.core.crypto import TokenCipher
from masterguard.core.models import Principal
from masterguard.db import MemoryStore, SessionStore
from masterguard.security.audit import AlertStore, SecurityEventLog, StoreAuditSink


START = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start=START):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeVerifier(CredentialVerifier):
    """In-memory identity provider that records every call."""

    def __init__(self):
        self.users = {}
        self.roles = {}
        self.verify_calls = []
        self.signed_out = []

    def add_user(self, email, password, roles=("master",)):
        principal = Principal(id=f"uid-{len(self.users) + 1}", email=email)
        self.users[email] = (password, principal)
        self.roles[principal.id] = set(roles)
        return principal

    def verify(self, identifier, secret):
        self.verify_calls.append(identifier)
        entry = self.users.get(identifier)
        if entry is None or entry[0] != secret:
            raise InvalidCredentialsError("bad credentials")
        return entry[1]

    def has_role(self, principal_id, role):
        return role in self.roles.get(principal_id, set())

    def sign_out(self, principal_id):
        self.signed_out.append(principal_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cipher():
    return TokenCipher(TokenCipher.generate_key())


@pytest.fixture
def event_log(store, clock):
    return SecurityEventLog(StoreAuditSink(store), clock=clock)


@pytest.fixture
def alerts(store, clock, event_log):
    alert_store = AlertStore(store, clock=clock)
    event_log.add_alert_handler(alert_store)
    return alert_store


@pytest.fixture
def fast_hasher():
    """Argon2 hasher with minimal cost so tests stay quick."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def local_verifier(store, fast_hasher):
    return LocalCredentialVerifier(store, hasher=fast_hasher)


@pytest.fixture
def verifier():
    fake = FakeVerifier()
    fake.add_user("user@x.ch", "correct-horse")
    fake.add_user("staff@x.ch", "staff-pass", roles=("staff",))
    return fake


@pytest.fixture
def tracker(store, clock):
    return LoginAttemptTracker(store, clock=clock)


@pytest.fixture
def sessions(store, cipher, event_log, clock):
    return SessionManager(SessionStore(store), cipher, event_log, clock=clock)


@pytest.fixture
def gateway(verifier, tracker, sessions, event_log, clock):
    gw = AuthGateway(
        verifier,
        tracker,
        sessions,
        event_log,
        start_monitors=False,
        clock=clock,
    )
    yield gw
    gw.shutdown()


@pytest.fixture
def principal():
    return Principal(id="uid-42", email="ops@x.ch")
