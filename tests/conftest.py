import pytest

import walletlink.signing as signing_module
from walletlink import (
    MemorySessionStore,
    MemoryUserStore,
    SessionManager,
    UserLinkingManager,
    generate_keypair,
    load_private_key,
)


class FakeClock:
    """Controllable replacement for time.time_ns()."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms * 1_000_000

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(signing_module.time, "time_ns", fake)
    return fake


@pytest.fixture
def keypair():
    """(private_key, public_key_b58)"""
    private_b58, public_b58 = generate_keypair()
    return load_private_key(private_b58), public_b58


@pytest.fixture
def session_store():
    return MemorySessionStore()


@pytest.fixture
def session_manager(session_store):
    return SessionManager(session_store, default_ttl_ms=60_000)


@pytest.fixture
def user_store():
    return MemoryUserStore()


@pytest.fixture
def linking_manager(user_store):
    return UserLinkingManager(user_store)
