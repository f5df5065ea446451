"""Wallet session management.

Sessions are looked up by an opaque random id and expire lazily: an expired
session reads as missing even before the background sweep removes it.
"""

import asyncio
import dataclasses
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .signing import now_ms, truncate_public_key
from .types import WalletSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_MS = 86_400_000  # 24 hours
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0


def generate_session_id() -> str:
    """32 hex characters from a CSPRNG."""
    return secrets.token_hex(16)


class SessionStore(ABC):
    """Persistence interface for wallet sessions.

    Each call must be atomic on its own. Backends (Redis, SQL) implement
    these four methods; ``get`` may return expired sessions, the manager
    filters them.
    """

    @abstractmethod
    async def set(self, session_id: str, session: WalletSession) -> None:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[WalletSession]:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session. Missing ids are ignored."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Drop every expired session."""


class MemorySessionStore(SessionStore):
    """In-process session store for development and tests."""

    def __init__(self):
        self._sessions: Dict[str, WalletSession] = {}

    async def set(self, session_id: str, session: WalletSession) -> None:
        self._sessions[session_id] = session

    async def get(self, session_id: str) -> Optional[WalletSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(now_ms()):
            del self._sessions[session_id]
            return None
        return dataclasses.replace(session, metadata=dict(session.metadata))

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def cleanup(self) -> None:
        now = now_ms()
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Removed %d expired sessions", len(expired))

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    """Issues, reads, refreshes and expires wallet sessions.

    Usage:
        manager = SessionManager(MemorySessionStore())
        async with manager:  # runs the background sweep
            session_id = await manager.create_session(public_key, user_id=user.id)
            session = await manager.get_session(session_id)
    """

    def __init__(
        self,
        store: SessionStore,
        default_ttl_ms: int = DEFAULT_SESSION_TTL_MS,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ):
        """Initialize the manager.

        Args:
            store: Session persistence backend
            default_ttl_ms: Session lifetime when none is given (default: 24h)
            cleanup_interval_seconds: Period of the background sweep
        """
        self.store = store
        self.default_ttl_ms = default_ttl_ms
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._cleanup_task: Optional[asyncio.Task] = None

    async def create_session(
        self,
        public_key: str,
        user_id: Optional[str] = None,
        ttl_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a session for a verified public key.

        Returns:
            The new session id.
        """
        session_id = generate_session_id()
        created_at = now_ms()
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms

        session = WalletSession(
            public_key=public_key,
            user_id=user_id,
            created_at=created_at,
            expires_at=created_at + ttl,
            metadata=dict(metadata or {}),
        )
        await self.store.set(session_id, session)
        logger.debug("Created session for %s", truncate_public_key(public_key))
        return session_id

    async def get_session(self, session_id: str) -> Optional[WalletSession]:
        """Return the session, or None if it is missing or expired."""
        session = await self.store.get(session_id)
        if session is None:
            return None
        if session.is_expired(now_ms()):
            await self.store.delete(session_id)
            return None
        return session

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete(session_id)

    async def refresh_session(self, session_id: str, ttl_ms: Optional[int] = None) -> bool:
        """Push the expiry out to ``now + ttl``.

        Returns:
            False if the session does not exist (or has expired).
        """
        session = await self.get_session(session_id)
        if session is None:
            return False

        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        session.expires_at = now_ms() + ttl
        await self.store.set(session_id, session)
        return True

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic cleanup task on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                await self.store.cleanup()
            except Exception:
                logger.exception("Session cleanup failed")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
