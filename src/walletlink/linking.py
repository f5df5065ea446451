"""Linking wallets to application users.

A wallet public key is bound to at most one user. The store enforces that
with a uniqueness index; the manager decides which user a wallet should be
bound to.
"""

import dataclasses
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .signing import now_ms, truncate_public_key
from .types import (
    EmailAlreadyLinkedError,
    UserNotFoundError,
    UserRecord,
    WalletAlreadyLinkedError,
    WalletConflictError,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    ["wallet_public_key", "email", "wallet_connected_at", "metadata"]
)


class UserStore(ABC):
    """Persistence interface for user records.

    ``create`` and ``update`` must raise WalletConflictError when the write
    would give a second user the same ``wallet_public_key``. ``update``
    raises UserNotFoundError for unknown ids and applies only the fields
    passed, so ``update(uid, wallet_public_key=None)`` clears the wallet.
    """

    @abstractmethod
    async def find_by_public_key(self, public_key: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def create(self, **fields: Any) -> UserRecord:
        ...

    @abstractmethod
    async def update(self, user_id: str, **changes: Any) -> UserRecord:
        ...


class MemoryUserStore(UserStore):
    """In-process user store with email and wallet indexes."""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._email_index: Dict[str, str] = {}
        self._wallet_index: Dict[str, str] = {}

    @staticmethod
    def _copy(user: UserRecord) -> UserRecord:
        return dataclasses.replace(user, metadata=dict(user.metadata))

    def _lookup(self, user_id: Optional[str]) -> Optional[UserRecord]:
        if user_id is None or user_id not in self._users:
            return None
        return self._copy(self._users[user_id])

    async def find_by_public_key(self, public_key: str) -> Optional[UserRecord]:
        return self._lookup(self._wallet_index.get(public_key))

    async def find_by_user_id(self, user_id: str) -> Optional[UserRecord]:
        return self._lookup(user_id)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        return self._lookup(self._email_index.get(email))

    async def create(self, **fields: Any) -> UserRecord:
        unknown = set(fields) - _UPDATABLE_FIELDS - {"id"}
        if unknown:
            raise TypeError(f"Unknown user fields: {sorted(unknown)}")

        user = UserRecord(
            id=fields.get("id") or str(uuid.uuid4()),
            wallet_public_key=fields.get("wallet_public_key"),
            email=fields.get("email"),
            wallet_connected_at=fields.get("wallet_connected_at"),
            metadata=dict(fields.get("metadata") or {}),
        )
        if user.id in self._users:
            raise ValueError(f"User id already exists: {user.id}")
        if user.wallet_public_key and user.wallet_public_key in self._wallet_index:
            raise WalletConflictError(user.wallet_public_key)

        self._users[user.id] = user
        if user.email:
            self._email_index.setdefault(user.email, user.id)
        if user.wallet_public_key:
            self._wallet_index[user.wallet_public_key] = user.id
        return self._copy(user)

    async def update(self, user_id: str, **changes: Any) -> UserRecord:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown user fields: {sorted(unknown)}")

        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        new_wallet = changes.get("wallet_public_key", user.wallet_public_key)
        if new_wallet and self._wallet_index.get(new_wallet, user_id) != user_id:
            raise WalletConflictError(new_wallet)

        if "wallet_public_key" in changes and user.wallet_public_key != new_wallet:
            if user.wallet_public_key:
                del self._wallet_index[user.wallet_public_key]
            if new_wallet:
                self._wallet_index[new_wallet] = user_id

        if "metadata" in changes:
            changes["metadata"] = dict(changes["metadata"] or {})

        updated = dataclasses.replace(user, **changes)
        self._users[user_id] = updated

        if updated.email != user.email:
            if user.email and self._email_index.get(user.email) == user_id:
                del self._email_index[user.email]
                self._reindex_email(user.email)
            if updated.email:
                self._email_index.setdefault(updated.email, user_id)
        return self._copy(updated)

    def _reindex_email(self, email: str) -> None:
        # Earliest-created user still carrying the email keeps it findable
        for user in self._users.values():
            if user.email == email:
                self._email_index[email] = user.id
                return

    def __len__(self) -> int:
        return len(self._users)


class UserLinkingManager:
    """Binds verified wallets to user records.

    Resolution order for ``link_or_create_user``:
      1. a user already holding the wallet is returned as-is
      2. ``existing_user_id`` gets the wallet attached
      3. a user found by ``email`` gets the wallet attached
      4. otherwise a new user is created
    """

    def __init__(self, store: UserStore):
        self.store = store

    async def link_or_create_user(
        self,
        public_key: str,
        existing_user_id: Optional[str] = None,
        email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UserRecord:
        """Link a wallet to an existing user or create a new one.

        Args:
            public_key: Verified wallet public key (base58)
            existing_user_id: Attach the wallet to this user
            email: Attach the wallet to the user with this email, if any
            metadata: Merged into the user's metadata

        Returns:
            The user now bound to ``public_key``.

        Raises:
            UserNotFoundError: ``existing_user_id`` does not exist.
            WalletAlreadyLinkedError: That user already has another wallet.
            EmailAlreadyLinkedError: The email's user already has another wallet.
        """
        try:
            return await self._link_or_create(public_key, existing_user_id, email, metadata)
        except WalletConflictError:
            # A concurrent request bound this wallet between our read and write.
            logger.warning(
                "Wallet %s was linked concurrently, re-reading",
                truncate_public_key(public_key),
            )
            user = await self.store.find_by_public_key(public_key)
            if user is not None:
                return user
            raise WalletAlreadyLinkedError()

    async def _link_or_create(
        self,
        public_key: str,
        existing_user_id: Optional[str],
        email: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> UserRecord:
        user = await self.store.find_by_public_key(public_key)
        if user is not None:
            return user

        if existing_user_id:
            user = await self.store.find_by_user_id(existing_user_id)
            if user is None:
                raise UserNotFoundError(existing_user_id)
            if user.wallet_public_key and user.wallet_public_key != public_key:
                raise WalletAlreadyLinkedError()
            return await self._attach(user, public_key, metadata)

        if email:
            user = await self.store.find_by_email(email)
            if user is not None:
                if user.wallet_public_key and user.wallet_public_key != public_key:
                    raise EmailAlreadyLinkedError(email)
                return await self._attach(user, public_key, metadata)

        user = await self.store.create(
            wallet_public_key=public_key,
            email=email,
            wallet_connected_at=now_ms(),
            metadata=metadata or {},
        )
        logger.info("Created user %s for wallet %s", user.id, truncate_public_key(public_key))
        return user

    async def _attach(
        self,
        user: UserRecord,
        public_key: str,
        metadata: Optional[Dict[str, Any]],
    ) -> UserRecord:
        updated = await self.store.update(
            user.id,
            wallet_public_key=public_key,
            wallet_connected_at=now_ms(),
            metadata={**user.metadata, **(metadata or {})},
        )
        logger.info("Linked wallet %s to user %s", truncate_public_key(public_key), user.id)
        return updated

    async def unlink_wallet(self, user_id: str) -> UserRecord:
        """Detach the wallet from a user.

        Raises:
            UserNotFoundError: The user does not exist.
        """
        user = await self.store.find_by_user_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        updated = await self.store.update(
            user_id, wallet_public_key=None, wallet_connected_at=None
        )
        logger.info("Unlinked wallet from user %s", user_id)
        return updated

    async def get_user_by_public_key(self, public_key: str) -> Optional[UserRecord]:
        return await self.store.find_by_public_key(public_key)

    async def is_wallet_linked(self, public_key: str) -> bool:
        return await self.get_user_by_public_key(public_key) is not None
