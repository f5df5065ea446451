"""
SQLAlchemy user store.

Install with ``pip install walletlink[sql]`` plus an async driver
(``aiosqlite``, ``asyncpg``). The unique index on ``wallet_public_key`` is
what reports concurrent links of the same wallet.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .linking import UserStore, _UPDATABLE_FIELDS
from .signing import truncate_public_key
from .types import UserNotFoundError, UserRecord, WalletConflictError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for walletlink models."""


class UserModel(Base):
    """User row with an optional, unique wallet."""

    __tablename__ = "walletlink_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wallet_public_key: Mapped[Optional[str]] = mapped_column(
        String(44), unique=True, index=True, nullable=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(320), index=True, nullable=True)
    wallet_connected_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # "metadata" is reserved on declarative classes
    user_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create the users table if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SQLUserStore(UserStore):
    """
    User store backed by any SQLAlchemy async engine.

    Each call runs in its own session and commits before returning.
    """

    def __init__(self, session_factory: async_sessionmaker):
        """
        Args:
            session_factory: ``async_sessionmaker`` bound to the target engine
        """
        self.session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "SQLUserStore":
        return cls(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

    @staticmethod
    def _to_record(model: UserModel) -> UserRecord:
        return UserRecord(
            id=model.id,
            wallet_public_key=model.wallet_public_key,
            email=model.email,
            wallet_connected_at=model.wallet_connected_at,
            metadata=dict(model.user_metadata or {}),
        )

    async def _find_one(self, clause) -> Optional[UserRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(UserModel).where(clause).limit(1))
            model = result.scalar_one_or_none()
            return self._to_record(model) if model else None

    async def find_by_public_key(self, public_key: str) -> Optional[UserRecord]:
        return await self._find_one(UserModel.wallet_public_key == public_key)

    async def find_by_user_id(self, user_id: str) -> Optional[UserRecord]:
        return await self._find_one(UserModel.id == user_id)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        # Emails are not unique; ties resolve by id
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserModel)
                .where(UserModel.email == email)
                .order_by(UserModel.id)
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return self._to_record(model) if model else None

    async def create(self, **fields: Any) -> UserRecord:
        unknown = set(fields) - _UPDATABLE_FIELDS - {"id"}
        if unknown:
            raise TypeError(f"Unknown user fields: {sorted(unknown)}")

        model = UserModel(
            id=fields.get("id") or str(uuid.uuid4()),
            wallet_public_key=fields.get("wallet_public_key"),
            email=fields.get("email"),
            wallet_connected_at=fields.get("wallet_connected_at"),
            user_metadata=dict(fields.get("metadata") or {}),
        )
        async with self.session_factory() as session:
            session.add(model)
            await self._commit(session, model.wallet_public_key)
            return self._to_record(model)

    async def update(self, user_id: str, **changes: Any) -> UserRecord:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown user fields: {sorted(unknown)}")

        async with self.session_factory() as session:
            model = await session.get(UserModel, user_id)
            if model is None:
                raise UserNotFoundError(user_id)

            for name, value in changes.items():
                if name == "metadata":
                    model.user_metadata = dict(value or {})
                else:
                    setattr(model, name, value)

            await self._commit(session, model.wallet_public_key)
            return self._to_record(model)

    @staticmethod
    async def _commit(session: AsyncSession, public_key: Optional[str]) -> None:
        try:
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            if not public_key:
                raise
            logger.debug(
                "Unique wallet constraint rejected %s: %s",
                truncate_public_key(public_key),
                e.orig,
            )
            raise WalletConflictError(public_key) from e
