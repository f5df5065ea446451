"""Tests for the SQLAlchemy user store (aiosqlite)."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from walletlink import UserLinkingManager, UserNotFoundError, WalletConflictError
from walletlink.sql import SQLUserStore, create_tables

WALLET_A = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WALLET_B = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'users.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_store(engine):
    return SQLUserStore.from_engine(engine)


class LaggingSQLUserStore(SQLUserStore):
    """Misses the first wallet lookup, as a request racing another would."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.missed = False

    async def find_by_public_key(self, public_key):
        if not self.missed:
            self.missed = True
            return None
        return await super().find_by_public_key(public_key)


@pytest.mark.asyncio
async def test_create_and_find(sql_store):
    created = await sql_store.create(
        wallet_public_key=WALLET_A,
        email="ada@example.com",
        wallet_connected_at=1_700_000_000_000,
        metadata={"plan": "pro"},
    )

    assert await sql_store.find_by_user_id(created.id) == created
    assert await sql_store.find_by_public_key(WALLET_A) == created
    assert await sql_store.find_by_email("ada@example.com") == created
    assert created.metadata == {"plan": "pro"}
    assert await sql_store.find_by_public_key(WALLET_B) is None


@pytest.mark.asyncio
async def test_users_without_wallets_coexist(sql_store):
    await sql_store.create(email="a@example.com")
    await sql_store.create(email="b@example.com")

    assert (await sql_store.find_by_email("b@example.com")).wallet_public_key is None


@pytest.mark.asyncio
async def test_duplicate_wallet_on_create_raises_conflict(sql_store):
    await sql_store.create(wallet_public_key=WALLET_A)

    with pytest.raises(WalletConflictError) as exc_info:
        await sql_store.create(wallet_public_key=WALLET_A)
    assert exc_info.value.public_key == WALLET_A


@pytest.mark.asyncio
async def test_duplicate_wallet_on_update_raises_conflict(sql_store):
    await sql_store.create(wallet_public_key=WALLET_A)
    other = await sql_store.create(email="b@example.com")

    with pytest.raises(WalletConflictError):
        await sql_store.update(other.id, wallet_public_key=WALLET_A)

    assert (await sql_store.find_by_user_id(other.id)).wallet_public_key is None


@pytest.mark.asyncio
async def test_update_applies_only_given_fields(sql_store):
    user = await sql_store.create(wallet_public_key=WALLET_A, email="a@example.com")

    updated = await sql_store.update(user.id, wallet_public_key=None, wallet_connected_at=None)

    assert updated.wallet_public_key is None
    assert updated.email == "a@example.com"
    assert await sql_store.find_by_public_key(WALLET_A) is None


@pytest.mark.asyncio
async def test_update_unknown_user(sql_store):
    with pytest.raises(UserNotFoundError):
        await sql_store.update("missing", email="x@example.com")


@pytest.mark.asyncio
async def test_unknown_fields_rejected(sql_store):
    with pytest.raises(TypeError):
        await sql_store.create(nickname="ada")


@pytest.mark.asyncio
async def test_linking_manager_over_sql(sql_store):
    manager = UserLinkingManager(sql_store)

    user = await manager.link_or_create_user(WALLET_A, email="ada@example.com")
    again = await manager.link_or_create_user(WALLET_A)

    assert again.id == user.id
    assert await manager.is_wallet_linked(WALLET_A)

    await manager.unlink_wallet(user.id)
    assert not await manager.is_wallet_linked(WALLET_A)


@pytest.mark.asyncio
async def test_concurrent_link_resolves_to_existing_holder(engine):
    holder = await SQLUserStore.from_engine(engine).create(wallet_public_key=WALLET_A)
    lagging = LaggingSQLUserStore(SQLUserStore.from_engine(engine).session_factory)
    manager = UserLinkingManager(lagging)

    user = await manager.link_or_create_user(WALLET_A)

    assert lagging.missed
    assert user.id == holder.id
