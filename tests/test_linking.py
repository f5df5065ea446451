"""Tests for linking wallets to users."""

import pytest

from walletlink import (
    EmailAlreadyLinkedError,
    MemoryUserStore,
    UserLinkingManager,
    UserNotFoundError,
    WalletAlreadyLinkedError,
    WalletConflictError,
)

WALLET_A = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WALLET_B = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


@pytest.mark.asyncio
async def test_creates_new_user_for_unknown_wallet(linking_manager, clock):
    user = await linking_manager.link_or_create_user(WALLET_A, metadata={"source": "web"})

    assert user.id
    assert user.wallet_public_key == WALLET_A
    assert user.wallet_connected_at == 1_700_000_000_000
    assert user.email is None
    assert user.metadata == {"source": "web"}


@pytest.mark.asyncio
async def test_link_or_create_is_idempotent(linking_manager, user_store):
    first = await linking_manager.link_or_create_user(WALLET_A)
    second = await linking_manager.link_or_create_user(WALLET_A)

    assert first == second
    assert len(user_store) == 1


@pytest.mark.asyncio
async def test_existing_wallet_wins_over_other_hints(linking_manager, user_store):
    linked = await linking_manager.link_or_create_user(WALLET_A)
    other = await user_store.create(email="other@example.com")

    user = await linking_manager.link_or_create_user(
        WALLET_A, existing_user_id=other.id, email="other@example.com"
    )

    assert user.id == linked.id


@pytest.mark.asyncio
async def test_links_wallet_to_existing_user(linking_manager, user_store, clock):
    existing = await user_store.create(email="ada@example.com", metadata={"plan": "pro"})

    user = await linking_manager.link_or_create_user(
        WALLET_A, existing_user_id=existing.id, metadata={"wallet": "phantom"}
    )

    assert user.id == existing.id
    assert user.wallet_public_key == WALLET_A
    assert user.wallet_connected_at == 1_700_000_000_000
    assert user.metadata == {"plan": "pro", "wallet": "phantom"}
    assert await linking_manager.get_user_by_public_key(WALLET_A) == user


@pytest.mark.asyncio
async def test_unknown_existing_user_raises(linking_manager):
    with pytest.raises(UserNotFoundError):
        await linking_manager.link_or_create_user(WALLET_A, existing_user_id="missing")


@pytest.mark.asyncio
async def test_existing_user_with_other_wallet_raises(linking_manager, user_store):
    existing = await user_store.create(wallet_public_key=WALLET_B)

    with pytest.raises(WalletAlreadyLinkedError):
        await linking_manager.link_or_create_user(WALLET_A, existing_user_id=existing.id)

    assert not await linking_manager.is_wallet_linked(WALLET_A)


@pytest.mark.asyncio
async def test_links_wallet_by_email(linking_manager, user_store):
    existing = await user_store.create(email="ada@example.com")

    user = await linking_manager.link_or_create_user(WALLET_A, email="ada@example.com")

    assert user.id == existing.id
    assert user.wallet_public_key == WALLET_A
    assert len(user_store) == 1


@pytest.mark.asyncio
async def test_email_user_with_other_wallet_raises(linking_manager, user_store):
    await user_store.create(email="ada@example.com", wallet_public_key=WALLET_B)

    with pytest.raises(EmailAlreadyLinkedError):
        await linking_manager.link_or_create_user(WALLET_A, email="ada@example.com")


@pytest.mark.asyncio
async def test_unknown_email_creates_user_with_email(linking_manager):
    user = await linking_manager.link_or_create_user(WALLET_A, email="new@example.com")

    assert user.email == "new@example.com"
    assert user.wallet_public_key == WALLET_A


@pytest.mark.asyncio
async def test_unlink_wallet(linking_manager):
    user = await linking_manager.link_or_create_user(WALLET_A, email="ada@example.com")

    unlinked = await linking_manager.unlink_wallet(user.id)

    assert unlinked.wallet_public_key is None
    assert unlinked.wallet_connected_at is None
    assert unlinked.email == "ada@example.com"
    assert not await linking_manager.is_wallet_linked(WALLET_A)

    # The same wallet can now be linked elsewhere
    relinked = await linking_manager.link_or_create_user(WALLET_A)
    assert relinked.id != user.id


@pytest.mark.asyncio
async def test_unlink_unknown_user_raises(linking_manager):
    with pytest.raises(UserNotFoundError):
        await linking_manager.unlink_wallet("missing")


@pytest.mark.asyncio
async def test_memory_store_enforces_wallet_uniqueness(user_store):
    first = await user_store.create(wallet_public_key=WALLET_A)
    second = await user_store.create(email="b@example.com")

    with pytest.raises(WalletConflictError):
        await user_store.create(wallet_public_key=WALLET_A)
    with pytest.raises(WalletConflictError):
        await user_store.update(second.id, wallet_public_key=WALLET_A)

    # Re-writing a user's own wallet is not a conflict
    updated = await user_store.update(first.id, wallet_public_key=WALLET_A, email="a@example.com")
    assert (await user_store.find_by_email("a@example.com")).id == first.id
    assert updated.wallet_public_key == WALLET_A


@pytest.mark.asyncio
async def test_memory_store_returns_copies(user_store):
    user = await user_store.create(wallet_public_key=WALLET_A, metadata={"k": "v"})
    user.metadata["k"] = "changed"
    user.wallet_public_key = None

    stored = await user_store.find_by_user_id(user.id)
    assert stored.wallet_public_key == WALLET_A
    assert stored.metadata == {"k": "v"}


@pytest.mark.asyncio
async def test_memory_store_update_missing_user(user_store):
    with pytest.raises(UserNotFoundError):
        await user_store.update("missing", email="x@example.com")


@pytest.mark.asyncio
async def test_memory_store_shared_email_resolves_to_first_user(user_store):
    first = await user_store.create(email="shared@example.com")
    second = await user_store.create(email="shared@example.com")

    assert (await user_store.find_by_email("shared@example.com")).id == first.id

    await user_store.update(second.id, email="other@example.com")
    assert (await user_store.find_by_email("shared@example.com")).id == first.id

    await user_store.update(second.id, email="shared@example.com")
    await user_store.update(first.id, email="moved@example.com")
    assert (await user_store.find_by_email("shared@example.com")).id == second.id
    assert (await user_store.find_by_email("moved@example.com")).id == first.id


class RacingUserStore(MemoryUserStore):
    """Simulates another request creating the same wallet between read and write."""

    def __init__(self):
        super().__init__()
        self.raced = False

    async def create(self, **fields):
        if not self.raced and fields.get("wallet_public_key"):
            self.raced = True
            await super().create(wallet_public_key=fields["wallet_public_key"], id="winner")
        return await super().create(**fields)


@pytest.mark.asyncio
async def test_concurrent_create_returns_winning_record():
    store = RacingUserStore()
    manager = UserLinkingManager(store)

    user = await manager.link_or_create_user(WALLET_A)

    assert user.id == "winner"
    assert len(store) == 1


@pytest.mark.asyncio
async def test_conflict_without_winner_raises_already_linked():
    class AlwaysConflictingStore(MemoryUserStore):
        async def create(self, **fields):
            raise WalletConflictError(fields["wallet_public_key"])

    manager = UserLinkingManager(AlwaysConflictingStore())

    with pytest.raises(WalletAlreadyLinkedError):
        await manager.link_or_create_user(WALLET_A)


@pytest.mark.asyncio
async def test_storage_errors_propagate():
    class BrokenStore(MemoryUserStore):
        async def find_by_public_key(self, public_key):
            raise ConnectionError("database down")

    manager = UserLinkingManager(BrokenStore())

    with pytest.raises(ConnectionError):
        await manager.link_or_create_user(WALLET_A)
