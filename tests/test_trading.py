"""Tests for the ownership transfer engine."""

import asyncio
import random
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardtrader.db.database import build_engine, init_db
from cardtrader.db.operations import (
    create_card,
    create_user,
    get_card,
    list_collection,
    move_collection_entry,
    set_card_owner,
)
from cardtrader.models.db import CardDB, CollectionEntryDB, UserDB
from cardtrader.models.failure import AuthorizationError, FailureKind, NotFoundError
from cardtrader.services.trading import (
    CardLockRegistry,
    claim_card,
    create_owned_card,
    draw_random_cards,
    grant_starter_cards,
    transfer_card,
)


async def _give(session: AsyncSession, card: CardDB, user: UserDB) -> None:
    await set_card_owner(session, card.id, None, user.id)
    await move_collection_entry(session, card.id, user.id)
    await session.commit()


async def _collection_ids(session: AsyncSession, user_id: int) -> list[int]:
    return [card.id for card in await list_collection(session, user_id)]


async def _assert_ledger_consistent(session: AsyncSession) -> None:
    """Every owned card has exactly one entry, held by its owner."""
    result = await session.execute(select(CardDB).execution_options(populate_existing=True))
    cards = result.scalars().all()
    entries = (await session.execute(select(CollectionEntryDB))).scalars().all()
    holders = {entry.card_id: entry.user_id for entry in entries}

    assert len(holders) == len(entries)
    for card in cards:
        assert holders.get(card.id) == card.owner_id


@pytest.fixture
async def ash(session: AsyncSession) -> UserDB:
    user = await create_user(session, "ash", "hash")
    await session.commit()
    return user


@pytest.fixture
async def misty(session: AsyncSession) -> UserDB:
    user = await create_user(session, "misty", "hash")
    await session.commit()
    return user


@pytest.fixture
async def pikachu(session: AsyncSession) -> CardDB:
    card = await create_card(session, "Pikachu")
    await session.commit()
    return card


class TestTransferCard:
    async def test_owner_can_transfer(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        """Card leaves the owner's collection and joins the target's."""
        await _give(session, pikachu, ash)

        card = await transfer_card(session, pikachu.id, ash.id, misty.id, locks=locks)

        assert card.owner_id == misty.id
        assert await _collection_ids(session, ash.id) == []
        assert await _collection_ids(session, misty.id) == [pikachu.id]
        await _assert_ledger_consistent(session)

    async def test_non_owner_rejected_and_ownership_unchanged(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        await _give(session, pikachu, ash)

        with pytest.raises(AuthorizationError) as exc_info:
            await transfer_card(session, pikachu.id, misty.id, misty.id, locks=locks)

        assert exc_info.value.kind == FailureKind.NOT_OWNER
        assert exc_info.value.status_code == 403
        card = await get_card(session, pikachu.id, refresh=True)
        assert card is not None
        assert card.owner_id == ash.id
        assert await _collection_ids(session, ash.id) == [pikachu.id]

    async def test_repeated_rejection_is_idempotent(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        await _give(session, pikachu, ash)

        for _ in range(3):
            with pytest.raises(AuthorizationError):
                await transfer_card(session, pikachu.id, misty.id, misty.id, locks=locks)

        assert await _collection_ids(session, ash.id) == [pikachu.id]
        assert await _collection_ids(session, misty.id) == []

    async def test_card_not_found(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await transfer_card(session, 999, ash.id, ash.id, locks=locks)

        assert exc_info.value.kind == FailureKind.CARD_NOT_FOUND
        assert exc_info.value.status_code == 404

    async def test_target_user_not_found(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        """Owner pointers never reference a missing user."""
        await _give(session, pikachu, ash)

        with pytest.raises(NotFoundError) as exc_info:
            await transfer_card(session, pikachu.id, ash.id, 999, locks=locks)

        assert exc_info.value.kind == FailureKind.USER_NOT_FOUND
        card = await get_card(session, pikachu.id, refresh=True)
        assert card is not None
        assert card.owner_id == ash.id

    async def test_unowned_card_claimable_when_allowed(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        card = await transfer_card(
            session, pikachu.id, ash.id, misty.id, allow_unowned=True, locks=locks
        )

        assert card.owner_id == misty.id
        assert await _collection_ids(session, misty.id) == [pikachu.id]

    async def test_unowned_card_refused_when_disallowed(
        self,
        session: AsyncSession,
        ash: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        with pytest.raises(AuthorizationError):
            await transfer_card(
                session, pikachu.id, ash.id, ash.id, allow_unowned=False, locks=locks
            )

        card = await get_card(session, pikachu.id, refresh=True)
        assert card is not None
        assert card.owner_id is None

    async def test_transfer_to_self_is_noop(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        await _give(session, pikachu, ash)

        card = await transfer_card(session, pikachu.id, ash.id, ash.id, locks=locks)

        assert card.owner_id == ash.id
        assert await _collection_ids(session, ash.id) == [pikachu.id]

    async def test_card_can_be_traded_back(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        await _give(session, pikachu, ash)

        await transfer_card(session, pikachu.id, ash.id, misty.id, locks=locks)
        await transfer_card(session, pikachu.id, misty.id, ash.id, locks=locks)

        assert await _collection_ids(session, ash.id) == [pikachu.id]
        assert await _collection_ids(session, misty.id) == []
        await _assert_ledger_consistent(session)


class TestConcurrentTransfers:
    @pytest.fixture
    async def file_engine(self, tmp_path):
        """File-backed SQLite so each session gets its own connection."""
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'trades.db'}")
        await init_db(engine)
        yield engine
        await engine.dispose()

    async def test_racing_transfers_have_one_winner(self, file_engine) -> None:
        """Two transfers of one card to different users end with one owner."""
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        locks = CardLockRegistry()

        async with factory() as setup:
            ash = await create_user(setup, "ash", "hash")
            misty = await create_user(setup, "misty", "hash")
            brock = await create_user(setup, "brock", "hash")
            card = await create_card(setup, "Pikachu")
            await _give(setup, card, ash)

        async def attempt(target_id: int) -> int | None:
            async with factory() as session:
                try:
                    result = await transfer_card(session, card.id, ash.id, target_id, locks=locks)
                except AuthorizationError:
                    return None
                return result.owner_id

        outcomes = await asyncio.gather(attempt(misty.id), attempt(brock.id))

        winners = [owner for owner in outcomes if owner is not None]
        assert len(winners) == 1

        async with factory() as check:
            final = await get_card(check, card.id)
            assert final is not None
            assert final.owner_id == winners[0]
            assert await _collection_ids(check, winners[0]) == [card.id]
            assert await _collection_ids(check, ash.id) == []
            await _assert_ledger_consistent(check)

    async def test_racing_transfers_across_processes(self, file_engine) -> None:
        """Without a shared lock, the conditional update still picks one winner."""
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

        async with factory() as setup:
            ash = await create_user(setup, "ash", "hash")
            misty = await create_user(setup, "misty", "hash")
            brock = await create_user(setup, "brock", "hash")
            card = await create_card(setup, "Pikachu")
            await _give(setup, card, ash)

        both_read = asyncio.Barrier(2)

        async def get_card_then_wait(*args, **kwargs):
            found = await get_card(*args, **kwargs)
            await both_read.wait()
            return found

        async def attempt(target_id: int) -> int | AuthorizationError:
            # Separate registries stand in for separate worker processes
            locks = CardLockRegistry()
            async with factory() as session:
                try:
                    result = await transfer_card(session, card.id, ash.id, target_id, locks=locks)
                except AuthorizationError as e:
                    return e
                return result.owner_id

        with patch("cardtrader.services.trading.get_card", get_card_then_wait):
            outcomes = await asyncio.gather(attempt(misty.id), attempt(brock.id))

        winners = [o for o in outcomes if isinstance(o, int)]
        losers = [o for o in outcomes if isinstance(o, AuthorizationError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].kind == FailureKind.NOT_OWNER
        assert losers[0].detail == "Ownership changed during transfer"

        async with factory() as check:
            final = await get_card(check, card.id)
            assert final is not None
            assert final.owner_id == winners[0]
            assert await _collection_ids(check, winners[0]) == [card.id]
            assert await _collection_ids(check, ash.id) == []
            await _assert_ledger_consistent(check)


class TestClaimAndCreate:
    async def test_claim_unowned_card(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        card = await claim_card(session, pikachu.id, ash.id, locks=locks)

        assert card.owner_id == ash.id
        assert await _collection_ids(session, ash.id) == [pikachu.id]

    async def test_claim_twice_does_not_duplicate(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        """Adding a card the caller already holds is a no-op."""
        await claim_card(session, pikachu.id, ash.id, locks=locks)
        await claim_card(session, pikachu.id, ash.id, locks=locks)

        assert await _collection_ids(session, ash.id) == [pikachu.id]

    async def test_claim_someone_elses_card_rejected(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        await _give(session, pikachu, ash)

        with pytest.raises(AuthorizationError):
            await claim_card(session, pikachu.id, misty.id, locks=locks)

    async def test_create_owned_card(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        card = await create_owned_card(
            session, "Charmander", ash.id, "https://img/charmander.png", locks=locks
        )

        assert card.name == "Charmander"
        assert card.owner_id == ash.id
        assert card.image_url == "https://img/charmander.png"
        assert await _collection_ids(session, ash.id) == [card.id]

    async def test_create_owned_card_unknown_user(
        self, session: AsyncSession, locks: CardLockRegistry
    ) -> None:
        with pytest.raises(NotFoundError):
            await create_owned_card(session, "Charmander", 999, locks=locks)


class TestRandomCards:
    async def test_draw_assigns_unowned_cards(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        for name in ("Bulbasaur", "Squirtle", "Charmander", "Pidgey"):
            await create_card(session, name)
        await session.commit()

        drawn = await draw_random_cards(
            session, ash.id, 3, rng=random.Random(1), locks=locks
        )

        assert len(drawn) == 3
        assert all(card.owner_id == ash.id for card in drawn)
        assert sorted(await _collection_ids(session, ash.id)) == sorted(c.id for c in drawn)

    async def test_draw_never_duplicates(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        """Drawing more than the pool holds never repeats a card."""
        await create_card(session, "Bulbasaur")
        await create_card(session, "Squirtle")
        await session.commit()

        drawn = await draw_random_cards(session, ash.id, 10, locks=locks)
        ids = await _collection_ids(session, ash.id)

        assert len(drawn) == 2
        assert len(ids) == len(set(ids)) == 2

    async def test_draw_skips_cards_owned_by_others(
        self,
        session: AsyncSession,
        ash: UserDB,
        misty: UserDB,
        pikachu: CardDB,
        locks: CardLockRegistry,
    ) -> None:
        await _give(session, pikachu, misty)
        eevee = await create_card(session, "Eevee")
        await session.commit()

        drawn = await draw_random_cards(session, ash.id, 5, locks=locks)

        assert [card.id for card in drawn] == [eevee.id]
        assert await _collection_ids(session, misty.id) == [pikachu.id]

    async def test_draw_with_empty_pool(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await draw_random_cards(session, ash.id, 3, locks=locks)

        assert exc_info.value.kind == FailureKind.NO_CARDS_AVAILABLE

    async def test_draw_unknown_user(self, session: AsyncSession, locks: CardLockRegistry) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await draw_random_cards(session, 999, 3, locks=locks)

        assert exc_info.value.kind == FailureKind.USER_NOT_FOUND

    async def test_starter_gift(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        gift = await grant_starter_cards(session, ash.id, 1, locks=locks)

        assert [card.id for card in gift] == [pikachu.id]
        assert await _collection_ids(session, ash.id) == [pikachu.id]

    async def test_starter_gift_with_no_cards(
        self, session: AsyncSession, ash: UserDB, locks: CardLockRegistry
    ) -> None:
        """An empty registry is not an error for new accounts."""
        assert await grant_starter_cards(session, ash.id, 1, locks=locks) == []

    async def test_starter_gift_disabled(
        self, session: AsyncSession, ash: UserDB, pikachu: CardDB, locks: CardLockRegistry
    ) -> None:
        assert await grant_starter_cards(session, ash.id, 0, locks=locks) == []
        assert await _collection_ids(session, ash.id) == []


class TestCardLockRegistry:
    def test_same_card_same_lock(self) -> None:
        registry = CardLockRegistry()

        assert registry.lock_for(1) is registry.lock_for(1)
        assert registry.lock_for(1) is not registry.lock_for(2)

    async def test_hold_serializes(self) -> None:
        registry = CardLockRegistry()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with registry.hold(1):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
