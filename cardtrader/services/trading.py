"""
Ownership Transfer Engine.

Every change to who holds a card goes through transfer_card. A transfer is
the state transition

    unowned | owned(by X)  ->  owned(by Y)

guarded by "current holder == requester, or unowned and unowned claims are
allowed". It updates cards.owner_id and the collection ledger in one
transaction.

Two layers keep concurrent transfers of the same card from losing updates:
- A per-card asyncio.Lock serializes transfers inside this process, held
  from the first read until the commit.
- The owner update is conditional on the owner read under the lock, so a
  writer in another process that got there first makes this one fail with
  not_owner instead of being silently overwritten.
"""

import asyncio
import logging
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrader.db.operations import (
    card_to_model,
    create_card,
    get_card,
    get_user,
    list_unowned_card_ids,
    move_collection_entry,
    set_card_owner,
)
from cardtrader.models.card import Card
from cardtrader.models.failure import AuthorizationError, FailureKind, NotFoundError

logger = logging.getLogger(__name__)


class CardLockRegistry:
    """One asyncio.Lock per card id, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def lock_for(self, card_id: int) -> asyncio.Lock:
        lock = self._locks.get(card_id)
        if lock is None:
            lock = self._locks[card_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, card_id: int) -> AsyncIterator[None]:
        async with self.lock_for(card_id):
            yield


card_locks = CardLockRegistry()


async def transfer_card(
    session: AsyncSession,
    card_id: int,
    requester_id: int,
    target_user_id: int,
    *,
    allow_unowned: bool = True,
    locks: CardLockRegistry | None = None,
) -> Card:
    """
    Move a card into target_user_id's collection.

    Commits on success. A requester moving a card they already hold to
    themselves is a no-op.

    Args:
        session: Database session; committed or rolled back before returning
        card_id: Card to move
        requester_id: Authenticated caller
        target_user_id: New holder
        allow_unowned: Whether an unowned card may be taken by anyone
        locks: Lock registry; defaults to the process-wide one

    Returns:
        The card as it stands after the transfer.

    Raises:
        NotFoundError: Card or target user does not exist
        AuthorizationError: Requester does not hold the card, or ownership
            changed underneath the transfer
    """
    locks = locks or card_locks

    async with locks.hold(card_id):
        try:
            card = await get_card(session, card_id, refresh=True)
            if card is None:
                raise NotFoundError(
                    kind=FailureKind.CARD_NOT_FOUND,
                    message="Card not found.",
                    detail=f"No card with id {card_id}",
                )

            if await get_user(session, target_user_id) is None:
                raise NotFoundError(
                    kind=FailureKind.USER_NOT_FOUND,
                    message="User not found.",
                    detail=f"No user with id {target_user_id}",
                )

            current_owner = card.owner_id
            if current_owner is None and not allow_unowned:
                raise AuthorizationError(
                    kind=FailureKind.NOT_OWNER,
                    message="This card has no owner and cannot be claimed.",
                )
            if current_owner is not None and current_owner != requester_id:
                raise AuthorizationError(
                    kind=FailureKind.NOT_OWNER,
                    message="You do not own this card.",
                )

            if current_owner == target_user_id:
                return card_to_model(card)

            if not await set_card_owner(session, card_id, current_owner, target_user_id):
                raise AuthorizationError(
                    kind=FailureKind.NOT_OWNER,
                    message="You do not own this card.",
                    detail="Ownership changed during transfer",
                )
            await move_collection_entry(session, card_id, target_user_id)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise

        await session.refresh(card)

    logger.info(
        "Card %d transferred from %s to user %d (requested by user %d)",
        card_id,
        f"user {current_owner}" if current_owner is not None else "unowned",
        target_user_id,
        requester_id,
    )
    return card_to_model(card)


async def claim_card(
    session: AsyncSession,
    card_id: int,
    user_id: int,
    *,
    allow_unowned: bool = True,
    locks: CardLockRegistry | None = None,
) -> Card:
    """
    Put an existing card into the caller's own collection.

    Claiming a card the caller already holds is a no-op.
    """
    return await transfer_card(
        session, card_id, user_id, user_id, allow_unowned=allow_unowned, locks=locks
    )


async def create_owned_card(
    session: AsyncSession,
    name: str,
    owner_id: int,
    image_url: str | None = None,
    *,
    locks: CardLockRegistry | None = None,
) -> Card:
    """Register a brand new card directly in owner_id's collection."""
    if await get_user(session, owner_id) is None:
        raise NotFoundError(
            kind=FailureKind.USER_NOT_FOUND,
            message="User not found.",
            detail=f"No user with id {owner_id}",
        )
    card = await create_card(session, name, image_url)
    return await transfer_card(session, card.id, owner_id, owner_id, locks=locks)


async def _assign_random_cards(
    session: AsyncSession,
    user_id: int,
    pool: list[int],
    count: int,
    rng: random.Random,
    locks: CardLockRegistry | None,
) -> list[Card]:
    """Move up to count cards sampled from pool into user_id's collection."""
    picked = rng.sample(pool, min(count, len(pool)))

    assigned: list[Card] = []
    for card_id in picked:
        try:
            card = await transfer_card(session, card_id, user_id, user_id, locks=locks)
        except AuthorizationError:
            # Taken by someone else since the pool was read
            logger.info("Card %d was claimed before user %d could draw it", card_id, user_id)
            continue
        assigned.append(card)
    return assigned


async def draw_random_cards(
    session: AsyncSession,
    user_id: int,
    count: int,
    *,
    rng: random.Random | None = None,
    locks: CardLockRegistry | None = None,
) -> list[Card]:
    """
    Give a user up to count randomly chosen unowned cards.

    The sample is drawn without replacement, and the ledger's unique card
    constraint means a card can never land in the collection twice.

    Raises:
        NotFoundError: User does not exist, or no unowned cards remain
    """
    if await get_user(session, user_id) is None:
        raise NotFoundError(
            kind=FailureKind.USER_NOT_FOUND,
            message="User not found.",
            detail=f"No user with id {user_id}",
        )

    pool = await list_unowned_card_ids(session)
    if not pool:
        raise NotFoundError(
            kind=FailureKind.NO_CARDS_AVAILABLE,
            message="No cards are available right now.",
            suggestion="Try again after other players release cards.",
        )

    return await _assign_random_cards(session, user_id, pool, count, rng or random.Random(), locks)


async def grant_starter_cards(
    session: AsyncSession,
    user_id: int,
    count: int,
    *,
    rng: random.Random | None = None,
    locks: CardLockRegistry | None = None,
) -> list[Card]:
    """
    Best-effort welcome gift for a new account.

    An empty pool is not an error: the user simply starts with nothing.
    """
    if count <= 0:
        return []

    pool = await list_unowned_card_ids(session)
    if not pool:
        logger.info("No unowned cards left for user %d's starter gift", user_id)
        return []

    return await _assign_random_cards(session, user_id, pool, count, rng or random.Random(), locks)
