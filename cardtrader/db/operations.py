"""
Database CRUD operations.

Provides async functions over the card registry (cards), the accounts
(users) and the collection ledger (collection_entries).

These functions only flush. Ownership changes must go through
cardtrader.services.trading, which keeps cards.owner_id and the ledger
in step and owns the transaction boundary.
"""

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardtrader.models.card import Card, Owner
from cardtrader.models.collection import Collection
from cardtrader.models.db import CardDB, CollectionEntryDB, UserDB

# --- User Operations ---


async def get_user(session: AsyncSession, user_id: int) -> UserDB | None:
    """Get a user by id. Returns None if no such user exists."""
    return await session.get(UserDB, user_id)


async def get_user_by_username(session: AsyncSession, username: str) -> UserDB | None:
    """Get a user by username. Returns None if no such user exists."""
    result = await session.execute(select(UserDB).where(UserDB.username == username))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, username: str, password_hash: str) -> UserDB:
    """
    Create a new user.

    Raises IntegrityError if the username is taken.
    """
    user = UserDB(username=username, password_hash=password_hash)
    session.add(user)
    await session.flush()
    return user


# --- Card Registry Operations ---


async def get_card(session: AsyncSession, card_id: int, refresh: bool = False) -> CardDB | None:
    """
    Get a card by id. Returns None if no such card exists.

    With refresh=True the row is re-read even if the session already holds it.
    """
    return await session.get(CardDB, card_id, populate_existing=refresh)


async def get_card_by_name(session: AsyncSession, name: str) -> CardDB | None:
    """Get the first card registered under a name."""
    result = await session.execute(
        select(CardDB).where(CardDB.name == name).order_by(CardDB.id).limit(1)
    )
    return result.scalar_one_or_none()


async def create_card(
    session: AsyncSession, name: str, image_url: str | None = None
) -> CardDB:
    """
    Register a new, unowned card.

    Use trading.create_owned_card to register a card straight into a collection.
    """
    card = CardDB(name=name, image_url=image_url, owner_id=None)
    session.add(card)
    await session.flush()
    return card


async def list_cards(session: AsyncSession) -> list[CardDB]:
    """Get every card with its owner loaded, ordered by id."""
    result = await session.execute(
        select(CardDB)
        .options(selectinload(CardDB.owner))
        .order_by(CardDB.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count_cards(session: AsyncSession) -> int:
    """Number of cards in the registry."""
    result = await session.execute(select(func.count()).select_from(CardDB))
    return int(result.scalar_one())


async def list_unowned_card_ids(session: AsyncSession) -> list[int]:
    """Ids of every card nobody holds, ordered by id."""
    result = await session.execute(
        select(CardDB.id).where(CardDB.owner_id.is_(None)).order_by(CardDB.id)
    )
    return list(result.scalars().all())


async def set_card_owner(
    session: AsyncSession,
    card_id: int,
    expected_owner_id: int | None,
    new_owner_id: int,
) -> bool:
    """
    Conditionally reassign a card's owner.

    The update only applies while the card is still held by
    expected_owner_id (or still unowned when that is None).
    Cards already loaded in the session are not updated; re-read them with
    get_card(..., refresh=True).

    Returns:
        True if the row was updated, False if ownership had already moved.
    """
    stmt = update(CardDB).where(CardDB.id == card_id)
    if expected_owner_id is None:
        stmt = stmt.where(CardDB.owner_id.is_(None))
    else:
        stmt = stmt.where(CardDB.owner_id == expected_owner_id)

    result = await session.execute(
        stmt.values(owner_id=new_owner_id).execution_options(synchronize_session=False)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    return int(result.rowcount) == 1  # type: ignore[attr-defined]


# --- Collection Ledger Operations ---


async def move_collection_entry(
    session: AsyncSession, card_id: int, user_id: int
) -> CollectionEntryDB:
    """
    Place a card in a user's collection, removing it from any other.

    The new entry goes to the end of the user's collection.
    """
    await session.execute(delete(CollectionEntryDB).where(CollectionEntryDB.card_id == card_id))
    entry = CollectionEntryDB(user_id=user_id, card_id=card_id)
    session.add(entry)
    await session.flush()
    return entry


async def list_collection(session: AsyncSession, user_id: int) -> list[CardDB]:
    """Get the cards a user holds, in acquisition order."""
    result = await session.execute(
        select(CardDB)
        .join(CollectionEntryDB, CollectionEntryDB.card_id == CardDB.id)
        .where(CollectionEntryDB.user_id == user_id)
        .order_by(CollectionEntryDB.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def card_to_model(card: CardDB, include_owner: bool = False) -> Card:
    """
    Convert a database card to a domain model.

    include_owner requires the owner relationship to be loaded
    (see list_cards).
    """
    owner = None
    if include_owner and card.owner is not None:
        owner = Owner(id=card.owner.id, username=card.owner.username)
    return Card(
        id=card.id,
        name=card.name,
        image_url=card.image_url,
        owner_id=card.owner_id,
        owner=owner,
    )


def collection_to_model(user_id: int, cards: list[CardDB]) -> Collection:
    """Convert ledger query results to a domain model."""
    return Collection(user_id=user_id, cards=[card_to_model(card) for card in cards])
