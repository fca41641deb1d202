"""
Card API endpoints.

Public catalog of every card, the caller's own collection, and the
operations that move cards between collections.
"""

from typing import Annotated, Self

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrader.api.deps import CurrentUserId
from cardtrader.config import Settings, get_settings
from cardtrader.db.database import get_session
from cardtrader.db.operations import (
    card_to_model,
    collection_to_model,
    get_user,
    list_cards,
    list_collection,
)
from cardtrader.models.card import Card
from cardtrader.models.failure import FailureKind, NotFoundError
from cardtrader.services.trading import (
    claim_card,
    create_owned_card,
    draw_random_cards,
    transfer_card,
)

router = APIRouter(tags=["cards"])


class CamelModel(BaseModel):
    """JSON bodies use camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CardResponse(CamelModel):
    """A card in a collection."""

    id: int
    name: str
    image_url: str | None = None
    owner_id: int | None = None

    @classmethod
    def from_model(cls, card: Card) -> "CardResponse":
        return cls(id=card.id, name=card.name, image_url=card.image_url, owner_id=card.owner_id)


class OwnerResponse(CamelModel):
    id: int
    username: str


class CatalogCardResponse(CamelModel):
    """A card in the public catalog, with its holder's name resolved."""

    id: int
    name: str
    image_url: str | None = None
    owner: OwnerResponse | None = None

    @classmethod
    def from_model(cls, card: Card) -> "CatalogCardResponse":
        owner = None
        if card.owner is not None:
            owner = OwnerResponse(id=card.owner.id, username=card.owner.username)
        return cls(id=card.id, name=card.name, image_url=card.image_url, owner=owner)


class AddCardRequest(CamelModel):
    """
    Request model for adding a card to the caller's collection.

    Either claim an existing card by id, or register a new card by name.
    """

    card_id: int | None = Field(default=None, description="Existing card to claim")
    card_name: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Name for a new card",
        examples=["Pikachu"],
    )
    image_url: str | None = Field(default=None, description="Image for a new card")

    @model_validator(mode="after")
    def exactly_one_target(self) -> Self:
        if (self.card_id is None) == (self.card_name is None):
            raise ValueError("Provide exactly one of cardId or cardName")
        if self.card_name is not None and not self.card_name.strip():
            raise ValueError("cardName cannot be blank")
        if self.image_url is not None and self.card_name is None:
            raise ValueError("imageUrl is only accepted with cardName")
        return self


class CardActionResponse(CamelModel):
    message: str
    card: CardResponse


class DrawResponse(CamelModel):
    cards: list[CardResponse] = Field(default_factory=list)


class TradeRequest(CamelModel):
    """Request model for giving one of the caller's cards to another user."""

    card_id: int
    target_user_id: int


@router.get("/cards", response_model=list[CardResponse])
async def get_my_cards(
    user_id: CurrentUserId,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[CardResponse]:
    """Get the caller's collection in the order the cards were acquired."""
    if await get_user(session, user_id) is None:
        raise NotFoundError(kind=FailureKind.NOT_FOUND, message="User not found.")

    collection = collection_to_model(user_id, await list_collection(session, user_id))
    return [CardResponse.from_model(card) for card in collection.cards]


@router.get("/all-cards", response_model=list[CatalogCardResponse])
async def get_all_cards(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[CatalogCardResponse]:
    """
    Get every card with its current holder.

    Public: this is the catalog players browse to find trades.
    """
    cards = await list_cards(session)
    return [CatalogCardResponse.from_model(card_to_model(c, include_owner=True)) for c in cards]


@router.post("/add-card", response_model=CardActionResponse, status_code=status.HTTP_201_CREATED)
async def add_card(
    request: AddCardRequest,
    user_id: CurrentUserId,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CardActionResponse:
    """
    Add a card to the caller's collection.

    With cardId, claims an existing card (a no-op if the caller already
    holds it). With cardName, registers a new card owned by the caller.
    """
    if request.card_name is not None:
        card = await create_owned_card(
            session, request.card_name.strip(), user_id, request.image_url
        )
    else:
        card = await claim_card(
            session, request.card_id, user_id, allow_unowned=settings.allow_unowned_claims
        )

    return CardActionResponse(
        message="Card added to collection!",
        card=CardResponse.from_model(card),
    )


@router.post(
    "/add-random-cards", response_model=DrawResponse, status_code=status.HTTP_201_CREATED
)
async def add_random_cards(
    user_id: CurrentUserId,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> DrawResponse:
    """Draw random unowned cards into the caller's collection."""
    cards = await draw_random_cards(session, user_id, settings.random_card_count)
    return DrawResponse(cards=[CardResponse.from_model(card) for card in cards])


@router.post("/trade", response_model=CardActionResponse)
async def trade(
    request: TradeRequest,
    user_id: CurrentUserId,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CardActionResponse:
    """
    Give one of the caller's cards to another user.

    The card leaves the caller's collection and joins the target's in the
    same transaction.
    """
    card = await transfer_card(
        session,
        request.card_id,
        user_id,
        request.target_user_id,
        allow_unowned=settings.allow_unowned_claims,
    )
    return CardActionResponse(
        message="Card trade successful!",
        card=CardResponse.from_model(card),
    )
