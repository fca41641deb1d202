from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Owner:
    """Display reference to a card's current holder."""

    id: int
    username: str


@dataclass(frozen=True, slots=True)
class Card:
    """
    A tradeable card.

    Attributes:
        id: Registry identifier
        name: Card name as imported (e.g., "Pikachu")
        image_url: Small image from the card catalog, if any
        owner_id: Current holder, or None while unowned
        owner: Resolved holder for display; only set by catalog queries
    """

    id: int
    name: str
    image_url: str | None = None
    owner_id: int | None = None
    owner: Owner | None = None
