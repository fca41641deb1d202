from dataclasses import dataclass, field

from cardtrader.models.card import Card


@dataclass
class Collection:
    """
    A user's card collection.

    Cards are kept in acquisition order. A card appears at most once.
    """

    user_id: int
    cards: list[Card] = field(default_factory=list)
