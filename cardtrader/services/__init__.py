"""
CardTrader services.

Business logic for accounts and for moving cards between collections.
"""

from cardtrader.services.auth import (
    TokenService,
    hash_password,
    hash_password_async,
    verify_password,
    verify_password_async,
)
from cardtrader.services.trading import (
    CardLockRegistry,
    card_locks,
    claim_card,
    create_owned_card,
    draw_random_cards,
    grant_starter_cards,
    transfer_card,
)

__all__ = [
    # Accounts
    "TokenService",
    "hash_password",
    "hash_password_async",
    "verify_password",
    "verify_password_async",
    # Ownership
    "CardLockRegistry",
    "card_locks",
    "claim_card",
    "create_owned_card",
    "draw_random_cards",
    "grant_starter_cards",
    "transfer_card",
]
