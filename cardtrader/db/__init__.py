from cardtrader.db.database import get_session, init_db
from cardtrader.db.operations import (
    card_to_model,
    collection_to_model,
    count_cards,
    create_card,
    create_user,
    get_card,
    get_card_by_name,
    get_user,
    get_user_by_username,
    list_cards,
    list_collection,
    list_unowned_card_ids,
    move_collection_entry,
    set_card_owner,
)

__all__ = [
    "card_to_model",
    "collection_to_model",
    "count_cards",
    "create_card",
    "create_user",
    "get_card",
    "get_card_by_name",
    "get_session",
    "get_user",
    "get_user_by_username",
    "init_db",
    "list_cards",
    "list_collection",
    "list_unowned_card_ids",
    "move_collection_entry",
    "set_card_owner",
]
