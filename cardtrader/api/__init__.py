from cardtrader.api.auth import router as auth_router
from cardtrader.api.cards import router as cards_router
from cardtrader.api.health import router as health_router

__all__ = [
    "auth_router",
    "cards_router",
    "health_router",
]
