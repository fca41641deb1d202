from cardtrader.models.card import Card, Owner
from cardtrader.models.collection import Collection
from cardtrader.models.failure import (
    ApiResponse,
    AuthenticationError,
    AuthorizationError,
    FailureDetail,
    FailureKind,
    InternalError,
    KnownError,
    NotFoundError,
    OutcomeType,
    ValidationError,
)

__all__ = [
    "ApiResponse",
    "AuthenticationError",
    "AuthorizationError",
    "Card",
    "Collection",
    "FailureDetail",
    "FailureKind",
    "InternalError",
    "KnownError",
    "NotFoundError",
    "OutcomeType",
    "Owner",
    "ValidationError",
]
