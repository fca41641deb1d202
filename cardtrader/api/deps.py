"""
Shared FastAPI dependencies.

The authentication gate lives here: routes that take a CurrentUserId only
run once the caller's bearer token has been verified.
"""

from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Header

from cardtrader.config import Settings, get_settings
from cardtrader.models.failure import AuthenticationError, FailureKind
from cardtrader.services.auth import TokenService

BEARER_PREFIX = "bearer "


def get_token_service(settings: Annotated[Settings, Depends(get_settings)]) -> TokenService:
    """Build the token service from the active settings."""
    return TokenService(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expires_in=timedelta(minutes=settings.token_expiry_minutes),
    )


def extract_bearer_token(authorization: str | None) -> str:
    """
    Pull the token out of an `Authorization: Bearer <token>` header value.

    Raises:
        AuthenticationError: Header absent or not a well-formed bearer credential
    """
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        raise AuthenticationError(
            kind=FailureKind.MISSING_CREDENTIAL,
            message="Missing credential.",
            suggestion="Send 'Authorization: Bearer <token>' from /login.",
        )
    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise AuthenticationError(
            kind=FailureKind.MISSING_CREDENTIAL,
            message="Missing credential.",
            suggestion="Send 'Authorization: Bearer <token>' from /login.",
        )
    return token


async def get_current_user_id(
    tokens: Annotated[TokenService, Depends(get_token_service)],
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    """Authentication gate: verified caller id, or a 403."""
    return tokens.verify(extract_bearer_token(authorization))


CurrentUserId = Annotated[int, Depends(get_current_user_id)]
