"""
Account API endpoints.

Registration and login. Login hands back a bearer token for the card routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardtrader.api.deps import get_token_service
from cardtrader.config import Settings, get_settings
from cardtrader.db.database import get_session
from cardtrader.db.operations import create_user, get_user_by_username
from cardtrader.models.failure import FailureKind, ValidationError
from cardtrader.services.auth import TokenService, hash_password_async, verify_password_async
from cardtrader.services.trading import grant_starter_cards

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class CredentialsRequest(BaseModel):
    """Request model for registration and login."""

    username: str = Field(..., min_length=1, max_length=50, examples=["ash"])
    password: str = Field(..., min_length=1, examples=["pikachu123"])


class MessageResponse(BaseModel):
    message: str


class TokenResponse(BaseModel):
    token: str


def _registration_failed() -> ValidationError:
    # Same answer for every cause so callers cannot tell which usernames exist
    return ValidationError(
        kind=FailureKind.REGISTRATION_FAILED,
        message="User registration failed!",
    )


def _invalid_login() -> ValidationError:
    return ValidationError(
        kind=FailureKind.INVALID_LOGIN,
        message="Invalid username or password.",
    )


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: CredentialsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    """
    Create an account.

    The password is stored only as a bcrypt hash. New accounts receive a
    random unowned card as a starter gift when one is available.
    """
    username = request.username.strip()
    if not username:
        raise _registration_failed()

    password_hash = await hash_password_async(request.password, settings.bcrypt_rounds)

    try:
        if await get_user_by_username(session, username) is not None:
            raise _registration_failed()
        user = await create_user(session, username, password_hash)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Registration of %r failed: %s", username, type(e).__name__)
        raise _registration_failed() from e

    try:
        gift = await grant_starter_cards(session, user.id, settings.starter_card_count)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Starter gift for user %d failed", user.id)
        gift = []

    logger.info("Registered user %d (%s) with %d starter card(s)", user.id, username, len(gift))
    return MessageResponse(message="User created successfully!")


@router.post("/login", response_model=TokenResponse)
async def login(
    request: CredentialsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> TokenResponse:
    """
    Exchange username and password for a bearer token.

    Unknown usernames and wrong passwords get the same response.
    """
    user = await get_user_by_username(session, request.username.strip())
    if user is None:
        logger.info("Login failed: unknown user %r", request.username)
        raise _invalid_login()

    if not await verify_password_async(request.password, user.password_hash):
        logger.info("Login failed: wrong password for user %d", user.id)
        raise _invalid_login()

    logger.info("User %d logged in", user.id)
    return TokenResponse(token=tokens.issue(user.id))
