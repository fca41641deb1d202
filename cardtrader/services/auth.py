"""
Credential and token handling.

Passwords are stored as salted bcrypt hashes. Identity tokens are HS256 JWTs
carrying {userId, iat, exp}; nothing about a login is kept server-side, so
the token alone is the authorization assertion.

bcrypt is CPU-bound, so the async helpers push it onto a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from cardtrader.models.failure import AuthenticationError, FailureKind, ValidationError

logger = logging.getLogger(__name__)

# bcrypt ignores (or rejects, depending on version) anything past 72 bytes
MAX_PASSWORD_BYTES = 72

USER_ID_CLAIM = "userId"


def _password_bytes(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            kind=FailureKind.VALIDATION_FAILED,
            message="Password is too long.",
            detail=f"Passwords are limited to {MAX_PASSWORD_BYTES} bytes",
        )
    return encoded


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash a plaintext password with a fresh salt.

    Raises:
        ValidationError: If the password exceeds bcrypt's input limit
    """
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a stored hash."""
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("ascii"))
    except (ValidationError, ValueError):
        return False


async def hash_password_async(password: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password, password, password_hash)


@dataclass(frozen=True)
class TokenService:
    """
    Issues and verifies signed identity tokens.

    Attributes:
        secret: Signing key shared by every process that verifies tokens
        algorithm: JWT signing algorithm
        expires_in: Token lifetime
    """

    secret: str
    algorithm: str = "HS256"
    expires_in: timedelta = timedelta(hours=1)

    def issue(self, user_id: int, now: datetime | None = None) -> str:
        """Create a token binding user_id, valid for expires_in."""
        issued_at = now or datetime.now(UTC)
        payload: dict[str, Any] = {
            USER_ID_CLAIM: user_id,
            "iat": issued_at,
            "exp": issued_at + self.expires_in,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> int:
        """
        Verify a token and return the user id it carries.

        Raises:
            AuthenticationError: Bad signature, malformed, expired, or no user id
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Rejected expired token")
            raise AuthenticationError(
                kind=FailureKind.INVALID_CREDENTIAL,
                message="Invalid credential.",
                detail="Token expired",
                suggestion="Log in again to get a new token.",
            ) from e
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected invalid token: %s", e)
            raise AuthenticationError(
                kind=FailureKind.INVALID_CREDENTIAL,
                message="Invalid credential.",
            ) from e

        user_id = payload.get(USER_ID_CLAIM)
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise AuthenticationError(
                kind=FailureKind.INVALID_CREDENTIAL,
                message="Invalid credential.",
                detail="Token carries no user id",
            )
        return user_id
