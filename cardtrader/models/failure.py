"""
Failure Envelope: Typed Errors and Response Classification.

Every failure leaving the API is rendered as an ApiResponse so clients
receive a machine-readable `kind` alongside the human message.

Response types:
- KnownFailure: System knows why it failed (validation, auth, not found, ...)
- UnknownFailure: System does not know why it failed

Services raise KnownError subclasses. The exception handlers in
cardtrader.main are the single place that turns them into HTTP responses.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    VALIDATION_FAILED = "validation_failed"
    REGISTRATION_FAILED = "registration_failed"
    INVALID_LOGIN = "invalid_login"

    # Authentication gate
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"

    # Resource failures
    NOT_FOUND = "not_found"
    CARD_NOT_FOUND = "card_not_found"
    USER_NOT_FOUND = "user_not_found"
    NO_CARDS_AVAILABLE = "no_cards_available"

    # Ownership
    NOT_OWNER = "not_owner"

    # Internal errors
    INTERNAL_ERROR = "internal_error"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


UNKNOWN_FAILURE_MESSAGE = "Something went wrong and the cause is unknown. Please retry."


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel):
    """Response envelope used for every failure the API reports."""

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: Any = Field(
        default=None,
        description="Always null; failures carry no payload",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse":
        """
        Create a known failure response.

        Use when the system knows exactly why the operation failed.
        Example: Card not found, caller is not the owner.
        """
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )

    @classmethod
    def unknown_failure(
        cls,
        detail: str | None = None,
    ) -> "ApiResponse":
        """
        Create an unknown failure response.

        The catch-all for unexpected exceptions. The message is fixed.
        """
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message=UNKNOWN_FAILURE_MESSAGE,
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    default_status_code = 400

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code if status_code is not None else self.default_status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class ValidationError(KnownError):
    """Missing, malformed or conflicting input."""

    default_status_code = 400


class AuthenticationError(KnownError):
    """Missing, invalid or expired bearer credential."""

    default_status_code = 403


class NotFoundError(KnownError):
    """Unknown user or card."""

    default_status_code = 404


class AuthorizationError(KnownError):
    """Caller lacks authority over the resource."""

    default_status_code = 403


class InternalError(KnownError):
    """Storage or other server-side failure with a known boundary."""

    default_status_code = 500
