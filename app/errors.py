"""Error taxonomy for the authentication subsystem.

Services raise (or return) precise causes so callers and tests can tell them
apart. HTTP handlers must only ever show the generic text from
``public_message`` so the response does not reveal which check failed.
"""

import enum


class AuthError(Exception):
    """Base class for authentication errors."""


class InvalidInput(AuthError):
    """A required field is missing or blank."""


class AlreadyExists(AuthError):
    """Registration for an email that already has an account."""


class InvalidCredentials(AuthError):
    """Wrong email or password. Unknown email is reported the same way."""


class InvalidOrExpiredToken(AuthError):
    """Bad, tampered, expired or already used bearer or reset token."""


class StoreFailure(AuthError):
    """The user store could not complete an operation."""


class Conflict(Exception):
    """Raised by a user store when an insert would duplicate an email."""


class AuthFailure(enum.Enum):
    """Why a credential check failed."""

    UNKNOWN_EMAIL = "unknown_email"
    WRONG_PASSWORD = "wrong_password"


class ResetOutcome(enum.Enum):
    """Result of redeeming a password reset token."""

    OK = "ok"
    UNKNOWN_TOKEN = "unknown_token"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"


_PUBLIC_MESSAGES: dict[type[AuthError], str] = {
    InvalidInput: "Missing fields",
    AlreadyExists: "Email already registered",
    InvalidCredentials: "Invalid email or password",
    InvalidOrExpiredToken: "Invalid or expired token",
    StoreFailure: "Service temporarily unavailable",
}


def public_message(error: type[AuthError] | AuthError) -> str:
    """Client-facing message for an error class or instance."""
    error_type = error if isinstance(error, type) else type(error)
    for cls in error_type.__mro__:
        if cls in _PUBLIC_MESSAGES:
            return _PUBLIC_MESSAGES[cls]
    return "Request failed"
