"""Authentication service: registration, login and password resets."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.errors import AlreadyExists, AuthFailure, Conflict, InvalidInput, ResetOutcome
from app.services.passwords import PasswordHasher
from app.stores.base import PublicUser, UserRecord, UserStore, normalize_email, utcnow

logger = logging.getLogger("gastable")

RESET_TOKEN_BYTES = 24
RESET_TOKEN_TTL = timedelta(minutes=15)


@dataclass
class AuthResult:
    """Result of a credential check."""

    user: PublicUser | None = None
    failure: AuthFailure | None = None

    @property
    def success(self) -> bool:
        return self.user is not None


@dataclass(frozen=True)
class ResetTicket:
    """A freshly issued password reset token."""

    token: str
    expires_at: datetime


def _is_text(value: str | None) -> bool:
    """True for a non-blank string that encodes to UTF-8."""
    if not value or not value.strip():
        return False
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _require(**fields: str | None) -> None:
    missing = [name for name, value in fields.items() if not _is_text(value)]
    if missing:
        raise InvalidInput(", ".join(missing))


class CredentialService:
    """Handles user registration, authentication and password resets."""

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        clock: Callable[[], datetime] = utcnow,
        reset_ttl: timedelta = RESET_TOKEN_TTL,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.clock = clock
        self.reset_ttl = reset_ttl

    def register(self, name: str, email: str, password: str) -> PublicUser:
        """Create an account. Raises AlreadyExists for a taken email."""
        _require(name=name, email=email, password=password)
        email = normalize_email(email)
        if self.store.find_by_email(email) is not None:
            raise AlreadyExists(email)

        record = UserRecord.new(name=name.strip(), email=email, password_hash=self.hasher.hash(password))
        try:
            created = self.store.create(record)
        except Conflict:
            # Lost a race with a concurrent registration for the same email.
            raise AlreadyExists(email) from None

        logger.info("Registered user %s", created.id)
        return created.public()

    def check_credentials(self, email: str, password: str) -> AuthResult:
        """Check an email/password pair and report exactly why it failed."""
        user = self.store.find_by_email(email) if _is_text(email) else None
        if user is None:
            self.hasher.dummy_verify(password or "")
            return AuthResult(failure=AuthFailure.UNKNOWN_EMAIL)

        if not self.hasher.verify(password or "", user.password_hash):
            return AuthResult(failure=AuthFailure.WRONG_PASSWORD)

        if self.hasher.needs_rehash(user.password_hash):
            # Only the hash changes; a reset issued meanwhile stays pending.
            self.store.update_password_hash(user.id, self.hasher.hash(password), expected_hash=user.password_hash)
        return AuthResult(user=user.public())

    def authenticate(self, email: str, password: str) -> PublicUser | None:
        """Return the user for a valid email/password pair, otherwise None."""
        return self.check_credentials(email, password).user

    def issue_reset(self, email: str) -> ResetTicket | None:
        """Start a password reset. Returns None when no account has this email.

        Any earlier pending reset for the user is replaced.
        """
        if not _is_text(email):
            return None
        user = self.store.find_by_email(email)
        if user is None:
            return None

        ticket = ResetTicket(
            token=secrets.token_hex(RESET_TOKEN_BYTES),
            expires_at=self.clock() + self.reset_ttl,
        )
        self.store.update_reset(user.id, ticket.token, ticket.expires_at)
        return ticket

    def redeem_reset(self, token: str, new_password: str) -> ResetOutcome:
        """Set a new password with a reset token and report the precise outcome."""
        _require(password=new_password)
        if not _is_text(token):
            return ResetOutcome.UNKNOWN_TOKEN

        user = self.store.find_by_reset_token(token)
        if user is None:
            return ResetOutcome.UNKNOWN_TOKEN

        if user.reset_token_expires_at is None or self.clock() > user.reset_token_expires_at:
            self.store.update_credentials(user.id, user.password_hash, None, None, expected_reset_token=token)
            return ResetOutcome.EXPIRED

        # The store only applies this while the token is still current, so
        # two concurrent redemptions cannot both succeed.
        updated = self.store.update_credentials(
            user.id,
            self.hasher.hash(new_password),
            None,
            None,
            expected_reset_token=token,
        )
        if not updated:
            return ResetOutcome.ALREADY_USED

        logger.info("Password reset completed for user %s", user.id)
        return ResetOutcome.OK

    def consume_reset(self, token: str, new_password: str) -> bool:
        """Set a new password with a reset token. True exactly once per token."""
        return self.redeem_reset(token, new_password) is ResetOutcome.OK
