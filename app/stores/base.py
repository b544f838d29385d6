"""User store contract shared by every persistence backend."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol


def utcnow() -> datetime:
    """Current time as naive UTC, the form every store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_reset_pair(reset_token: str | None, reset_token_expires_at: datetime | None) -> None:
    if (reset_token is None) != (reset_token_expires_at is None):
        raise ValueError("reset_token and reset_token_expires_at must be set or cleared together")


@dataclass(frozen=True)
class PublicUser:
    """What callers may see of a user."""

    id: str
    name: str
    email: str


@dataclass(frozen=True)
class UserRecord:
    """A stored user."""

    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    reset_token: str | None = None
    reset_token_expires_at: datetime | None = None

    def __post_init__(self) -> None:
        check_reset_pair(self.reset_token, self.reset_token_expires_at)

    @classmethod
    def new(cls, name: str, email: str, password_hash: str) -> "UserRecord":
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            email=normalize_email(email),
            password_hash=password_hash,
            created_at=utcnow(),
        )

    def public(self) -> PublicUser:
        return PublicUser(id=self.id, name=self.name, email=self.email)


class UserStore(Protocol):
    """Persistence operations the credential service relies on.

    Implementations raise ``Conflict`` from ``create`` for a duplicate email
    and ``StoreFailure`` for any other persistence error.
    """

    def find_by_email(self, email: str) -> UserRecord | None: ...

    def find_by_reset_token(self, token: str) -> UserRecord | None: ...

    def create(self, user: UserRecord) -> UserRecord: ...

    def update_credentials(
        self,
        user_id: str,
        password_hash: str,
        reset_token: str | None,
        reset_token_expires_at: datetime | None,
        *,
        expected_reset_token: str | None = None,
    ) -> bool:
        """Replace the password hash and reset fields.

        With ``expected_reset_token`` the update only applies while the user's
        current reset token still equals it. Returns whether a user was updated.
        """
        ...

    def update_password_hash(self, user_id: str, password_hash: str, *, expected_hash: str) -> bool:
        """Replace only the password hash, and only while it still equals ``expected_hash``."""
        ...

    def update_reset(self, user_id: str, reset_token: str | None, reset_token_expires_at: datetime | None) -> None: ...
