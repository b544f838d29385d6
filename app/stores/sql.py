"""SQLAlchemy-backed user store."""

import logging
from datetime import datetime
from typing import NoReturn

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import Conflict, StoreFailure
from app.models.user import User
from app.stores.base import UserRecord, check_reset_pair, normalize_email

logger = logging.getLogger("gastable")


def _to_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
        reset_token=row.reset_token,
        reset_token_expires_at=row.reset_token_expires_at,
    )


class SqlUserStore:
    """User store on a relational database.

    Email uniqueness is enforced by the unique index on ``user.email``, so two
    racing registrations cannot both commit.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_email(self, email: str) -> UserRecord | None:
        try:
            row = self.db.query(User).filter(User.email == normalize_email(email)).first()
        except SQLAlchemyError as exc:
            self._fail("find_by_email", exc)
        return _to_record(row) if row else None

    def find_by_reset_token(self, token: str) -> UserRecord | None:
        try:
            row = self.db.query(User).filter(User.reset_token == token).first()
        except SQLAlchemyError as exc:
            self._fail("find_by_reset_token", exc)
        return _to_record(row) if row else None

    def create(self, user: UserRecord) -> UserRecord:
        row = User(
            id=user.id,
            name=user.name,
            email=normalize_email(user.email),
            password_hash=user.password_hash,
            reset_token=user.reset_token,
            reset_token_expires_at=user.reset_token_expires_at,
            created_at=user.created_at,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict(user.email) from None
        except SQLAlchemyError as exc:
            self._fail("create", exc)
        self.db.refresh(row)
        return _to_record(row)

    def update_credentials(
        self,
        user_id: str,
        password_hash: str,
        reset_token: str | None,
        reset_token_expires_at: datetime | None,
        *,
        expected_reset_token: str | None = None,
    ) -> bool:
        check_reset_pair(reset_token, reset_token_expires_at)
        query = self.db.query(User).filter(User.id == user_id)
        if expected_reset_token is not None:
            query = query.filter(User.reset_token == expected_reset_token)
        try:
            updated = query.update(
                {
                    User.password_hash: password_hash,
                    User.reset_token: reset_token,
                    User.reset_token_expires_at: reset_token_expires_at,
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail("update_credentials", exc)
        return updated == 1

    def update_password_hash(self, user_id: str, password_hash: str, *, expected_hash: str) -> bool:
        try:
            updated = (
                self.db.query(User)
                .filter(User.id == user_id, User.password_hash == expected_hash)
                .update({User.password_hash: password_hash}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail("update_password_hash", exc)
        return updated == 1

    def update_reset(self, user_id: str, reset_token: str | None, reset_token_expires_at: datetime | None) -> None:
        check_reset_pair(reset_token, reset_token_expires_at)
        try:
            self.db.query(User).filter(User.id == user_id).update(
                {User.reset_token: reset_token, User.reset_token_expires_at: reset_token_expires_at},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail("update_reset", exc)

    def _fail(self, operation: str, exc: SQLAlchemyError) -> NoReturn:
        self.db.rollback()
        logger.exception("User store %s failed", operation)
        raise StoreFailure(operation) from exc
