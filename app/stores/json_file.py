"""Flat-file user store: a JSON array of user objects."""

import dataclasses
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from app.errors import Conflict, StoreFailure
from app.stores.base import UserRecord, check_reset_pair, normalize_email

logger = logging.getLogger("gastable")


def _to_dict(user: UserRecord) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "password_hash": user.password_hash,
        "reset_token": user.reset_token,
        "reset_token_expires_at": user.reset_token_expires_at.isoformat() if user.reset_token_expires_at else None,
        "created_at": user.created_at.isoformat(),
    }


def _from_dict(data: dict[str, Any]) -> UserRecord:
    expires = data.get("reset_token_expires_at")
    return UserRecord(
        id=data["id"],
        name=data["name"],
        email=data["email"],
        password_hash=data["password_hash"],
        created_at=datetime.fromisoformat(data["created_at"]),
        reset_token=data.get("reset_token"),
        reset_token_expires_at=datetime.fromisoformat(expires) if expires else None,
    )


class JsonFileUserStore:
    """User store backed by a single JSON file.

    Every read-modify-write runs under one lock, so check-then-insert on
    email and compare-and-set on reset tokens are atomic within this process.
    Separate processes sharing the file are not serialized; use the SQL store
    for multi-worker deployments.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def find_by_email(self, email: str) -> UserRecord | None:
        email = normalize_email(email)
        with self._lock:
            users = self._read()
        return next((u for u in users if u.email == email), None)

    def find_by_reset_token(self, token: str) -> UserRecord | None:
        with self._lock:
            users = self._read()
        return next((u for u in users if u.reset_token is not None and u.reset_token == token), None)

    def create(self, user: UserRecord) -> UserRecord:
        email = normalize_email(user.email)
        with self._lock:
            users = self._read()
            if any(u.email == email for u in users):
                raise Conflict(email)
            if email != user.email:
                user = dataclasses.replace(user, email=email)
            users.append(user)
            self._write(users)
        return user

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

        def guard(user: UserRecord) -> bool:
            return expected_reset_token is None or user.reset_token == expected_reset_token

        return self._replace(
            user_id,
            guard,
            password_hash=password_hash,
            reset_token=reset_token,
            reset_token_expires_at=reset_token_expires_at,
        )

    def update_password_hash(self, user_id: str, password_hash: str, *, expected_hash: str) -> bool:
        return self._replace(user_id, lambda user: user.password_hash == expected_hash, password_hash=password_hash)

    def update_reset(self, user_id: str, reset_token: str | None, reset_token_expires_at: datetime | None) -> None:
        check_reset_pair(reset_token, reset_token_expires_at)
        self._replace(
            user_id,
            lambda user: True,
            reset_token=reset_token,
            reset_token_expires_at=reset_token_expires_at,
        )

    def _replace(self, user_id: str, guard: Callable[[UserRecord], bool], **changes: Any) -> bool:
        with self._lock:
            users = self._read()
            for index, user in enumerate(users):
                if user.id == user_id:
                    if not guard(user):
                        return False
                    users[index] = dataclasses.replace(user, **changes)
                    self._write(users)
                    return True
        return False

    def _read(self) -> list[UserRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            if not isinstance(raw, list):
                raise ValueError("user file must hold a JSON array")
            return [_from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.exception("Reading user file %s failed", self.path)
            raise StoreFailure("read") from exc

    def _write(self, users: list[UserRecord]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([_to_dict(u) for u in users], f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            logger.exception("Writing user file %s failed", self.path)
            raise StoreFailure("write") from exc
