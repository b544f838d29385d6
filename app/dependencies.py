"""Dependencies shared by API and page routes."""

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.gate import extract_token
from app.services.auth import CredentialService
from app.services.jwt import TokenCodec
from app.services.passwords import PasswordHasher
from app.services.session import SessionIssuer
from app.stores.base import UserStore
from app.stores.sql import SqlUserStore


@dataclass
class CurrentUser:
    """Authenticated user context taken from verified token claims."""

    user_id: str
    email: str
    name: str

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "CurrentUser":
        return cls(
            user_id=str(claims.get("sub", "")),
            email=str(claims.get("email", "")),
            name=str(claims.get("name", "")),
        )


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.session_issuer


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


def get_user_store(request: Request, db: Session = Depends(get_db)) -> UserStore:
    """The configured user store: a shared file store, or SQL on this request's session."""
    store = getattr(request.app.state, "user_store", None)
    if store is not None:
        return store
    return SqlUserStore(db)


def get_credential_service(
    request: Request,
    store: UserStore = Depends(get_user_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> CredentialService:
    return CredentialService(store, hasher, reset_ttl=request.app.state.reset_ttl)


def get_current_user(request: Request) -> CurrentUser:
    """User whose token the route gate verified. Raises 401 if there is none."""
    claims = getattr(request.state, "claims", None)
    if not claims:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return CurrentUser.from_claims(claims)


def get_current_user_from_cookie(request: Request) -> CurrentUser | None:
    """Verify the request's token on public routes; None if missing or invalid."""
    claims = get_token_codec(request).verify(extract_token(request, get_session_issuer(request).cookie_name))
    if not claims:
        return None
    return CurrentUser.from_claims(claims)
