"""Authentication API endpoints."""

import logging
from datetime import timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.dependencies import (
    CurrentUser,
    get_credential_service,
    get_current_user,
    get_session_issuer,
)
from app.errors import AlreadyExists, InvalidCredentials, InvalidInput, InvalidOrExpiredToken, public_message
from app.rate_limit import limiter
from app.schemas.auth import (
    ClaimsResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    OkResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    UserResponse,
)
from app.services.auth import CredentialService
from app.services.session import SessionIssuer

logger = logging.getLogger("gastable")

router = APIRouter(prefix="/api", tags=["Authentication"])


@router.post("/register", response_model=SessionResponse)
@limiter.limit("5/minute")
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: CredentialService = Depends(get_credential_service),
    sessions: SessionIssuer = Depends(get_session_issuer),
) -> SessionResponse:
    """Register a new user account and start a session."""
    try:
        user = service.register(body.name, body.email, body.password)
    except InvalidInput:
        raise HTTPException(status_code=400, detail="Missing fields") from None
    except AlreadyExists as exc:
        raise HTTPException(status_code=400, detail=public_message(exc)) from None

    token = sessions.start(response, user)
    return SessionResponse(user=UserResponse(id=user.id, name=user.name, email=user.email), token=token)


@router.post("/login", response_model=SessionResponse)
@limiter.limit("10/minute")
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: CredentialService = Depends(get_credential_service),
    sessions: SessionIssuer = Depends(get_session_issuer),
) -> SessionResponse:
    """Authenticate and receive a session cookie and bearer token."""
    if not body.email.strip() or not body.password:
        raise HTTPException(status_code=400, detail="Missing credentials")

    user = service.authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail=public_message(InvalidCredentials))

    token = sessions.start(response, user)
    return SessionResponse(user=UserResponse(id=user.id, name=user.name, email=user.email), token=token)


@router.post("/forgot", response_model=ForgotPasswordResponse, response_model_exclude_none=True)
@limiter.limit("3/minute")
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
) -> ForgotPasswordResponse:
    """Request a password reset. The answer is the same whether or not the email exists."""
    if not body.email.strip():
        raise HTTPException(status_code=400, detail="Email required")

    ticket = service.issue_reset(body.email)
    if ticket is None:
        return ForgotPasswordResponse()

    base_url = str(request.base_url).rstrip("/")
    logger.info("PASSWORD RESET: %s/reset-password?token=%s", base_url, ticket.token)

    if request.app.state.settings.RESET_TOKEN_IN_RESPONSE:
        # Stored expiries are naive UTC; the response states the zone.
        return ForgotPasswordResponse(token=ticket.token, exp=ticket.expires_at.replace(tzinfo=timezone.utc))
    return ForgotPasswordResponse()


@router.post("/reset", response_model=OkResponse)
@limiter.limit("5/minute")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
) -> OkResponse:
    """Set a new password using a reset token."""
    if not body.token or not body.password:
        raise HTTPException(status_code=400, detail="Token and password required")

    if not service.consume_reset(body.token, body.password):
        raise HTTPException(status_code=400, detail=public_message(InvalidOrExpiredToken))
    return OkResponse()


@router.post("/logout", response_model=OkResponse)
def logout(response: Response, sessions: SessionIssuer = Depends(get_session_issuer)) -> OkResponse:
    """Clear the session cookie."""
    sessions.end(response)
    return OkResponse()


@router.get("/me", response_model=ClaimsResponse)
def me(request: Request, user: CurrentUser = Depends(get_current_user)) -> ClaimsResponse:
    """Return the verified claims of the current session."""
    claims = request.state.claims
    return ClaimsResponse(
        user_id=user.user_id,
        email=user.email,
        name=user.name,
        issued_at=claims["iat"],
        expires_at=claims["exp"],
    )
