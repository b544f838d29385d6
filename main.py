"""Gas Table - compressible flow calculators behind an account login."""

import logging
import time
from datetime import timedelta
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.config import Settings, get_settings
from app.database import init_db
from app.dependencies import (
    CurrentUser,
    get_credential_service,
    get_current_user,
    get_current_user_from_cookie,
    get_session_issuer,
)
from app.errors import (
    AlreadyExists,
    InvalidCredentials,
    InvalidInput,
    InvalidOrExpiredToken,
    StoreFailure,
    public_message,
)
from app.gate import ENTRY_PATH, RouteGateMiddleware
from app.rate_limit import limiter
from app.routers import auth_router
from app.services.auth import CredentialService
from app.services.jwt import TokenCodec
from app.services.passwords import PasswordHasher
from app.services.session import SessionIssuer
from app.stores.json_file import JsonFileUserStore

# Logging
logger = logging.getLogger("gastable")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

FORGOT_MESSAGE = "If an account exists with that email, a reset link has been generated."

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=BASE_DIR / "templates")


# --- Security headers middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; style-src 'self' 'unsafe-inline'; img-src 'self' data:; form-action 'self'"
        )
        return response


# --- Request size limit middleware ---
class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    MAX_BODY_SIZE = 64 * 1024  # auth forms and JSON bodies only

    async def dispatch(self, request: Request, call_next) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.MAX_BODY_SIZE:
            return JSONResponse(status_code=413, content={"detail": "Request body too large"})
        return await call_next(request)


# --- Audit logging middleware ---
class AuditLogMiddleware(BaseHTTPMiddleware):
    AUDIT_PATHS = (
        "/api/register",
        "/api/login",
        "/api/forgot",
        "/api/reset",
        "/register",
        "/login",
        "/forgot-password",
        "/reset-password",
    )

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000

        path = request.url.path
        if request.method == "POST" and path in self.AUDIT_PATHS:
            logger.info(
                "AUDIT %s %s -> %d (%.0fms) from %s",
                request.method,
                path,
                response.status_code,
                duration_ms,
                request.client.host if request.client else "unknown",
            )

        return response


# --- Exception handlers ---
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Handle rate limit exceeded."""
    if request.url.path.startswith("/api/"):
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded. Try again later."})
    return HTMLResponse(content="<h1>429</h1><p>Too many requests. Please try again later.</p>", status_code=429)


async def store_failure_handler(request: Request, exc: StoreFailure) -> Response:
    """Persistence errors reach the client as an opaque 503."""
    if request.url.path.startswith("/api/"):
        return JSONResponse(status_code=503, content={"detail": public_message(exc)})
    return HTMLResponse(content=f"<h1>503</h1><p>{public_message(exc)}</p>", status_code=503)


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Handle HTTP exceptions. Redirect 401 to the entry page for web requests."""
    if exc.status_code == 401 and not request.url.path.startswith("/api/"):
        return RedirectResponse(url=ENTRY_PATH, status_code=302)
    if request.url.path.startswith("/api/"):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
    return HTMLResponse(
        content=f"<h1>{exc.status_code}</h1><p>{exc.detail}</p>",
        status_code=exc.status_code,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. The signing secret is read here and nowhere else."""
    settings = settings or get_settings()
    for problem in settings.validate():
        logger.warning("Configuration: %s", problem)

    codec = TokenCodec(settings.signing_secret, default_ttl=settings.AUTH_TOKEN_TTL_SECONDS)

    application = FastAPI(title="Gas Table", version="0.1.0")
    application.state.settings = settings
    application.state.limiter = limiter
    application.state.token_codec = codec
    application.state.session_issuer = SessionIssuer(codec, secure=settings.COOKIE_SECURE)
    application.state.password_hasher = PasswordHasher(iterations=settings.PASSWORD_HASH_ITERATIONS)
    application.state.reset_ttl = timedelta(minutes=settings.RESET_TOKEN_TTL_MINUTES)
    if settings.USER_STORE == "json":
        application.state.user_store = JsonFileUserStore(settings.USER_STORE_PATH)
    else:
        application.state.user_store = None
        if not settings.is_production:
            init_db()

    # Added innermost first: the gate runs after the outer hardening layers.
    application.add_middleware(RouteGateMiddleware, codec=codec)
    application.add_middleware(AuditLogMiddleware)
    application.add_middleware(RequestSizeLimitMiddleware)
    application.add_middleware(SecurityHeadersMiddleware)

    application.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    application.add_exception_handler(StoreFailure, store_failure_handler)
    application.add_exception_handler(HTTPException, http_exception_handler)

    application.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
    application.include_router(auth_router)
    application.include_router(web_router)
    return application


# --- Web routes ---
web_router = APIRouter()


def _render(request: Request, template: str, **context) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


@web_router.get("/api/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "app": "gastable", "version": "0.1.0"}


@web_router.get("/welcome", response_class=HTMLResponse)
def welcome_page(request: Request) -> HTMLResponse:
    """Render the public entry page."""
    return _render(request, "welcome.html", user=get_current_user_from_cookie(request))


@web_router.get("/login", response_class=HTMLResponse)
def login_page(request: Request) -> Response:
    """Render login page."""
    if get_current_user_from_cookie(request):
        return RedirectResponse(url="/dashboard", status_code=302)
    return _render(request, "login.html")


@web_router.post("/login", response_class=HTMLResponse)
def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    service: CredentialService = Depends(get_credential_service),
    sessions: SessionIssuer = Depends(get_session_issuer),
) -> Response:
    """Handle login form submission."""
    user = service.authenticate(email, password) if email.strip() and password else None
    if user is None:
        return _render(request, "login.html", error=public_message(InvalidCredentials), email=email)

    response = RedirectResponse(url="/dashboard", status_code=302)
    sessions.start(response, user)
    return response


@web_router.get("/register", response_class=HTMLResponse)
def register_page(request: Request) -> Response:
    """Render register page."""
    if get_current_user_from_cookie(request):
        return RedirectResponse(url="/dashboard", status_code=302)
    return _render(request, "register.html")


@web_router.post("/register", response_class=HTMLResponse)
def register_submit(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    service: CredentialService = Depends(get_credential_service),
    sessions: SessionIssuer = Depends(get_session_issuer),
) -> Response:
    """Handle register form submission."""
    try:
        user = service.register(name, email, password)
    except (InvalidInput, AlreadyExists) as exc:
        return _render(request, "register.html", error=public_message(exc), name=name, email=email)

    response = RedirectResponse(url="/dashboard", status_code=302)
    sessions.start(response, user)
    return response


@web_router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_page(request: Request) -> HTMLResponse:
    """Render forgot password page."""
    return _render(request, "forgot_password.html")


@web_router.post("/forgot-password", response_class=HTMLResponse)
def forgot_password_submit(
    request: Request,
    email: str = Form(""),
    service: CredentialService = Depends(get_credential_service),
) -> HTMLResponse:
    """Handle forgot password form. Logs the reset link to the server console."""
    if not email.strip():
        return _render(request, "forgot_password.html", error=public_message(InvalidInput))

    ticket = service.issue_reset(email)
    if ticket:
        base_url = str(request.base_url).rstrip("/")
        logger.info("PASSWORD RESET: %s/reset-password?token=%s", base_url, ticket.token)
    return _render(request, "forgot_password.html", message=FORGOT_MESSAGE)


@web_router.get("/reset-password", response_class=HTMLResponse)
def reset_password_page(request: Request, token: str = "") -> HTMLResponse:
    """Render reset password page."""
    if not token:
        return _render(request, "reset_password.html", error="Missing reset token")
    return _render(request, "reset_password.html", token=token)


@web_router.post("/reset-password", response_class=HTMLResponse)
def reset_password_submit(
    request: Request,
    token: str = Form(""),
    password: str = Form(""),
    service: CredentialService = Depends(get_credential_service),
) -> Response:
    """Handle reset form. Success sends the user to log in with the new password."""
    if not token or not password:
        return _render(request, "reset_password.html", error=public_message(InvalidInput), token=token)
    if not service.consume_reset(token, password):
        return _render(request, "reset_password.html", error=public_message(InvalidOrExpiredToken))
    return RedirectResponse(url="/login?reset=1", status_code=302)


@web_router.get("/logout")
def logout(sessions: SessionIssuer = Depends(get_session_issuer)) -> RedirectResponse:
    """Clear auth cookie and redirect to the entry page."""
    response = RedirectResponse(url=ENTRY_PATH, status_code=302)
    sessions.end(response)
    return response


@web_router.get("/")
def index() -> RedirectResponse:
    return RedirectResponse(url="/dashboard", status_code=302)


@web_router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request, user: CurrentUser = Depends(get_current_user)) -> HTMLResponse:
    """Render the calculator index for a signed-in user."""
    return _render(request, "dashboard.html", user=user)


app = create_app()
