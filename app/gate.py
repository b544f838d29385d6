"""Route gate: every request outside the public allowlist needs a valid token."""

from collections.abc import Iterable

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from app.services.jwt import TokenCodec
from app.services.session import AUTH_COOKIE_NAME

ENTRY_PATH = "/welcome"

PUBLIC_PATHS = frozenset(
    {
        "/welcome",
        "/login",
        "/register",
        "/forgot-password",
        "/reset-password",
        "/api/login",
        "/api/register",
        "/api/forgot",
        "/api/reset",
        "/api/health",
        "/favicon.ico",
    }
)
PUBLIC_PREFIXES = ("/static/",)


def is_public_path(
    path: str,
    public_paths: Iterable[str] = PUBLIC_PATHS,
    public_prefixes: Iterable[str] = PUBLIC_PREFIXES,
) -> bool:
    """True when a path may be served without a credential."""
    if any(path.startswith(prefix) for prefix in public_prefixes):
        return True
    return any(path == p or path.startswith(p + "/") for p in public_paths)


def extract_token(request: Request, cookie_name: str = AUTH_COOKIE_NAME) -> str | None:
    """Bearer token from the Authorization header, falling back to the cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(cookie_name) or None


def unauthenticated_response(request: Request) -> Response:
    """Uniform rejection: JSON 401 for the API, redirect for pages."""
    if request.url.path.startswith("/api/"):
        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})
    # HTMX request: send redirect header
    if request.headers.get("HX-Request"):
        response = HTMLResponse(content="", status_code=200)
        response.headers["HX-Redirect"] = ENTRY_PATH
        return response
    return RedirectResponse(url=ENTRY_PATH, status_code=302)


class RouteGateMiddleware(BaseHTTPMiddleware):
    """Rejects gated requests without a valid bearer token.

    Verified claims are stored on ``request.state.claims`` for handlers.
    The gate does no authorization beyond "holds a valid token".
    """

    def __init__(
        self,
        app: ASGIApp,
        codec: TokenCodec,
        cookie_name: str = AUTH_COOKIE_NAME,
        public_paths: Iterable[str] = PUBLIC_PATHS,
        public_prefixes: Iterable[str] = PUBLIC_PREFIXES,
    ) -> None:
        super().__init__(app)
        self.codec = codec
        self.cookie_name = cookie_name
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.claims = None
        if is_public_path(request.url.path, self.public_paths, self.public_prefixes):
            return await call_next(request)

        claims = self.codec.verify(extract_token(request, self.cookie_name))
        if claims is None:
            return unauthenticated_response(request)

        request.state.claims = claims
        return await call_next(request)
