"""Session issuing: bearer token plus the cookie that carries it."""

from starlette.responses import Response

from app.services.jwt import TokenCodec
from app.stores.base import PublicUser

AUTH_COOKIE_NAME = "auth_token"


class SessionIssuer:
    """Signs a bearer token for a user and attaches it as the session cookie."""

    def __init__(self, codec: TokenCodec, secure: bool = False, cookie_name: str = AUTH_COOKIE_NAME) -> None:
        self.codec = codec
        self.secure = secure
        self.cookie_name = cookie_name

    @property
    def max_age(self) -> int:
        return self.codec.default_ttl

    def issue(self, user: PublicUser) -> str:
        """Create a token carrying the user's id, email and name."""
        return self.codec.sign({"sub": user.id, "email": user.email, "name": user.name})

    def attach(self, response: Response, token: str) -> None:
        """Set the authentication cookie."""
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            max_age=self.max_age,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )

    def start(self, response: Response, user: PublicUser) -> str:
        token = self.issue(user)
        self.attach(response, token)
        return token

    def end(self, response: Response) -> None:
        """Clear the authentication cookie."""
        response.delete_cookie(key=self.cookie_name, path="/", httponly=True, samesite="lax", secure=self.secure)
