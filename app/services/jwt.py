"""Bearer token codec (HS256 JWT)."""

import time
from collections.abc import Callable
from typing import Any

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7

# Validity depends on signature and exp only; other registered claims are
# carried through as plain data. Expiry is checked against the codec clock.
_DECODE_OPTIONS = {
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
    "verify_nbf": False,
    "verify_exp": False,
}


def _is_canonical(segment: str) -> bool:
    """True if the segment is the exact unpadded base64url text of its bytes.

    The decoder ignores the spare low bits of the final character, so
    several spellings decode to the same signature. Only one is accepted.
    """
    encoded = segment.encode("ascii")
    return base64url_encode(base64url_decode(encoded)) == encoded


class TokenCodec:
    """Signs and verifies compact bearer tokens with a shared secret."""

    def __init__(
        self,
        secret: str,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self.default_ttl = default_ttl
        self._clock = clock

    def sign(self, claims: dict[str, Any], ttl_seconds: int | None = None) -> str:
        """Sign claims, adding iat and exp (Unix seconds)."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        issued_at = int(self._clock())
        payload = dict(claims)
        payload["iat"] = issued_at
        payload["exp"] = issued_at + ttl
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str | None) -> dict[str, Any] | None:
        """Return the claims of a valid token, or None for any kind of invalid token."""
        if not isinstance(token, str) or not token.isascii():
            return None
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            return None
        try:
            if not _is_canonical(segments[2]):
                return None
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM], options=_DECODE_OPTIONS)
        except (JWTError, ValueError):
            return None
        if self._expired(claims.get("exp")):
            return None
        return claims

    def is_token_valid(self, token: str | None) -> bool:
        """Check if a token is valid."""
        return self.verify(token) is not None

    def _expired(self, exp: Any) -> bool:
        if exp is None:
            return False
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return True
        return int(self._clock()) > exp
