"""Password hashing with PBKDF2-HMAC-SHA512.

Stored hashes are ``"<iterations>:<salt_hex>:<derived_hex>"`` so verification
needs nothing but the stored string, and raising the iteration count later
does not invalidate existing hashes.
"""

import hashlib
import hmac
import secrets

DEFAULT_ITERATIONS = 120_000
MIN_ITERATIONS = 100_000
SALT_BYTES = 16
KEY_LENGTH = 64
DIGEST = "sha512"


class PasswordHasher:
    """Hashes and verifies passwords."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        if iterations < MIN_ITERATIONS:
            raise ValueError(f"iterations must be at least {MIN_ITERATIONS}")
        self.iterations = iterations
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        """Hash a password with a fresh random salt."""
        salt = secrets.token_hex(SALT_BYTES)
        derived = _derive(password, salt, self.iterations, KEY_LENGTH)
        return f"{self.iterations}:{salt}:{derived.hex()}"

    def verify(self, password: str, stored_hash: str | None) -> bool:
        """Check a password against a stored hash. Never raises."""
        parsed = _parse(stored_hash)
        if parsed is None or not isinstance(password, str):
            return False
        iterations, salt, expected = parsed
        candidate = _derive(password, salt, iterations, len(expected))
        return hmac.compare_digest(candidate, expected)

    def needs_rehash(self, stored_hash: str | None) -> bool:
        """True if the stored hash was made with fewer iterations than current."""
        parsed = _parse(stored_hash)
        return parsed is None or parsed[0] < self.iterations

    def dummy_verify(self, password: str) -> bool:
        """Spend the same work as a real verify; always False.

        Used when no account matches so unknown emails are not faster to
        reject than wrong passwords.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash(secrets.token_hex(16))
        self.verify(password, self._dummy_hash)
        return False


def _parse(stored_hash: str | None) -> tuple[int, str, bytes] | None:
    if not stored_hash or not isinstance(stored_hash, str):
        return None
    parts = stored_hash.split(":")
    if len(parts) != 3:
        return None
    iterations_str, salt, derived_hex = parts
    if not salt or not derived_hex:
        return None
    try:
        iterations = int(iterations_str)
        derived = bytes.fromhex(derived_hex)
        salt.encode("ascii")
    except (ValueError, UnicodeEncodeError):
        return None
    if iterations <= 0 or not derived:
        return None
    return iterations, salt, derived


def _derive(password: str, salt: str, iterations: int, length: int) -> bytes:
    # Lone surrogates encode to bytes no well-formed password can produce.
    secret = password.encode("utf-8", errors="surrogatepass")
    return hashlib.pbkdf2_hmac(DIGEST, secret, salt.encode("ascii"), iterations, length)
