"""Configuration settings for Gas Table."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEV_FALLBACK_SECRET = "dev-secret-change-me"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        # Application
        self.APP_ENV: str = os.getenv("APP_ENV", "development")
        self.DEBUG: bool = _env_bool("DEBUG", False)

        # Database / user store
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./gastable.db")
        self.USER_STORE: str = os.getenv("USER_STORE", "sql").lower()
        self.USER_STORE_PATH: str = os.getenv("USER_STORE_PATH", "data/users.json")

        # Bearer tokens
        self.AUTH_SECRET: str = os.getenv("AUTH_SECRET", "")
        self.AUTH_TOKEN_TTL_SECONDS: int = int(os.getenv("AUTH_TOKEN_TTL_SECONDS", str(60 * 60 * 24 * 7)))
        self.COOKIE_SECURE: bool = _env_bool("COOKIE_SECURE", self.is_production)

        # Passwords and resets
        self.PASSWORD_HASH_ITERATIONS: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "120000"))
        self.RESET_TOKEN_TTL_MINUTES: int = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "15"))
        self.RESET_TOKEN_IN_RESPONSE: bool = _env_bool("RESET_TOKEN_IN_RESPONSE", not self.is_production)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    @property
    def signing_secret(self) -> str:
        """Secret used to sign bearer tokens.

        Outside production an unset AUTH_SECRET falls back to a well-known
        development value. Tokens signed with it are forgeable by anyone who
        has read this file, so it must never reach a real deployment.
        """
        if self.AUTH_SECRET:
            return self.AUTH_SECRET
        if self.is_production:
            raise RuntimeError("AUTH_SECRET must be set when APP_ENV=production")
        return DEV_FALLBACK_SECRET

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not self.AUTH_SECRET:
            if self.is_production:
                errors.append("AUTH_SECRET is not set - refusing to sign tokens in production")
            else:
                errors.append("AUTH_SECRET is not set - using insecure development secret")
        if self.USER_STORE not in ("sql", "json"):
            errors.append(f"USER_STORE must be 'sql' or 'json', got '{self.USER_STORE}'")
        if self.USER_STORE == "json":
            errors.append("USER_STORE=json serializes writes per process only - run a single worker")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
