"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CodeCoach happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. token_expire_seconds -> TOKEN_EXPIRE_SECONDS).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Security notes:
  [M6] BCRYPT_ROUNDS below 4 or above 31 is rejected outright; bcrypt refuses
       those cost factors and we would rather fail at startup than at signup.

  [M7] Outside DEBUG mode an incomplete GitHub OAuth configuration is logged as
       a warning. Password signup/login keeps working; only the OAuth routes
       are unavailable.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or directory/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("codecoach.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string means "use the SQLite file next to directory/store.py".
    database_url: str = ""

    # ------------------------------------------------------------------
    # Sessions and credentials
    # ------------------------------------------------------------------

    # One week, matching the lifetime the bearer tokens have always had.
    token_expire_seconds: int = 7 * 24 * 3600
    bcrypt_rounds: int = 12
    oauth_state_ttl_seconds: int = 600

    # ------------------------------------------------------------------
    # GitHub OAuth (optional -- empty string means OAuth is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_redirect_uri: str = ""
    github_http_timeout: float = 10.0

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    users_page_size: int = 50
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret and self.github_redirect_uri)

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        """Reject values that would make auth silently insecure or unusable."""
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.token_expire_seconds < 60:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be at least 60.")
        if self.oauth_state_ttl_seconds <= 0:
            raise ValueError("OAUTH_STATE_TTL_SECONDS must be positive.")
        if self.users_page_size < 1:
            raise ValueError("USERS_PAGE_SIZE must be at least 1.")
        if not self.github_enabled and not self.debug:
            logger.warning(
                "GitHub OAuth is not configured. Set GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET "
                "and GITHUB_REDIRECT_URI to enable OAuth login and signup."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
