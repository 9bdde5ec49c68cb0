"""
core/config.py -- orgguard settings (pydantic-settings).

Every knob of the engine is read here and nowhere else: session lifetime,
the three auth cache timers, the cache size bound, the delegation policy key
and the privileged policy classification. Other modules call get_settings().

Notes:
  get_settings() is lru_cached, so Settings is built once per process. Tests
      that change the environment call get_settings.cache_clear().

  Env var names are the upper-cased field names
      (auth_cache_ttl_seconds -> AUTH_CACHE_TTL_SECONDS). List fields such
      as PRIVILEGED_POLICIES are parsed from JSON.

  The after-validator rejects malformed policy keys, so a typo in the
      privileged classification fails at startup instead of at delegation time.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
cache/, or rbac/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.policies import DEFAULT_PRIVILEGED_POLICIES, is_valid_policy_key

logger = logging.getLogger("orgguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'orgguard.db'}"


class Settings(BaseSettings):
    """Engine configuration. Every field has a default, so Settings() works with no .env at all."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_days: int = 7
    session_purge_interval_seconds: int = 3600
    # "Bearer <token>" is accepted on this header; X-Session-Token is the fallback.
    session_header: str = "Authorization"

    # ------------------------------------------------------------------
    # Session auth cache
    #
    # TTL bounds the lifetime of any cached snapshot. The two check intervals
    # are independent: the session check bounds how long a deleted session
    # keeps working, the policy check bounds how long a revoked permission
    # keeps working. A TTL <= 0 disables the TTL rule only.
    # ------------------------------------------------------------------

    auth_cache_ttl_seconds: float = 300
    auth_cache_policy_check_seconds: float = 30
    auth_cache_session_check_seconds: float = 60
    auth_cache_max_entries: int = 20000

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    delegation_policy: str = "users.assign_role"
    # Non-org-scoped policies. An actor must hold every privileged policy of a
    # role before granting that role to anyone.
    privileged_policies: list[str] = list(DEFAULT_PRIVILEGED_POLICIES)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy_config(self) -> "Settings":
        """Reject malformed policy keys and nonsensical cache intervals."""
        bad = [k for k in [self.delegation_policy, *self.privileged_policies] if not is_valid_policy_key(k)]
        if bad:
            raise ValueError(f"Invalid policy keys in configuration: {bad!r}")
        if self.auth_cache_policy_check_seconds < 0 or self.auth_cache_session_check_seconds < 0:
            raise ValueError("Auth cache check intervals must be non-negative.")
        if self.auth_cache_max_entries < 1:
            raise ValueError("AUTH_CACHE_MAX_ENTRIES must be at least 1.")
        if self.auth_cache_ttl_seconds <= 0:
            logger.warning("Auth cache TTL disabled; entries expire only via session expiry and re-checks.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings instance."""
    return Settings()
