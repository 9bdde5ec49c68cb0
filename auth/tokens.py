"""
auth/tokens.py -- Password hashing, session tokens, and credential checks.

Security design decisions:
  Sessions: the bearer token is the session row's primary key, generated with
       secrets.token_urlsafe(32) (256 bits of entropy). It is not a signed,
       self-contained credential; validity is always decided by the store
       (directly or through the session auth cache).

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an e-mail address exists.

Layer rule: no imports from api/, cache/, or rbac/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AuthStore

logger = logging.getLogger("orgguard.auth")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The login request model caps
    passwords at 255 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("orgguard_timing_dummy")


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def session_expiry(ttl_days: int, now: Optional[datetime] = None) -> str:
    """Return the ISO 8601 UTC expiry for a session issued at now."""
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(days=ttl_days)).isoformat()


def parse_expiry(value: str) -> float:
    """Return an ISO 8601 expiry as a POSIX timestamp. Naive values are read as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def token_prefix(token: str) -> str:
    """Loggable form of a session token."""
    return f"{token[:8]}..."


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: AuthStore, email: str, password: str) -> User | None:
    """Check an e-mail/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown e-mail: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure. Inactive users fail.
    """
    user = store.get_user_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        logger.info("Login refused for inactive user id=%s", user.id)
        return None
    return user
